import json

import pytest

from fdvproc.config import EngineConfig, load_config
from fdvproc.errors import FdvError, FileIOError, GeometryError, ValidationError


def test_defaults():
    cfg = load_config()
    assert cfg == EngineConfig()
    assert cfg.missing_marker == -1.0
    assert cfg.identifier_max_len == 15
    assert cfg.to_dict()["bundle_name"] == "processed_files.zip"


def test_json_and_overrides(tmp_path):
    p = tmp_path / "cfg.json"
    p.write_text(json.dumps({"min_velocity": 0.1, "records_per_line": 4}))
    cfg = load_config(p, max_workers=2)
    assert cfg.min_velocity == 0.1
    assert cfg.records_per_line == 4
    assert cfg.max_workers == 2


def test_unknown_field():
    with pytest.raises(ValidationError, match="records_per_page"):
        load_config(records_per_page=3)


def test_bad_json(tmp_path):
    p = tmp_path / "cfg.json"
    p.write_text("{not json")
    with pytest.raises(ValidationError):
        load_config(p)
    p.write_text("[1, 2]")
    with pytest.raises(ValidationError):
        load_config(p)


def test_missing_file(tmp_path):
    with pytest.raises(FileIOError) as exc:
        load_config(tmp_path / "absent.json")
    assert exc.value.kind == "ReadFailed"


def test_error_kinds():
    err = GeometryError("SolverFailed", "no convergence")
    assert isinstance(err, FdvError)
    assert err.error_kind == "GeometryError.SolverFailed"
    assert str(err) == "GeometryError.SolverFailed: no convergence"
    with pytest.raises(ValueError):
        GeometryError("NoSuchKind")
