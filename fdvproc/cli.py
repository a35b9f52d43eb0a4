from __future__ import annotations
import argparse, json, logging, sys
from pathlib import Path

from .commands import CommandHandler, CommandResult
from .config import load_config
from .errors import FdvError
from .models import ChannelGroup


def _add_session_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("src", type=Path, help="Logger export (.csv or .xlsx)")
    p.add_argument("--site-id", default=None, help="Override the detected site id")
    p.add_argument("--site-name", default=None, help="Override the detected site name")
    p.add_argument("--start", default=None, help="Window start, YYYY-MM-DD HH:MM:SS or YYYY-MM-DDTHH:MM")
    p.add_argument("--end", default=None, help="Window end (same formats as --start)")


def build_parser():
    p = argparse.ArgumentParser(prog="fdvproc", description="Logger export → FDV flow/rainfall converter")
    p.add_argument("--config", help="JSON file with EngineConfig fields")
    p.add_argument("--log-level", default="WARNING", help="Python logging level for stderr")
    sub = p.add_subparsers(dest="cmd", required=True)

    c0 = sub.add_parser("classify", help="Detect channels, monitor type and interval")
    _add_session_args(c0)

    c1 = sub.add_parser("encode", help="Write an FDV flow file")
    _add_session_args(c1)
    c1.add_argument("--out", required=True, type=Path)
    c1.add_argument("--depth", default=None, help="Depth channel (default: first depth channel)")
    c1.add_argument("--velocity", default=None, help="Velocity channel, or 'none' for depth only")
    c1.add_argument("--shape", required=True, help="Circular, Rectangular, EggType1, EggType2, EggType2A, TwoCircleAndRectangle")
    c1.add_argument("--dims", required=True, type=float, nargs="+", help="Shape dimensions in mm")

    c2 = sub.add_parser("rainfall", help="Write an FDV rainfall intensity file")
    _add_session_args(c2)
    c2.add_argument("--out", required=True, type=Path)
    c2.add_argument("--channel", default=None)

    c3 = sub.add_parser("totals", help="Rainfall totals per period (CSV or XLSX)")
    _add_session_args(c3)
    c3.add_argument("--out", required=True, type=Path)
    c3.add_argument("--period", default=None, help="Pandas timedelta such as 1D, 6h, 7D (default from config)")
    c3.add_argument("--channel", default=None)

    c4 = sub.add_parser("rainfall-report", help="Daily and weekly rainfall totals workbook")
    _add_session_args(c4)
    c4.add_argument("--out", required=True, type=Path)

    c5 = sub.add_parser("interim", help="Interim report (.xlsx or .pdf)")
    _add_session_args(c5)
    c5.add_argument("--out", required=True, type=Path)

    c6 = sub.add_parser("r3", help="Solve the egg-section side radius R3")
    c6.add_argument("--width", required=True, type=float)
    c6.add_argument("--height", required=True, type=float)
    c6.add_argument("--form", default="1", help="Egg form: 1 or 2")

    c7 = sub.add_parser("batch", help="Convert every file listed in a JSON manifest")
    c7.add_argument("manifest", type=Path, help='JSON list of {"file", "shape", "dimensions", "depth"?, "velocity"?}')
    c7.add_argument("--out-dir", required=True, type=Path)
    c7.add_argument("--workers", type=int, default=None)
    c7.add_argument("--bundle", action="store_true", help="Zip outputs into processed_files.zip")
    return p


def _prepare(h: CommandHandler, a) -> CommandResult:
    res = h.classify_file(a.src)
    if not res.ok:
        return res
    for ok_res in (
        h.update_site_id(a.site_id) if a.site_id is not None else None,
        h.update_site_name(a.site_name) if a.site_name is not None else None,
    ):
        if ok_res is not None and not ok_res.ok:
            return ok_res
    if a.start is not None or a.end is not None:
        ident = h.session.identity
        res = h.update_timestamps(a.start or ident.start_timestamp, a.end or ident.end_timestamp)
        if not res.ok:
            return res
    return CommandResult(True, h.session.classified)


def main(argv=None):
    ap = build_parser()
    a = ap.parse_args(argv)
    logging.basicConfig(level=getattr(logging, str(a.log_level).upper(), logging.WARNING),
                        format="%(levelname)s %(name)s: %(message)s", stream=sys.stderr)
    cfg_overrides = {}
    if a.cmd == "batch" and a.workers:
        cfg_overrides["max_workers"] = a.workers
    try:
        cfg = load_config(a.config, **cfg_overrides)
    except FdvError as exc:
        print(json.dumps(CommandResult(False, None, exc.error_kind, exc.message).to_dict(), indent=2))
        return 1

    with CommandHandler(cfg) as h:
        if a.cmd == "r3":
            res = h.solve_r3(a.width, a.height, a.form)
        elif a.cmd == "batch":
            try:
                with open(a.manifest) as fh:
                    entries = json.load(fh)
            except (OSError, json.JSONDecodeError) as exc:
                res = CommandResult(False, None, "FileIOError.ReadFailed", f"Cannot read manifest {a.manifest}: {exc}")
            else:
                res = h.run_batch(entries, a.out_dir, bundle=a.bundle, base_dir=a.manifest.parent)
        else:
            res = _prepare(h, a)
            if res.ok and a.cmd == "encode":
                depth = a.depth
                if depth is None:
                    depth_chans = res.value.channels(ChannelGroup.DEPTH)
                    depth = depth_chans[0].name if depth_chans else None
                velocity = a.velocity
                if velocity is None:
                    vel = res.value.channels(ChannelGroup.VELOCITY)
                    velocity = vel[0].name if vel else None
                res = h.encode_fdv(a.out, depth, velocity, (a.shape, a.dims))
            elif res.ok and a.cmd == "rainfall":
                res = h.extract_rainfall(a.out, a.channel)
            elif res.ok and a.cmd == "totals":
                res = h.totalize_rainfall(a.out, a.period, a.channel)
            elif res.ok and a.cmd == "rainfall-report":
                res = h.generate_rainfall_totals(a.out)
            elif res.ok and a.cmd == "interim":
                res = h.generate_interim_report(a.out)
        out = res.to_dict()
        out["diagnostics"] = [e.to_dict() for e in h.drain_recent_logs() if e.level != "info"]
    print(json.dumps(out, indent=2))
    return 0 if res.ok else 1


if __name__ == "__main__":
    sys.exit(main())
