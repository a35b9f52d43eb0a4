import pytest

from fdvproc.channel_rules import header_site_tag, header_unit, match_header, unit_factor
from fdvproc.models import ChannelGroup


def test_bracketed_unit_beats_keyword_only():
    hits = match_header("Velocity (m/s)")
    assert len(hits) == 1
    assert hits[0].group is ChannelGroup.VELOCITY
    assert hits[0].priority == 2
    assert hits[0].unit == "m/s"


def test_structured_header_carries_site_tag():
    hits = match_header("12_3|Depth|mm")
    assert [h.group for h in hits] == [ChannelGroup.DEPTH]
    assert hits[0].priority == 3
    assert hits[0].qualifier == "12_3"
    assert header_site_tag("12_3|Depth|mm") == ("12", "3")
    assert header_unit("1_2|Level|m") == "m"


@pytest.mark.parametrize(
    "header, group, qualifier",
    [
        ("Rain Tips", ChannelGroup.RAINFALL, None),
        ("Battery", ChannelGroup.OTHER, "battery"),
        ("Temp (C)", ChannelGroup.OTHER, "temperature"),
        ("Flow (l/s)", ChannelGroup.OTHER, "flow"),
        ("LEVEL", ChannelGroup.DEPTH, None),
    ],
)
def test_keyword_rules(header, group, qualifier):
    hits = match_header(header)
    assert hits and hits[0].group is group
    assert hits[0].qualifier == qualifier


def test_unknown_header_has_no_match():
    assert match_header("Foo") == []
    assert header_unit("Foo") is None


def test_unit_factors():
    assert unit_factor("depth", "mm") == 1.0
    assert unit_factor("depth", "cm") == 10.0
    # depth without a unit is logged in metres
    assert unit_factor("depth", None) == 1000.0
    assert unit_factor("velocity", "mm/s") == pytest.approx(0.001)
    assert unit_factor("rainfall", "mm") == 1.0
