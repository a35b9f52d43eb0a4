"""Prioritised header rules used to assign logger columns to channel groups.

The table is plain data so it can be tested (and extended) without touching
file I/O.  A header is lower-cased and whitespace-collapsed before matching;
the highest-priority rule that matches wins.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Pattern, Tuple
import re

from .models import ChannelGroup


@dataclass(frozen=True)
class ChannelRule:
    group: ChannelGroup
    pattern: Pattern[str]
    priority: int
    quantity: str


@dataclass(frozen=True)
class RuleMatch:
    group: ChannelGroup
    priority: int
    quantity: str
    unit: Optional[str]
    qualifier: Optional[str]


# Structured exports look like "1_2|Depth|mm": <site>_<channel>|<label>|<unit>.
_TAG = r"^(?P<site>\d+)_(?P<chan>\d+)\|"


def _rule(group: ChannelGroup, pattern: str, priority: int, quantity: str) -> ChannelRule:
    return ChannelRule(group, re.compile(pattern), priority, quantity)


CLASSIFICATION_RULES: List[ChannelRule] = [
    # priority 3: structured logger headers with an explicit unit
    _rule(ChannelGroup.DEPTH, _TAG + r".*\b(depth|level)\b.*\|\s*(mm|m)$", 3, "depth"),
    _rule(ChannelGroup.VELOCITY, _TAG + r".*\bvelocity\b.*\|\s*m/s$", 3, "velocity"),
    _rule(ChannelGroup.RAINFALL, _TAG + r".*\brain(fall)?\b.*\|\s*mm$", 3, "rainfall"),
    _rule(ChannelGroup.OTHER, _TAG + r".*\bflow\b.*\|\s*(l/s|m3/s)$", 3, "flow"),
    # priority 2: keyword plus a recognised unit
    _rule(ChannelGroup.DEPTH, r"\b(depth|level)\b.*[(\[]\s*(mm|cm|m)\s*[)\]]", 2, "depth"),
    _rule(ChannelGroup.VELOCITY, r"\b(velocity|vel|speed)\b.*[(\[]\s*(m/s|mm/s|cm/s)\s*[)\]]", 2, "velocity"),
    _rule(ChannelGroup.RAINFALL, r"\b(rain|rainfall|precip|precipitation)\b.*[(\[]\s*mm\s*[)\]]", 2, "rainfall"),
    _rule(ChannelGroup.OTHER, r"\bflow\b.*[(\[]\s*(l/s|m3/s)\s*[)\]]", 2, "flow"),
    # priority 1: keyword only
    _rule(ChannelGroup.DEPTH, r"\b(depth|level)\b", 1, "depth"),
    _rule(ChannelGroup.VELOCITY, r"\b(velocity|vel|speed)\b", 1, "velocity"),
    _rule(ChannelGroup.RAINFALL, r"\b(rain|rainfall|precip|precipitation|tips?)\b", 1, "rainfall"),
    _rule(ChannelGroup.OTHER, r"\bflow\b", 1, "flow"),
    _rule(ChannelGroup.OTHER, r"\b(temp|temperature)\b", 1, "temperature"),
    _rule(ChannelGroup.OTHER, r"\b(battery|batt|voltage)\b", 1, "battery"),
]

# Multipliers into the engine's working units (depth mm, velocity m/s, rainfall mm).
UNIT_FACTORS: Dict[str, Dict[Optional[str], float]] = {
    "depth": {"mm": 1.0, "cm": 10.0, "m": 1000.0, None: 1000.0},
    "velocity": {"m/s": 1.0, "cm/s": 0.01, "mm/s": 0.001, None: 1.0},
    "rainfall": {"mm": 1.0, None: 1.0},
}

_UNIT_RE = re.compile(r"[(\[]\s*([a-z0-9/]+)\s*[)\]]")


def normalize_header(header: str) -> str:
    return re.sub(r"\s+", " ", str(header)).strip().lower()


def header_unit(header: str) -> Optional[str]:
    """Unit named in ``header``: the last ``|`` segment or a bracketed token."""
    text = normalize_header(header)
    if "|" in text:
        last = text.rsplit("|", 1)[1].strip()
        if last:
            return last
    m = _UNIT_RE.search(text)
    return m.group(1) if m else None


def header_site_tag(header: str) -> Optional[Tuple[str, str]]:
    m = re.match(_TAG, normalize_header(header))
    if not m:
        return None
    return m.group("site"), m.group("chan")


def match_header(header: str, rules: Optional[List[ChannelRule]] = None) -> List[RuleMatch]:
    """Every rule match at the highest matching priority (empty if none)."""
    rules = CLASSIFICATION_RULES if rules is None else rules
    text = normalize_header(header)
    hits = [r for r in rules if r.pattern.search(text)]
    if not hits:
        return []
    top = max(r.priority for r in hits)
    unit = header_unit(header)
    tag = header_site_tag(header)
    out: List[RuleMatch] = []
    seen = set()
    for r in hits:
        if r.priority != top or (r.group, r.quantity) in seen:
            continue
        seen.add((r.group, r.quantity))
        if tag:
            qualifier: Optional[str] = f"{tag[0]}_{tag[1]}"
        elif r.group is ChannelGroup.OTHER:
            qualifier = r.quantity
        else:
            qualifier = None
        out.append(RuleMatch(r.group, r.priority, r.quantity, unit, qualifier))
    return out


def unit_factor(quantity: str, unit: Optional[str]) -> float:
    table = UNIT_FACTORS.get(quantity, {})
    if unit in table:
        return table[unit]
    return table.get(None, 1.0)


__all__ = [
    "ChannelRule",
    "RuleMatch",
    "CLASSIFICATION_RULES",
    "UNIT_FACTORS",
    "match_header",
    "header_unit",
    "header_site_tag",
    "normalize_header",
    "unit_factor",
]
