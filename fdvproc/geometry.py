"""Pipe cross-sections and wetted-area flow calculation.

Every shape is its own frozen dataclass with typed dimensions in millimetres.
``flow(depth_mm, velocity_ms)`` returns litres per second (area in m² ×
velocity × 1000) and never goes negative.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import ClassVar, Optional, Sequence, Tuple, Union
import math
import re

from .errors import GeometryError
from .r3 import solve_r3_detailed


def _clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def segment_area(radius: float, depth: float) -> float:
    """Area of a circle of ``radius`` filled to ``depth`` from its lowest point."""
    if radius <= 0 or depth <= 0:
        return 0.0
    y = min(depth, 2.0 * radius)
    t = radius - y
    return radius ** 2 * math.acos(_clamp(t / radius, -1.0, 1.0)) - t * math.sqrt(max(0.0, 2 * radius * y - y * y))


def egg_wetted_area(height, r1, r2, r3, h1, h2, offset, depth) -> float:
    """Wetted area of an egg section built from invert (r1), side (r3) and crown (r2) arcs.

    ``h1``/``h2`` are the heights where the side arcs meet the invert and the
    crown; depth is capped just below the soffit.
    """
    if depth <= 0:
        return 0.0
    depth = min(depth, height * 0.9999)
    psi = math.atan((h2 - r1) / offset)
    area1 = 0.25 * r3 ** 2 * (2.0 * psi - math.sin(2.0 * psi))
    inner_rect = math.sqrt(max(0.0, r1 ** 2 - (r1 - h1) ** 2))
    theta_h1 = 2.0 * math.acos(_clamp((r1 - h1) / r1, -1.0, 1.0))
    lower = 0.5 * (theta_h1 - math.sin(theta_h1)) * r1 ** 2

    if depth <= h1:
        theta = 2.0 * math.acos(_clamp((r1 - depth) / r1, -1.0, 1.0))
        return 0.5 * (theta - math.sin(theta)) * r1 ** 2
    if depth <= h2:
        z = h2 - depth
        phi = math.asin(_clamp(z / r3, -1.0, 1.0))
        area2 = 0.25 * r3 ** 2 * (2.0 * phi - math.sin(2.0 * phi))
        x1 = math.sqrt(max(0.0, r3 ** 2 - z ** 2))
        p = x1 - offset - inner_rect
        area3 = (depth - h1) * inner_rect
        area5 = area1 - area2 - p * z
        return lower + 2.0 * (area5 + area3)
    middle = 2.0 * (area1 + (h2 - h1) * inner_rect)
    z = 2.0 * r2 - (depth - h2 + r2)
    gamma = 2.0 * math.acos(_clamp((r2 - z) / r2, -1.0, 1.0))
    area9 = math.pi * r2 ** 2 - r2 ** 2 * (gamma - math.sin(gamma)) / 2.0
    upper = area9 - math.pi * r2 ** 2 / 2.0
    return lower + middle + upper


@dataclass(frozen=True)
class _Section:
    shape: ClassVar[str] = ""
    code: ClassVar[str] = ""
    solver_form: ClassVar[Optional[int]] = None

    def dimensions(self) -> Tuple[float, ...]:
        return tuple(getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None)

    @property
    def height_mm(self) -> float:
        return float(getattr(self, "height"))

    def resolved(self) -> "_Section":
        return self

    def wetted_area(self, depth_m: float) -> float:
        raise NotImplementedError

    def flow(self, depth_mm: float, velocity_ms: float) -> float:
        if depth_mm <= 0 or velocity_ms == 0:
            return 0.0
        q = self.wetted_area(depth_mm / 1000.0) * velocity_ms * 1000.0
        return max(0.0, q)

    def to_dict(self) -> dict:
        return {"shape": self.shape, "dimensions": list(self.dimensions())}


@dataclass(frozen=True)
class Circular(_Section):
    diameter: float
    shape: ClassVar[str] = "Circular"
    code: ClassVar[str] = "CIRCULAR"

    @property
    def height_mm(self) -> float:
        return float(self.diameter)

    def wetted_area(self, depth_m: float) -> float:
        return segment_area(self.diameter / 2000.0, depth_m)


@dataclass(frozen=True)
class Rectangular(_Section):
    width: float
    height: float
    shape: ClassVar[str] = "Rectangular"
    code: ClassVar[str] = "RECTANGULAR"

    def wetted_area(self, depth_m: float) -> float:
        return max(0.0, depth_m) * self.width / 1000.0


@dataclass(frozen=True)
class _Egg(_Section):
    width: float
    height: float
    r3: Optional[float] = None

    def _r1(self, h: float, w: float) -> float:
        return (h - w) / 4.0

    def resolved(self) -> "_Egg":
        if self.r3 is not None:
            return self
        res = solve_r3_detailed(self.width, self.height, self.solver_form)
        if not res.converged:
            raise GeometryError(
                "SolverFailed",
                f"R3 solver failed for {self.shape} {self.width:g}x{self.height:g} mm: {res.reason}",
            )
        return replace(self, r3=res.value)

    def section(self) -> dict:
        """Arc radii and transition heights in metres."""
        egg = self.resolved()
        w, h, r3 = egg.width / 1000.0, egg.height / 1000.0, egg.r3 / 1000.0
        r1 = self._r1(h, w)
        r2 = w / 2.0
        offset = r3 - r2
        h2 = h - r2
        h1 = h2 - r3 * math.sin(math.atan((h2 - r1) / offset))
        return {"height": h, "r1": r1, "r2": r2, "r3": r3, "offset": offset, "h1": h1, "h2": h2}

    def wetted_area(self, depth_m: float) -> float:
        s = self.section()
        return egg_wetted_area(s["height"], s["r1"], s["r2"], s["r3"], s["h1"], s["h2"], s["offset"], depth_m)


@dataclass(frozen=True)
class EggType1(_Egg):
    shape: ClassVar[str] = "EggType1"
    code: ClassVar[str] = "EGG1"
    solver_form: ClassVar[Optional[int]] = 1

    def _r1(self, h: float, w: float) -> float:
        return (h - w) / 2.0


@dataclass(frozen=True)
class EggType2(_Egg):
    shape: ClassVar[str] = "EggType2"
    code: ClassVar[str] = "EGG2"
    solver_form: ClassVar[Optional[int]] = 2


@dataclass(frozen=True)
class EggType2A(_Egg):
    shape: ClassVar[str] = "EggType2A"
    code: ClassVar[str] = "EGG2A"
    solver_form: ClassVar[Optional[int]] = 2


@dataclass(frozen=True)
class TwoCircleAndRectangle(_Section):
    """Rectangle closed by a circular arc at invert and soffit.

    Each arc spans the full width; a radius of ``width / 2`` gives the classic
    half-circle ends.
    """

    width: float
    height: float
    bottom_radius: float
    top_radius: float
    shape: ClassVar[str] = "TwoCircleAndRectangle"
    code: ClassVar[str] = "TWOCIRCLE"

    def _rise(self, radius: float) -> float:
        half = self.width / 2.0
        return radius - math.sqrt(max(0.0, radius ** 2 - half ** 2))

    def wetted_area(self, depth_m: float) -> float:
        w = self.width / 1000.0
        rb, rt = self.bottom_radius / 1000.0, self.top_radius / 1000.0
        sb, st = self._rise(self.bottom_radius) / 1000.0, self._rise(self.top_radius) / 1000.0
        mid = self.height / 1000.0 - sb - st
        if depth_m <= sb:
            return segment_area(rb, depth_m)
        bottom = segment_area(rb, sb)
        if depth_m <= sb + mid:
            return bottom + (depth_m - sb) * w
        z = min(depth_m - sb - mid, st)
        # top cap is a segment of the soffit circle measured from its chord
        top = segment_area(rt, st) - segment_area(rt, st - z)
        return bottom + mid * w + top


GeometryDescriptor = Union[Circular, Rectangular, EggType1, EggType2, EggType2A, TwoCircleAndRectangle]

SHAPES = {cls.shape: cls for cls in (Circular, Rectangular, EggType1, EggType2, EggType2A, TwoCircleAndRectangle)}
_SHAPE_BY_CODE = {cls.code: cls for cls in SHAPES.values()}

_ALIASES = {
    "circular": "Circular",
    "circle": "Circular",
    "rectangular": "Rectangular",
    "rectangle": "Rectangular",
    "eggtype1": "EggType1",
    "egg1": "EggType1",
    "eggtype2": "EggType2",
    "egg2": "EggType2",
    "eggtype2a": "EggType2A",
    "egg2a": "EggType2A",
    "twocircleandrectangle": "TwoCircleAndRectangle",
    "twocircle": "TwoCircleAndRectangle",
}

# (required, optional) dimension counts per shape
_ARITY = {
    "Circular": (1, 0),
    "Rectangular": (2, 0),
    "EggType1": (2, 1),
    "EggType2": (2, 1),
    "EggType2A": (2, 1),
    "TwoCircleAndRectangle": (4, 0),
}


def shape_name(shape: str) -> str:
    key = re.sub(r"[^a-z0-9]", "", str(shape).lower())
    if key in _ALIASES:
        return _ALIASES[key]
    code = str(shape).strip().upper()
    if code in _SHAPE_BY_CODE:
        return _SHAPE_BY_CODE[code].shape
    raise GeometryError("InvalidDescriptor", f"Unknown shape: {shape!r}")


def geometry_from_dimensions(shape: str, dimensions: Sequence[float]) -> GeometryDescriptor:
    """Build the typed variant for ``shape`` from a positional dimension list (mm)."""
    name = shape_name(shape)
    required, optional = _ARITY[name]
    dims = list(dimensions)
    if not (required <= len(dims) <= required + optional):
        expected = f"{required}" if not optional else f"{required} or {required + optional}"
        raise GeometryError("InvalidDescriptor", f"{name} expects {expected} dimension(s), got {len(dims)}")
    try:
        values = [float(d) for d in dims]
    except (TypeError, ValueError) as exc:
        raise GeometryError("InvalidDescriptor", f"{name} dimensions must be numbers: {dims!r}") from exc
    if any(not math.isfinite(v) or v <= 0 for v in values):
        raise GeometryError("InvalidDescriptor", f"{name} dimensions must be positive: {dims!r}")
    geom = SHAPES[name](*values)
    validate_geometry(geom)
    return geom


def validate_geometry(geom: GeometryDescriptor) -> GeometryDescriptor:
    if not isinstance(geom, tuple(SHAPES.values())):
        raise GeometryError("InvalidDescriptor", f"Not a geometry descriptor: {geom!r}")
    for v in geom.dimensions():
        if not math.isfinite(v) or v <= 0:
            raise GeometryError("InvalidDescriptor", f"{geom.shape} dimensions must be positive: {geom.dimensions()}")
    if isinstance(geom, _Egg) and geom.height <= geom.width:
        raise GeometryError("InvalidDescriptor", f"{geom.shape} height must exceed width")
    if isinstance(geom, _Egg) and geom.r3 is not None and geom.r3 <= geom.width / 2.0:
        raise GeometryError("InvalidDescriptor", f"{geom.shape} r3 must exceed half the width")
    if isinstance(geom, TwoCircleAndRectangle):
        half = geom.width / 2.0
        if geom.bottom_radius < half or geom.top_radius < half:
            raise GeometryError("InvalidDescriptor", "TwoCircleAndRectangle radii must be at least half the width")
        if geom._rise(geom.bottom_radius) + geom._rise(geom.top_radius) > geom.height:
            raise GeometryError("InvalidDescriptor", "TwoCircleAndRectangle arcs exceed the section height")
    return geom


def coerce_geometry(value) -> GeometryDescriptor:
    """Accept a descriptor, a ``(shape, dimensions)`` pair or a ``{"shape", "dimensions"}`` mapping."""
    if isinstance(value, tuple(SHAPES.values())):
        return validate_geometry(value)
    if isinstance(value, dict):
        if "shape" not in value:
            raise GeometryError("InvalidDescriptor", f"Geometry mapping needs a 'shape': {value!r}")
        return geometry_from_dimensions(value["shape"], value.get("dimensions", []))
    if isinstance(value, (list, tuple)) and len(value) == 2 and isinstance(value[0], str):
        return geometry_from_dimensions(value[0], value[1])
    raise GeometryError("InvalidDescriptor", f"Cannot interpret geometry: {value!r}")


def geometry_from_code(code: str, dimensions: Sequence[float]) -> GeometryDescriptor:
    return geometry_from_dimensions(code, dimensions)


__all__ = [
    "Circular",
    "Rectangular",
    "EggType1",
    "EggType2",
    "EggType2A",
    "TwoCircleAndRectangle",
    "GeometryDescriptor",
    "SHAPES",
    "coerce_geometry",
    "geometry_from_dimensions",
    "geometry_from_code",
    "segment_area",
    "egg_wetted_area",
    "shape_name",
    "validate_geometry",
]
