"""Fixed-point solver for the side-arc radius (R3) of egg-shaped sewers.

Given the egg's overall width and height, iterate ``r3`` until the offset of
the side-arc centre from the crown centre agrees with the offset implied by
Pythagoras through the invert arc.  The iteration is reproduced exactly so
results match the values hydraulic models were calibrated against.
"""

from __future__ import annotations

from dataclasses import dataclass
import math

FAILURE = -1.0
MAX_ITERATIONS = 1000
TOLERANCE = 1e-5

CONVERGED = "converged"
DOMAIN_ERROR = "domain_error"
NOT_CONVERGED = "not_converged"


@dataclass(frozen=True)
class R3Result:
    value: float
    reason: str
    iterations: int
    last_diff: float | None = None

    @property
    def converged(self) -> bool:
        return self.reason == CONVERGED

    def to_dict(self) -> dict:
        return {
            "value": self.value,
            "converged": self.converged,
            "reason": self.reason,
            "iterations": self.iterations,
            "last_diff": self.last_diff,
        }


def solve_r3_detailed(width: float, height: float, egg_form) -> R3Result:
    """Solve for R3 and report why the iteration stopped."""
    width, height = float(width), float(height)
    if not (math.isfinite(width) and math.isfinite(height)) or width <= 0 or height <= 0:
        return R3Result(FAILURE, DOMAIN_ERROR, 0)
    r2 = width / 2.0
    r1 = (height - width) / 2.0 if egg_form == 1 else (height - width) / 4.0
    h2 = height - r2
    r3 = height
    diff = None
    for iteration in range(1, MAX_ITERATIONS + 1):
        offset = r3 - r2
        square_term = (r3 - r1) ** 2 - (h2 - r1) ** 2
        if square_term < 0:
            return R3Result(FAILURE, DOMAIN_ERROR, iteration, diff)
        diff = offset - math.sqrt(square_term)
        r3 = r3 + diff / 10.0
        if abs(diff) < TOLERANCE:
            return R3Result(r3, CONVERGED, iteration, diff)
    return R3Result(FAILURE, NOT_CONVERGED, MAX_ITERATIONS, diff)


def solve_r3(width: float, height: float, egg_form) -> float:
    """Converged R3, or ``-1.0`` when the geometry is invalid or does not converge."""
    return solve_r3_detailed(width, height, egg_form).value


__all__ = ["R3Result", "solve_r3", "solve_r3_detailed", "FAILURE", "CONVERGED", "DOMAIN_ERROR", "NOT_CONVERGED"]
