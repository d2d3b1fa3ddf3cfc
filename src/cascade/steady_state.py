"""
Closed-form steady state of the cascade.

At steady state each tier balances activation against deactivation. With
``a = upstream_active * k_activate / k_deactivate`` the active fraction is

    g1(a) = a / (a + 1)                 single phosphorylation site (Raf)
    g2(a) = a^2 / (a^2 + a + 1)         two sequential sites (Mek, Erk)

and each tier's active level feeds the ratio of the tier below it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Tuple

import numpy as np

from .errors import BoundaryStateError
from .schema import TIERS, CascadeState, RateSet, Totals


def g1(a: float) -> float:
    return a / (a + 1.0)


def g2(a: float) -> float:
    return a * a / (a * a + a + 1.0)


def g1_inverse(f: float) -> float:
    """Ratio ``a`` with ``g1(a) == f`` for f in (0, 1)."""
    return f / (1.0 - f)


def g2_inverse(f: float) -> float:
    """Positive root of ``(1 - f) a^2 - f a - f = 0`` for f in (0, 1)."""
    return float((f + np.sqrt(f * f + 4.0 * f * (1.0 - f))) / (2.0 * (1.0 - f)))


# Saturation map and its inverse per tier
SATURATION: Dict[str, Tuple[Callable[[float], float], Callable[[float], float]]] = {
    "Raf": (g1, g1_inverse),
    "Mek": (g2, g2_inverse),
    "Erk": (g2, g2_inverse),
}


@dataclass(frozen=True)
class SteadyStateVector:
    """Active level of each tier at steady state."""
    Raf: float
    Mek: float
    Erk: float

    @classmethod
    def from_state(cls, state: CascadeState) -> "SteadyStateVector":
        return cls(**{tier: state.active(tier) for tier in TIERS})

    def get(self, tier: str) -> float:
        return float(getattr(self, tier))

    def fractions(self, totals: Totals) -> Dict[str, float]:
        return {tier: self.get(tier) / totals.for_tier(tier) for tier in TIERS}

    def as_tuple(self) -> Tuple[float, float, float]:
        return (self.Raf, self.Mek, self.Erk)


def tier_steady_state(tier: str, total: float, ratio: float) -> float:
    """Active level of one tier given its effective ratio ``a``."""
    saturation, _ = SATURATION[tier]
    return total * saturation(ratio)


def steady_state(totals: Totals, rates: RateSet, upstream_input: float) -> SteadyStateVector:
    """
    Analytical steady state of the cascade.

    Args:
        totals: Conserved total of each tier
        rates: Rate constants
        upstream_input: Upstream enzyme level (E1) driving Raf activation

    Returns:
        SteadyStateVector of active Raf, Mek and Erk levels
    """
    if upstream_input < 0:
        raise ValueError("upstream_input must be non-negative")
    levels = {}
    parent = float(upstream_input)
    for tier in TIERS:
        levels[tier] = tier_steady_state(tier, totals.for_tier(tier), parent * rates.ratio(tier))
        parent = levels[tier]
    return SteadyStateVector(**levels)


def check_boundary(vector: SteadyStateVector, totals: Totals, margin: float) -> None:
    """
    Reject a steady state with any tier within ``margin`` (fraction of the
    tier total) of 0 or of the total.

    Raises:
        BoundaryStateError: For the first offending tier
    """
    for tier, fraction in vector.fractions(totals).items():
        if fraction <= margin or fraction >= 1.0 - margin:
            raise BoundaryStateError(
                f"{tier} steady-state fraction {fraction:.4f} is within {margin:g} of the boundary",
                tier=tier,
                fraction=fraction,
            )


def is_valid(vector: SteadyStateVector, totals: Totals, margin: float) -> bool:
    try:
        check_boundary(vector, totals, margin)
    except BoundaryStateError:
        return False
    return True


def validated_steady_state(
    totals: Totals, rates: RateSet, upstream_input: float, margin: float
) -> SteadyStateVector:
    """Analytical steady state, raising BoundaryStateError if it is unusable for the SCM."""
    vector = steady_state(totals, rates, upstream_input)
    check_boundary(vector, totals, margin)
    return vector


def extract_steady_state(trajectory, window: int = 1) -> SteadyStateVector:
    """Observed steady state: the trajectory's final active levels, averaged over ``window`` points."""
    return SteadyStateVector.from_state(trajectory.final_state(window))


__all__ = [
    "SATURATION",
    "SteadyStateVector",
    "check_boundary",
    "extract_steady_state",
    "g1",
    "g1_inverse",
    "g2",
    "g2_inverse",
    "is_valid",
    "steady_state",
    "tier_steady_state",
    "validated_steady_state",
]
