"""
Mass-action kinetics of the three-tier phosphorylation cascade.

Reactions (the enzyme of each tier is the active form of the tier above):

    Raf   -> PRaf    ka_raf * E1 * Raf        PRaf  -> Raf    kd_raf * PRaf
    Mek   -> PMek    ka_mek * PRaf * Mek      PMek  -> Mek    kd_mek * PMek
    PMek  -> PPMek   ka_mek * PRaf * PMek     PPMek -> PMek   kd_mek * PPMek
    Erk   -> PErk    ka_erk * PPMek * Erk     PErk  -> Erk    kd_erk * PErk
    PErk  -> PPErk   ka_erk * PPMek * PErk    PPErk -> PErk   kd_erk * PPErk

Every reaction moves mass inside one tier, so each stoichiometry column
sums to zero over that tier's species and the tier totals are conserved
analytically, with or without Langevin noise.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Tuple

import numpy as np

from .schema import SPECIES, TIER_SPECIES, CascadeState, RateSet, Totals

_IDX = {name: i for i, name in enumerate(SPECIES)}

# (tier, substrate, product, rate name, enzyme species or None for first-order)
REACTIONS: Tuple[Tuple[str, str, str, str, str | None], ...] = (
    ("Raf", "Raf", "PRaf", "raf_activate", "E1"),
    ("Raf", "PRaf", "Raf", "raf_deactivate", None),
    ("Mek", "Mek", "PMek", "mek_activate", "PRaf"),
    ("Mek", "PMek", "PPMek", "mek_activate", "PRaf"),
    ("Mek", "PPMek", "PMek", "mek_deactivate", None),
    ("Mek", "PMek", "Mek", "mek_deactivate", None),
    ("Erk", "Erk", "PErk", "erk_activate", "PPMek"),
    ("Erk", "PErk", "PPErk", "erk_activate", "PPMek"),
    ("Erk", "PPErk", "PErk", "erk_deactivate", None),
    ("Erk", "PErk", "Erk", "erk_deactivate", None),
)

N_REACTIONS = len(REACTIONS)


def _stoichiometry() -> np.ndarray:
    s = np.zeros((len(SPECIES), N_REACTIONS))
    for j, (_, substrate, product, _, _) in enumerate(REACTIONS):
        s[_IDX[substrate], j] -= 1.0
        s[_IDX[product], j] += 1.0
    s.setflags(write=False)
    return s


STOICHIOMETRY = _stoichiometry()


@dataclass(frozen=True)
class CascadeTransition:
    """
    Deterministic right-hand side of the cascade ODEs.

    Callable as ``f(t, y)`` with ``y`` ordered as :data:`SPECIES`, which is the
    signature :func:`scipy.integrate.solve_ivp` expects.
    """

    rates: RateSet
    totals: Totals
    frozen_tiers: Tuple[str, ...] = ()
    _k: np.ndarray = field(init=False, repr=False, compare=False)
    _substrate: np.ndarray = field(init=False, repr=False, compare=False)
    _enzyme: np.ndarray = field(init=False, repr=False, compare=False)
    _stoich: np.ndarray = field(init=False, repr=False, compare=False)

    stochastic = False

    def __post_init__(self) -> None:
        unknown = set(self.frozen_tiers) - set(TIER_SPECIES)
        if unknown:
            raise ValueError(f"Unknown tiers to freeze: {sorted(unknown)}")
        k = np.array([getattr(self.rates, r[3]) for r in REACTIONS], dtype=float)
        substrate = np.array([_IDX[r[1]] for r in REACTIONS])
        # -1 marks first-order reactions (no enzyme factor)
        enzyme = np.array([_IDX[r[4]] if r[4] is not None else -1 for r in REACTIONS])
        stoich = STOICHIOMETRY.copy()
        for j, reaction in enumerate(REACTIONS):
            if reaction[0] in self.frozen_tiers:
                stoich[:, j] = 0.0
        object.__setattr__(self, "_k", k)
        object.__setattr__(self, "_substrate", substrate)
        object.__setattr__(self, "_enzyme", enzyme)
        object.__setattr__(self, "_stoich", stoich)

    def fluxes(self, y: np.ndarray) -> np.ndarray:
        """Reaction fluxes at state ``y``; negative concentrations contribute no flux."""
        conc = np.clip(np.asarray(y, dtype=float), 0.0, None)
        enzyme = np.where(self._enzyme >= 0, conc[np.maximum(self._enzyme, 0)], 1.0)
        return self._k * conc[self._substrate] * enzyme

    def drift(self, t: float, y: np.ndarray) -> np.ndarray:
        return self._stoich @ self.fluxes(y)

    def __call__(self, t: float, y: np.ndarray) -> np.ndarray:
        return self.drift(t, y)


@dataclass(frozen=True)
class LangevinTransition(CascadeTransition):
    """
    Chemical-Langevin transition: the deterministic drift plus one Wiener
    increment per reaction, scaled by ``noise_scale * sqrt(flux)``.
    """

    noise_scale: float = 1.0

    stochastic = True

    @property
    def n_noise(self) -> int:
        """Independent Wiener processes driving the system."""
        return N_REACTIONS

    def diffusion(self, t: float, y: np.ndarray) -> np.ndarray:
        """Species x reactions diffusion matrix."""
        return self._stoich * (self.noise_scale * np.sqrt(self.fluxes(y)))


class KineticModel:
    """Builder for the deterministic cascade transition function."""

    @staticmethod
    def build(
        initial_state: CascadeState,
        rates: RateSet,
        frozen_tiers: Iterable[str] = (),
    ) -> CascadeTransition:
        return CascadeTransition(rates=rates, totals=initial_state.totals(), frozen_tiers=tuple(frozen_tiers))


class StochasticKineticModel:
    """Builder for the noise-augmented (chemical Langevin) transition function."""

    @staticmethod
    def build(
        initial_state: CascadeState,
        rates: RateSet,
        noise_scale: float = 1.0,
        frozen_tiers: Iterable[str] = (),
    ) -> LangevinTransition:
        if noise_scale < 0:
            raise ValueError("noise_scale must be non-negative")
        return LangevinTransition(
            rates=rates,
            totals=initial_state.totals(),
            frozen_tiers=tuple(frozen_tiers),
            noise_scale=float(noise_scale),
        )
