from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Union

import numpy as np
import pandas as pd
from scipy.integrate import solve_ivp

from src.utils.data_validation import validate_time_grid
from src.utils.logging_utils import get_logger

from .errors import IntegrationError
from .kinetics import CascadeTransition, KineticModel, LangevinTransition, StochasticKineticModel
from .schema import SPECIES, TIER_SPECIES, CascadeState, RateSet, SimulationSettings, Totals

logger = get_logger(__name__)

_IDX = {name: i for i, name in enumerate(SPECIES)}
_TIER_IDX = {tier: [_IDX[s] for s in members] for tier, members in TIER_SPECIES.items()}


@dataclass(frozen=True, eq=False)
class Trajectory:
    """
    Species concentrations sampled on a time grid.

    Attributes:
        times: Monotonically increasing time grid (read-only)
        values: len(times) x 9 array ordered as SPECIES (read-only)
        totals: Conserved tier totals of the initial state
        noise: Standard-normal draws that drove a stochastic run, one row per
            Euler-Maruyama substep (None for deterministic runs)
        seed: Seed of a stochastic run
    """
    times: np.ndarray
    values: np.ndarray
    totals: Totals
    noise: Optional[np.ndarray] = None
    seed: Optional[int] = None

    def __post_init__(self) -> None:
        for arr in (self.times, self.values, self.noise):
            if arr is not None:
                arr.setflags(write=False)

    def __len__(self) -> int:
        return len(self.times)

    def _row(self, t: float) -> int:
        return int(np.argmin(np.abs(self.times - t)))

    def state_at(self, t: float) -> CascadeState:
        """State at the grid point closest to ``t``."""
        return CascadeState.from_array(self.values[self._row(t)])

    def final_state(self, window: int = 1) -> CascadeState:
        """Final state, averaged over the last ``window`` grid points."""
        window = max(1, min(int(window), len(self.times)))
        return CascadeState.from_array(self.values[-window:].mean(axis=0))

    def species(self, name: str) -> np.ndarray:
        return self.values[:, _IDX[name]]

    def conservation_error(self) -> Dict[str, float]:
        """Largest absolute deviation of each tier's sum from its total."""
        errors = {}
        for tier, members in TIER_SPECIES.items():
            tier_sum = self.values[:, [_IDX[s] for s in members]].sum(axis=1)
            errors[tier] = float(np.max(np.abs(tier_sum - self.totals.for_tier(tier))))
        return errors

    def has_converged(self, window: int = 10, rtol: float = 1e-4) -> bool:
        """True if every tier's species stay flat (relative to the tier total) over the final window."""
        window = max(2, min(int(window), len(self.times)))
        tail = self.values[-window:]
        spread = tail.max(axis=0) - tail.min(axis=0)
        for tier, members in TIER_SPECIES.items():
            idx = [_IDX[s] for s in members]
            if np.any(spread[idx] > rtol * self.totals.for_tier(tier)):
                return False
        return True

    def to_frame(self) -> pd.DataFrame:
        df = pd.DataFrame(self.values, columns=list(SPECIES))
        df.insert(0, "time", self.times)
        return df


def _negative_floor(totals: Totals, e1: float, tolerance: float) -> np.ndarray:
    """Per-species threshold below which a negative value is an error."""
    floor = np.empty(len(SPECIES))
    floor[_IDX["E1"]] = -tolerance * max(e1, 1.0)
    for tier, members in TIER_SPECIES.items():
        for s in members:
            floor[_IDX[s]] = -tolerance * totals.for_tier(tier)
    return floor


def _check_and_clamp(y: np.ndarray, floor: np.ndarray, t: float) -> np.ndarray:
    if not np.all(np.isfinite(y)):
        raise IntegrationError(f"Non-finite concentrations at t={t:.6g}")
    bad = y < floor
    if np.any(bad):
        worst = SPECIES[int(np.argmin(y - floor))]
        raise IntegrationError(
            f"Negative concentration beyond tolerance at t={t:.6g}: "
            f"{worst}={y[_IDX[worst]]:.6g}"
        )
    clamped = np.maximum(y, 0.0)
    added = clamped - y
    if not np.any(added > 0):
        return clamped
    # Clamping must not create mass: take it back from the rest of the tier
    for idx in _TIER_IDX.values():
        excess = added[idx].sum()
        if excess > 0:
            tier = clamped[idx]
            clamped[idx] = tier - excess * tier / tier.sum()
    return clamped


def _integrate_ode(
    transition: CascadeTransition,
    y0: np.ndarray,
    grid: np.ndarray,
    settings: SimulationSettings,
    floor: np.ndarray,
) -> np.ndarray:
    sol = solve_ivp(
        transition,
        (float(grid[0]), float(grid[-1])),
        y0,
        method="LSODA",
        t_eval=grid,
        rtol=settings.rtol,
        atol=settings.atol,
    )
    if not sol.success:
        raise IntegrationError(f"ODE solver failed: {sol.message}")
    values = sol.y.T.copy()
    for i, t in enumerate(grid):
        values[i] = _check_and_clamp(values[i], floor, float(t))
    return values


def _substeps(grid: np.ndarray, max_step: float) -> np.ndarray:
    """Euler-Maruyama substeps per grid interval; depends only on the grid."""
    return np.maximum(1, np.ceil(np.diff(grid) / max_step - 1e-9)).astype(int)


def _integrate_sde(
    transition: LangevinTransition,
    y0: np.ndarray,
    grid: np.ndarray,
    seed: int,
    settings: SimulationSettings,
    floor: np.ndarray,
) -> tuple[np.ndarray, np.ndarray]:
    substeps = _substeps(grid, settings.max_step)
    # All draws are taken up front and depend only on (seed, grid, topology),
    # never on the rates: baseline and intervened runs share them exactly.
    rng = np.random.default_rng(seed)
    noise = rng.standard_normal((int(substeps.sum()), transition.n_noise))

    values = np.empty((len(grid), len(y0)))
    values[0] = y0
    y = y0.copy()
    row = 0
    for i in range(len(grid) - 1):
        h = (grid[i + 1] - grid[i]) / substeps[i]
        sqrt_h = np.sqrt(h)
        t = float(grid[i])
        for _ in range(substeps[i]):
            dw = noise[row] * sqrt_h
            y = y + transition.drift(t, y) * h + transition.diffusion(t, y) @ dw
            t += h
            y = _check_and_clamp(y, floor, t)
            row += 1
        values[i + 1] = y
    return values, noise


def simulate(
    transition: Union[CascadeTransition, LangevinTransition],
    initial_state: CascadeState,
    time_grid: Union[Sequence[float], np.ndarray],
    seed: Optional[int] = None,
    settings: Optional[SimulationSettings] = None,
) -> Trajectory:
    """
    Integrate a cascade transition function over a time grid.

    Deterministic transitions go through scipy's LSODA with output exactly on
    the grid. Langevin transitions are integrated with Euler-Maruyama; a seed
    is mandatory, and two calls with the same seed, initial state and grid
    consume identical standard-normal draws whatever the rates.

    Negative concentrations within ``settings.negative_tolerance`` (fraction
    of the tier total) are clamped to zero, and the clamped mass is taken back
    from the other species of the tier so its total stays fixed; anything
    below the tolerance raises IntegrationError.

    Args:
        transition: Output of KineticModel.build or StochasticKineticModel.build
        initial_state: Species concentrations at grid[0]
        time_grid: Strictly increasing time points
        seed: Random seed (required for stochastic transitions)
        settings: Integrator settings (defaults to SimulationSettings())

    Returns:
        Trajectory sampled on the grid

    Raises:
        ValueError: On a malformed grid or a missing stochastic seed
        IntegrationError: On solver failure or negative excursions beyond tolerance
    """
    settings = settings or SimulationSettings()
    grid = validate_time_grid(time_grid)
    y0 = initial_state.as_array()
    totals = initial_state.totals()
    floor = _negative_floor(totals, initial_state.E1, settings.negative_tolerance)

    if transition.stochastic:
        if seed is None:
            raise ValueError("Stochastic simulation requires an explicit seed")
        logger.debug(f"SDE run: {len(grid)} grid points, t_end={grid[-1]:g}, seed={seed}")
        values, noise = _integrate_sde(transition, y0, grid, int(seed), settings, floor)
        return Trajectory(times=grid.copy(), values=values, totals=totals, noise=noise, seed=int(seed))

    logger.debug(f"ODE run: {len(grid)} grid points, t_end={grid[-1]:g}")
    values = _integrate_ode(transition, y0, grid, settings, floor)
    return Trajectory(times=grid.copy(), values=values, totals=totals)


def simulate_deterministic(
    rates: RateSet,
    initial_state: CascadeState,
    time_grid: Union[Sequence[float], np.ndarray],
    settings: Optional[SimulationSettings] = None,
    frozen_tiers: Sequence[str] = (),
) -> Trajectory:
    """Build the ODE model for ``rates`` and integrate it."""
    transition = KineticModel.build(initial_state, rates, frozen_tiers=frozen_tiers)
    return simulate(transition, initial_state, time_grid, settings=settings)


def simulate_stochastic(
    rates: RateSet,
    initial_state: CascadeState,
    time_grid: Union[Sequence[float], np.ndarray],
    seed: int,
    settings: Optional[SimulationSettings] = None,
    frozen_tiers: Sequence[str] = (),
) -> Trajectory:
    """Build the chemical-Langevin model for ``rates`` and integrate it with ``seed``."""
    settings = settings or SimulationSettings()
    transition = StochasticKineticModel.build(
        initial_state, rates, noise_scale=settings.noise_scale, frozen_tiers=frozen_tiers
    )
    return simulate(transition, initial_state, time_grid, seed=seed, settings=settings)
