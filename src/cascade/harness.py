"""
Sensitivity harness: compare SCM counterfactual effects with direct simulation.

For every (rate set, seed) trial the harness

1. rejects the rate set if its analytical steady state is near a boundary;
2. simulates the baseline to steady state and extracts the observation;
3. simulates the intervened system with the *same* seed (paired noise);
4. asks the counterfactual engine for the SCM effect distribution.

Boundary and integration failures become exclusion rows; counterfactual
query failures become failure rows. Nothing is retried: callers wanting a
fixed batch size resample rate sets themselves.
"""

from __future__ import annotations

from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from src.utils.logging_utils import get_logger

from .counterfactual import CounterfactualEngine
from .errors import BoundaryStateError, IntegrationError, InvalidObservationError, NoiseInversionError
from .metrics import compute_metrics
from .schema import (
    RATE_NAMES,
    BatchConfig,
    CascadeState,
    InterventionSpec,
    RateSet,
    SCMSettings,
    SimulationSettings,
    TimeConfig,
)
from .scm import NoiseVector, build_scm
from .simulate import Trajectory, simulate_deterministic, simulate_stochastic
from .steady_state import extract_steady_state, validated_steady_state

logger = get_logger(__name__)

_ZERO_NOISE = NoiseVector()


@dataclass
class TrialSpec:
    """Inputs of one trial; each trial owns private copies."""
    rate_set_id: int
    rates: RateSet
    seed: Optional[int]
    mode: str
    initial_state: CascadeState
    time_grid: np.ndarray
    intervention: InterventionSpec
    simulation: SimulationSettings
    scm: SCMSettings


@dataclass
class TrialOutcome:
    """Result of one trial: exactly one of record / exclusion / failure is set."""
    rate_set_id: int
    seed: Optional[int]
    record: Optional[Dict[str, Any]] = None
    samples: Optional[np.ndarray] = None
    exclusion: Optional[Dict[str, Any]] = None
    failure: Optional[Dict[str, Any]] = None


@dataclass
class SensitivityReport:
    """
    Aggregated comparison of SCM and simulation causal effects.

    Attributes:
        trials: One row per completed trial
        exclusions: Rate sets / trials dropped for boundary or integration errors
        failures: Trials whose counterfactual query failed
        samples: SCM effect samples keyed by (rate_set_id, seed)
        metadata: Batch-level settings
    """
    trials: pd.DataFrame
    exclusions: pd.DataFrame
    failures: pd.DataFrame
    samples: Dict[Tuple[int, Optional[int]], np.ndarray] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def summary(self) -> Dict[str, float]:
        return compute_metrics(self.trials, n_excluded=len(self.exclusions), n_failed=len(self.failures))

    def effects_for(self, rate_set_id: int) -> pd.DataFrame:
        """Direct vs. SCM effects of one rate set across seeds."""
        return self.trials[self.trials["rate_set_id"] == rate_set_id].reset_index(drop=True)


TRIAL_COLUMNS = [
    "rate_set_id", "seed", "mode", *RATE_NAMES,
    "obs_Raf", "obs_Mek", "obs_Erk", "converged",
    "analytic_effect", "direct_effect", "scm_mean", "scm_std", "scm_n", "abs_error",
]
EXCLUSION_COLUMNS = ["rate_set_id", "seed", *RATE_NAMES, "reason", "detail"]
FAILURE_COLUMNS = ["rate_set_id", "seed", *RATE_NAMES, "error", "detail"]


# -------------------------------------------------------------
# Candidate rate sets: generate -> validate -> retain
# -------------------------------------------------------------
def sample_rate_sets(n: int, rng: np.random.Generator, low: float = 0.01, high: float = 10.0) -> List[RateSet]:
    """Draw ``n`` rate sets with every rate log-uniform on [low, high]."""
    if n < 0:
        raise ValueError("n must be non-negative")
    if not 0 < low < high:
        raise ValueError("Need 0 < low < high")
    draws = np.exp(rng.uniform(np.log(low), np.log(high), size=(n, len(RATE_NAMES))))
    return [RateSet.from_sequence(row) for row in draws]


def filter_valid_rate_sets(
    rate_sets: Sequence[RateSet],
    initial_state: CascadeState,
    margin: float,
) -> Tuple[List[RateSet], List[Tuple[RateSet, BoundaryStateError]]]:
    """Split candidates by the steady-state boundary check."""
    totals = initial_state.totals()
    kept: List[RateSet] = []
    rejected: List[Tuple[RateSet, BoundaryStateError]] = []
    for rates in rate_sets:
        try:
            validated_steady_state(totals, rates, initial_state.E1, margin)
        except BoundaryStateError as e:
            rejected.append((rates, e))
        else:
            kept.append(rates)
    return kept, rejected


def candidate_rate_sets(cfg: BatchConfig) -> List[RateSet]:
    """Explicit rate sets of a batch followed by its sampled ones."""
    candidates = list(cfg.rate_sets)
    if cfg.sampler is not None:
        rng = np.random.default_rng(cfg.sampler.seed)
        candidates.extend(sample_rate_sets(cfg.sampler.n, rng, cfg.sampler.low, cfg.sampler.high))
    return candidates


# -------------------------------------------------------------
# One trial
# -------------------------------------------------------------
def _run_simulation(
    spec: TrialSpec, rates: RateSet, initial_state: CascadeState, frozen_tiers: Sequence[str] = ()
) -> Trajectory:
    if spec.mode == "stochastic":
        return simulate_stochastic(
            rates, initial_state, spec.time_grid, seed=spec.seed,
            settings=spec.simulation, frozen_tiers=frozen_tiers,
        )
    return simulate_deterministic(
        rates, initial_state, spec.time_grid, settings=spec.simulation, frozen_tiers=frozen_tiers
    )


def _intervened_simulation(spec: TrialSpec) -> Trajectory:
    intervention = spec.intervention
    if intervention.raf_value is not None:
        # do(Raf = x): pin the Raf tier at x and freeze its kinetics
        state = spec.initial_state.with_tier_active("Raf", intervention.raf_value)
        return _run_simulation(spec, spec.rates, state, frozen_tiers=("Raf",))
    return _run_simulation(spec, intervention.apply(spec.rates), spec.initial_state)


def run_trial(spec: TrialSpec) -> TrialOutcome:
    """Run one (rate set, seed) trial; cascade errors end up as exclusion or failure rows."""
    rates_row = spec.rates.model_dump()
    outcome = TrialOutcome(rate_set_id=spec.rate_set_id, seed=spec.seed)
    target = spec.intervention.target_tier
    totals = spec.initial_state.totals()

    try:
        analytic = validated_steady_state(totals, spec.rates, spec.initial_state.E1, spec.scm.boundary_margin)
    except BoundaryStateError as e:
        outcome.exclusion = {"rate_set_id": spec.rate_set_id, "seed": spec.seed, **rates_row,
                             "reason": "boundary", "detail": str(e)}
        return outcome

    try:
        baseline = _run_simulation(spec, spec.rates, spec.initial_state)
        intervened = _intervened_simulation(spec)
    except IntegrationError as e:
        outcome.exclusion = {"rate_set_id": spec.rate_set_id, "seed": spec.seed, **rates_row,
                             "reason": "integration", "detail": str(e)}
        return outcome

    window = spec.simulation.steady_state_window
    observation = extract_steady_state(baseline, window)
    direct_effect = extract_steady_state(intervened, window).get(target) - observation.get(target)

    model = build_scm(totals, spec.rates, spec.initial_state.E1, spec.scm.noise_mode)
    analytic_effect = model.intervene(spec.intervention).evaluate(_ZERO_NOISE).get(target) - analytic.get(target)

    engine = CounterfactualEngine(spec.scm)
    try:
        samples = engine.effect_samples(model, observation, spec.intervention, seed=spec.seed)
    except (InvalidObservationError, NoiseInversionError) as e:
        outcome.failure = {"rate_set_id": spec.rate_set_id, "seed": spec.seed, **rates_row,
                           "error": type(e).__name__, "detail": str(e)}
        return outcome

    scm_mean = float(samples.mean())
    outcome.samples = samples
    outcome.record = {
        "rate_set_id": spec.rate_set_id,
        "seed": spec.seed,
        "mode": spec.mode,
        **rates_row,
        "obs_Raf": observation.Raf,
        "obs_Mek": observation.Mek,
        "obs_Erk": observation.Erk,
        "converged": baseline.has_converged(
            window=max(10, window), rtol=spec.simulation.convergence_rtol
        ),
        "analytic_effect": float(analytic_effect),
        "direct_effect": float(direct_effect),
        "scm_mean": scm_mean,
        "scm_std": float(samples.std()),
        "scm_n": int(len(samples)),
        "abs_error": abs(scm_mean - float(direct_effect)),
    }
    return outcome


# -------------------------------------------------------------
# Batch
# -------------------------------------------------------------
def _build_specs(
    rate_sets: Sequence[RateSet],
    seeds: Sequence[int],
    intervention: InterventionSpec,
    initial_state: CascadeState,
    time_grid: np.ndarray,
    mode: str,
    simulation: SimulationSettings,
    scm: SCMSettings,
) -> List[TrialSpec]:
    # Deterministic runs do not depend on the seed: one trial per rate set
    trial_seeds: List[Optional[int]] = list(seeds) if mode == "stochastic" else [None]
    specs = []
    for rate_set_id, rates in enumerate(rate_sets):
        for seed in trial_seeds:
            specs.append(TrialSpec(
                rate_set_id=rate_set_id,
                rates=rates,
                seed=seed,
                mode=mode,
                initial_state=initial_state,
                time_grid=np.array(time_grid, dtype=float),
                intervention=intervention,
                simulation=simulation,
                scm=scm,
            ))
    return specs


def run_sensitivity_batch(
    rate_sets: Sequence[RateSet],
    seeds: Sequence[int],
    intervention_spec: InterventionSpec,
    initial_state: CascadeState,
    time_grid: Any,
    mode: str = "deterministic",
    simulation: Optional[SimulationSettings] = None,
    scm: Optional[SCMSettings] = None,
    max_workers: int = 1,
) -> SensitivityReport:
    """
    Run every (rate set, seed) trial and aggregate the comparison.

    Args:
        rate_sets: Candidate rate sets (ids are their positions)
        seeds: Seeds for the stochastic regime (ignored when deterministic)
        intervention_spec: Intervention and target tier
        initial_state: Initial species concentrations, fixing the totals
        time_grid: Strictly increasing time grid, or a TimeConfig
        mode: "deterministic" or "stochastic"
        simulation: Integrator settings
        scm: SCM / counterfactual settings
        max_workers: Worker processes; 1 runs trials in-process

    Returns:
        SensitivityReport
    """
    if mode not in ("deterministic", "stochastic"):
        raise ValueError(f"Unknown mode: {mode}")
    if mode == "stochastic" and not seeds:
        raise ValueError("Stochastic batches need at least one seed")
    raf_value = intervention_spec.raf_value
    if raf_value is not None and raf_value > initial_state.totals().Raf:
        raise ValueError(f"raf_value {raf_value} exceeds the Raf total {initial_state.totals().Raf}")
    simulation = simulation or SimulationSettings()
    scm = scm or SCMSettings()
    grid = time_grid.grid if isinstance(time_grid, TimeConfig) else np.asarray(time_grid, dtype=float)

    specs = _build_specs(rate_sets, seeds, intervention_spec, initial_state, grid, mode, simulation, scm)
    logger.info(f"Sensitivity batch: {len(rate_sets)} rate sets, {len(specs)} trials, mode={mode}, workers={max_workers}")

    outcomes: List[TrialOutcome] = []
    if max_workers > 1 and len(specs) > 1:
        with ProcessPoolExecutor(max_workers=max_workers) as pool:
            for outcome in pool.map(run_trial, specs):
                outcomes.append(outcome)
    else:
        for spec in specs:
            outcomes.append(run_trial(spec))

    outcomes.sort(key=lambda o: (o.rate_set_id, -1 if o.seed is None else o.seed))

    records, exclusions, failures = [], [], []
    samples: Dict[Tuple[int, Optional[int]], np.ndarray] = {}
    for outcome in outcomes:
        if outcome.exclusion is not None:
            logger.warning(
                f"Excluded rate set {outcome.rate_set_id} (seed={outcome.seed}): "
                f"{outcome.exclusion['reason']} - {outcome.exclusion['detail']}"
            )
            exclusions.append(outcome.exclusion)
        elif outcome.failure is not None:
            logger.warning(
                f"Counterfactual query failed for rate set {outcome.rate_set_id} (seed={outcome.seed}): "
                f"{outcome.failure['error']} - {outcome.failure['detail']}"
            )
            failures.append(outcome.failure)
        else:
            records.append(outcome.record)
            samples[(outcome.rate_set_id, outcome.seed)] = outcome.samples

    report = SensitivityReport(
        trials=pd.DataFrame(records, columns=TRIAL_COLUMNS),
        exclusions=pd.DataFrame(exclusions, columns=EXCLUSION_COLUMNS),
        failures=pd.DataFrame(failures, columns=FAILURE_COLUMNS),
        samples=samples,
        metadata={
            "mode": mode,
            "n_rate_sets": len(rate_sets),
            "n_trials": len(specs),
            "target_tier": intervention_spec.target_tier,
            "intervention": intervention_spec.model_dump(),
        },
    )
    logger.info(
        f"Batch complete: {len(records)} trials, {len(exclusions)} excluded, {len(failures)} failed"
    )
    return report


def run_batch(cfg: BatchConfig) -> SensitivityReport:
    """Run a sensitivity batch described by a BatchConfig."""
    report = run_sensitivity_batch(
        candidate_rate_sets(cfg),
        cfg.seeds,
        cfg.intervention,
        cfg.initial_state,
        cfg.time,
        mode=cfg.mode,
        simulation=cfg.simulation,
        scm=cfg.scm,
        max_workers=cfg.max_workers,
    )
    report.metadata["name"] = cfg.name
    return report
