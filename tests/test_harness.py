"""
Tests for the sensitivity harness comparing SCM and simulated effects.
"""

import numpy as np
import pytest

from src.cascade import harness
from src.cascade.errors import NoiseInversionError
from src.cascade.harness import (
    filter_valid_rate_sets,
    run_sensitivity_batch,
    sample_rate_sets,
)
from src.cascade.schema import CascadeState, InterventionSpec, RateSet, SCMSettings, SimulationSettings, TimeConfig
from src.cascade.simulate import Trajectory

RATES = RateSet.from_sequence([0.1, 0.1, 0.1, 2.0, 0.1, 1.0])
BOUNDARY_RATES = RateSet.from_sequence([10.0, 0.01, 0.1, 2.0, 0.1, 1.0])
INITIAL = CascadeState(E1=1.0, Raf=100.0, Mek=100.0, Erk=100.0)
SLOWER_RAF = InterventionSpec(rate_overrides={"raf_activate": 0.0333}, target_tier="Erk")
GRID = TimeConfig(t_end=200.0, n_points=401)


def test_deterministic_batch_with_boundary_exclusion():
    report = run_sensitivity_batch([RATES, BOUNDARY_RATES], [0], SLOWER_RAF, INITIAL, GRID)

    assert len(report.trials) == 1
    assert len(report.exclusions) == 1
    assert report.failures.empty
    assert report.exclusions.iloc[0]["rate_set_id"] == 1
    assert report.exclusions.iloc[0]["reason"] == "boundary"

    row = report.trials.iloc[0]
    assert row["direct_effect"] < 0
    assert row["scm_mean"] < 0
    assert row["abs_error"] < 1e-3
    assert row["analytic_effect"] == pytest.approx(row["direct_effect"], abs=1e-3)
    assert bool(row["converged"])


def test_summary_keys():
    report = run_sensitivity_batch([RATES, BOUNDARY_RATES], [0], SLOWER_RAF, INITIAL, GRID)
    summary = report.summary()
    for key in ("n_trials", "n_excluded", "n_failed", "mean_abs_error", "max_abs_error", "sign_agreement"):
        assert key in summary, f"Missing summary key: {key}"
    assert summary["n_trials"] == 1
    assert summary["n_excluded"] == 1
    assert summary["sign_agreement"] == 1.0


def test_deterministic_ignores_seeds():
    report = run_sensitivity_batch([RATES], [1, 2, 3], SLOWER_RAF, INITIAL, GRID)
    assert len(report.trials) == 1
    assert report.metadata["n_trials"] == 1


def test_filter_valid_rate_sets():
    kept, rejected = filter_valid_rate_sets([RATES, BOUNDARY_RATES], INITIAL, margin=0.01)
    assert kept == [RATES]
    assert len(rejected) == 1
    assert rejected[0][0] == BOUNDARY_RATES
    assert rejected[0][1].tier == "Raf"


def test_sample_rate_sets_reproducible():
    a = sample_rate_sets(5, np.random.default_rng(3), low=0.05, high=5.0)
    b = sample_rate_sets(5, np.random.default_rng(3), low=0.05, high=5.0)
    assert a == b
    values = np.array([r.as_array() for r in a])
    assert values.shape == (5, 6)
    assert np.all((values >= 0.05) & (values <= 5.0))


def test_sample_rate_sets_rejects_bad_bounds():
    with pytest.raises(ValueError):
        sample_rate_sets(3, np.random.default_rng(0), low=1.0, high=0.5)


def test_stochastic_batch_paired_seeds():
    report = run_sensitivity_batch(
        [RATES],
        [1, 2, 3],
        SLOWER_RAF,
        INITIAL,
        TimeConfig(t_end=100.0, n_points=201),
        mode="stochastic",
        simulation=SimulationSettings(noise_scale=0.1),
        scm=SCMSettings(n_samples=20),
    )
    assert len(report.trials) + len(report.exclusions) + len(report.failures) == 3
    assert list(report.trials["seed"]) == sorted(report.trials["seed"])
    assert not report.trials.empty
    assert report.trials["scm_mean"].mean() < 0
    assert report.trials["direct_effect"].mean() < 0
    assert abs(report.trials["direct_effect"].mean() - report.trials["scm_mean"].mean()) < 3.0
    for _, row in report.trials.iterrows():
        assert (1, row["seed"]) not in report.samples
        assert len(report.samples[(0, row["seed"])]) == 20


def test_stochastic_batch_needs_seeds():
    with pytest.raises(ValueError):
        run_sensitivity_batch([RATES], [], SLOWER_RAF, INITIAL, GRID, mode="stochastic")


def test_unknown_mode_rejected():
    with pytest.raises(ValueError):
        run_sensitivity_batch([RATES], [0], SLOWER_RAF, INITIAL, GRID, mode="hybrid")


def test_query_failure_becomes_failure_row(monkeypatch):
    def broken(self, *args, **kwargs):
        raise NoiseInversionError("cannot invert")

    monkeypatch.setattr(harness.CounterfactualEngine, "effect_samples", broken)
    report = run_sensitivity_batch([RATES], [0], SLOWER_RAF, INITIAL, TimeConfig(t_end=50.0, n_points=51))
    assert report.trials.empty
    assert len(report.failures) == 1
    assert report.failures.iloc[0]["error"] == "NoiseInversionError"
    assert report.summary()["n_failed"] == 1


def test_hard_intervention_batch():
    intervention = InterventionSpec(raf_value=25.0, target_tier="Mek")
    report = run_sensitivity_batch([RATES], [0], intervention, INITIAL, GRID)
    row = report.trials.iloc[0]
    assert row["direct_effect"] < 0
    assert row["scm_mean"] == pytest.approx(row["direct_effect"], abs=1e-3)


def test_parallel_matches_serial():
    grid = TimeConfig(t_end=50.0, n_points=51)
    rate_sets = [RATES, RATES.with_overrides({"mek_activate": 0.2})]
    serial = run_sensitivity_batch(rate_sets, [0], SLOWER_RAF, INITIAL, grid, max_workers=1)
    parallel = run_sensitivity_batch(rate_sets, [0], SLOWER_RAF, INITIAL, grid, max_workers=2)
    assert np.allclose(serial.trials["scm_mean"], parallel.trials["scm_mean"])
    assert np.allclose(serial.trials["direct_effect"], parallel.trials["direct_effect"])


def test_raf_value_above_total_rejected_before_trials():
    with pytest.raises(ValueError):
        run_sensitivity_batch([RATES], [0], InterventionSpec(raf_value=150.0), INITIAL, GRID)


def test_convergence_flag_covers_extraction_window(monkeypatch):
    windows = []
    original = Trajectory.has_converged

    def recording(self, window=10, rtol=1e-4):
        windows.append(window)
        return original(self, window=window, rtol=rtol)

    monkeypatch.setattr(Trajectory, "has_converged", recording)
    grid = TimeConfig(t_end=50.0, n_points=51)
    run_sensitivity_batch([RATES], [0], SLOWER_RAF, INITIAL, grid,
                          simulation=SimulationSettings(steady_state_window=25))
    run_sensitivity_batch([RATES], [0], SLOWER_RAF, INITIAL, grid)
    assert windows == [25, 10], "Flag window is the extraction window, at least 10 points"
