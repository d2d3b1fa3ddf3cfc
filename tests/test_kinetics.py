"""
Tests for the cascade kinetic models.
"""

import numpy as np
import pytest

from src.cascade.kinetics import (
    N_REACTIONS,
    REACTIONS,
    STOICHIOMETRY,
    KineticModel,
    StochasticKineticModel,
)
from src.cascade.schema import SPECIES, TIER_SPECIES, CascadeState, RateSet


RATES = RateSet.from_sequence([0.1, 0.1, 0.1, 2.0, 0.1, 1.0])
INITIAL = CascadeState(E1=1.0, Raf=100.0, Mek=100.0, Erk=100.0)


def _analytic_state() -> CascadeState:
    """Detailed-balance steady state of the reference rates."""
    raf_active = 50.0
    k_mek = raf_active * RATES.ratio("Mek")
    norm = 1 + k_mek + k_mek ** 2
    mek = 100.0 * np.array([1.0, k_mek, k_mek ** 2]) / norm
    k_erk = mek[2] * RATES.ratio("Erk")
    norm = 1 + k_erk + k_erk ** 2
    erk = 100.0 * np.array([1.0, k_erk, k_erk ** 2]) / norm
    return CascadeState(
        E1=1.0, Raf=50.0, PRaf=raf_active,
        Mek=mek[0], PMek=mek[1], PPMek=mek[2],
        Erk=erk[0], PErk=erk[1], PPErk=erk[2],
    )


def test_every_reaction_conserves_its_tier():
    """Each stoichiometry column sums to zero over the tier it acts in."""
    idx = {name: i for i, name in enumerate(SPECIES)}
    for j, (tier, *_rest) in enumerate(REACTIONS):
        column = STOICHIOMETRY[:, j]
        tier_rows = [idx[s] for s in TIER_SPECIES[tier]]
        assert column[tier_rows].sum() == 0.0, f"Reaction {j} must conserve {tier}"
        other_rows = [i for i in range(len(SPECIES)) if i not in tier_rows]
        assert np.all(column[other_rows] == 0.0), f"Reaction {j} must only touch {tier}"


def test_drift_vanishes_at_analytic_steady_state():
    transition = KineticModel.build(INITIAL, RATES)
    drift = transition(0.0, _analytic_state().as_array())
    assert np.allclose(drift, 0.0, atol=1e-9), f"Drift should vanish at steady state, got {drift}"


def test_drift_conserves_totals_anywhere():
    transition = KineticModel.build(INITIAL, RATES)
    rng = np.random.default_rng(0)
    idx = {name: i for i, name in enumerate(SPECIES)}
    for _ in range(20):
        y = rng.uniform(0, 100, size=len(SPECIES))
        drift = transition(0.0, y)
        for members in TIER_SPECIES.values():
            assert abs(sum(drift[idx[s]] for s in members)) < 1e-9
        assert drift[idx["E1"]] == 0.0, "E1 is constant"


def test_frozen_tier_has_no_drift_or_diffusion():
    idx = {name: i for i, name in enumerate(SPECIES)}
    transition = StochasticKineticModel.build(INITIAL, RATES, noise_scale=1.0, frozen_tiers=["Raf"])
    y = INITIAL.as_array()
    drift = transition.drift(0.0, y)
    diffusion = transition.diffusion(0.0, y)
    for s in TIER_SPECIES["Raf"]:
        assert drift[idx[s]] == 0.0
        assert np.all(diffusion[idx[s]] == 0.0)


def test_diffusion_scales_with_sqrt_flux():
    transition = StochasticKineticModel.build(INITIAL, RATES, noise_scale=0.5)
    y = INITIAL.as_array()
    diffusion = transition.diffusion(0.0, y)
    assert diffusion.shape == (len(SPECIES), N_REACTIONS)
    assert transition.n_noise == N_REACTIONS

    fluxes = transition.fluxes(y)
    # Raf -> PRaf is reaction 0 with flux ka * E1 * Raf = 10
    assert fluxes[0] == pytest.approx(10.0)
    idx = {name: i for i, name in enumerate(SPECIES)}
    assert diffusion[idx["PRaf"], 0] == pytest.approx(0.5 * np.sqrt(10.0))
    assert diffusion[idx["Raf"], 0] == pytest.approx(-0.5 * np.sqrt(10.0))


def test_builders_reject_bad_arguments():
    with pytest.raises(ValueError):
        StochasticKineticModel.build(INITIAL, RATES, noise_scale=-1.0)
    with pytest.raises(ValueError):
        KineticModel.build(INITIAL, RATES, frozen_tiers=["Ras"])


def test_transition_carries_initial_totals():
    transition = KineticModel.build(INITIAL, RATES)
    assert transition.totals.Raf == 100.0
    assert transition.stochastic is False
    assert StochasticKineticModel.build(INITIAL, RATES).stochastic is True
