"""
Tests for the cascade structural causal model.
"""

import networkx as nx
import pytest

from src.cascade.errors import NoiseInversionError
from src.cascade.schema import InterventionSpec, RateSet, Totals
from src.cascade.scm import NoiseVector, StructuralEquation, build_scm
from src.cascade.steady_state import steady_state

TOTALS = Totals(Raf=100.0, Mek=100.0, Erk=100.0)
RATES = RateSet.from_sequence([0.1, 0.1, 0.1, 2.0, 0.1, 1.0])


@pytest.mark.parametrize("noise_mode", ["multiplicative", "additive"])
def test_zero_noise_reproduces_steady_state(noise_mode):
    model = build_scm(TOTALS, RATES, upstream_input=1.0, noise_mode=noise_mode)
    predicted = model.evaluate(NoiseVector())
    analytic = steady_state(TOTALS, RATES, 1.0)
    for tier in ("Raf", "Mek", "Erk"):
        assert predicted.get(tier) == pytest.approx(analytic.get(tier), rel=1e-12)


def test_graph_is_a_chain():
    model = build_scm(TOTALS, RATES)
    assert list(nx.topological_sort(model.graph)) == ["E1", "Raf", "Mek", "Erk"]
    assert model.order == ["Raf", "Mek", "Erk"]
    assert model.parent("Raf") == "E1"
    assert model.parent("Erk") == "Mek"


def test_equations_are_pure():
    model = build_scm(TOTALS, RATES)
    eq = model.equations["Mek"]
    assert eq(50.0, 0.3) == eq(50.0, 0.3)


@pytest.mark.parametrize("noise_mode", ["multiplicative", "additive"])
def test_equations_increase_with_noise(noise_mode):
    model = build_scm(TOTALS, RATES, noise_mode=noise_mode)
    for tier in ("Raf", "Mek", "Erk"):
        eq = model.equations[tier]
        assert eq(30.0, -0.05) < eq(30.0, 0.0) < eq(30.0, 0.05), f"{tier} must be monotonic in noise"


def test_rate_intervention_keeps_downstream_equations():
    model = build_scm(TOTALS, RATES)
    intervention = InterventionSpec(rate_overrides={"raf_activate": 0.0333})
    intervened = model.intervene(intervention)
    assert intervened.equations["Mek"] is model.equations["Mek"]
    assert intervened.equations["Erk"] is model.equations["Erk"]
    assert intervened.equations["Raf"].ratio == pytest.approx(0.333)
    assert model.equations["Raf"].ratio == pytest.approx(1.0), "Original model is untouched"
    assert intervened.rates.raf_activate == 0.0333


def test_hard_intervention_mutilates_graph():
    model = build_scm(TOTALS, RATES)
    intervened = model.intervene(InterventionSpec(raf_value=25.0))
    assert not intervened.graph.has_edge("E1", "Raf")
    assert model.graph.has_edge("E1", "Raf")
    result = intervened.evaluate(NoiseVector(Raf=3.0))
    assert result.Raf == 25.0, "Fixed Raf ignores its noise"
    assert result.Mek == pytest.approx(model.equations["Mek"](25.0, 0.0))


def test_hard_intervention_outside_range():
    model = build_scm(TOTALS, RATES)
    with pytest.raises(ValueError):
        model.intervene(InterventionSpec(raf_value=150.0))


def test_invert_errors():
    eq = StructuralEquation(tier="Mek", total=100.0, ratio=0.05)
    with pytest.raises(NoiseInversionError):
        eq.invert(0.0, 40.0)
    with pytest.raises(NoiseInversionError):
        eq.invert(50.0, 100.0)
    fixed = StructuralEquation(tier="Raf", total=100.0, ratio=1.0, fixed_value=20.0)
    with pytest.raises(NoiseInversionError):
        fixed.invert(1.0, 20.0)


def test_build_scm_validates_arguments():
    with pytest.raises(ValueError):
        build_scm(TOTALS, RATES, upstream_input=0.0)
    with pytest.raises(ValueError):
        build_scm(TOTALS, RATES, noise_mode="exponential")
