"""
Tests for the closed-form steady-state map and the boundary-validity policy.
"""

import numpy as np
import pytest

from src.cascade.errors import BoundaryStateError
from src.cascade.schema import RateSet, Totals
from src.cascade.steady_state import (
    check_boundary,
    g1,
    g1_inverse,
    g2,
    g2_inverse,
    is_valid,
    steady_state,
    validated_steady_state,
)

TOTALS = Totals(Raf=100.0, Mek=100.0, Erk=100.0)
RATES = RateSet.from_sequence([0.1, 0.1, 0.1, 2.0, 0.1, 1.0])


def test_saturation_maps():
    assert g1(1.0) == 0.5
    assert g2(1.0) == pytest.approx(1.0 / 3.0)
    assert g1(0.0) == 0.0 and g2(0.0) == 0.0
    # g2 is sigmoidal: flatter than g1 at small inputs, steeper later
    assert g2(0.1) < g1(0.1)


@pytest.mark.parametrize("f", [0.01, 0.2, 0.5, 0.77, 0.99])
def test_inverses(f):
    assert g1(g1_inverse(f)) == pytest.approx(f, rel=1e-12)
    assert g2(g2_inverse(f)) == pytest.approx(f, rel=1e-12)


def test_reference_raf_is_fifty():
    ss = steady_state(TOTALS, RATES, upstream_input=1.0)
    assert ss.Raf == 50.0, "Raf = 100 * g1(1 * 0.1 / 0.1)"


def test_chaining():
    ss = steady_state(TOTALS, RATES, upstream_input=1.0)
    assert ss.Mek == pytest.approx(100.0 * g2(ss.Raf * 0.1 / 2.0))
    assert ss.Erk == pytest.approx(100.0 * g2(ss.Mek * 0.1 / 1.0))


def test_slower_raf_activation_lowers_erk():
    baseline = steady_state(TOTALS, RATES, 1.0)
    slower = steady_state(TOTALS, RATES.with_overrides({"raf_activate": 0.0333}), 1.0)
    assert slower.Raf < baseline.Raf
    assert slower.Erk < baseline.Erk, "Reducing Raf activation must reduce Erk"


def test_reference_state_is_valid():
    ss = validated_steady_state(TOTALS, RATES, 1.0, margin=0.01)
    assert is_valid(ss, TOTALS, 0.01)
    fractions = ss.fractions(TOTALS)
    assert all(0.01 < f < 0.99 for f in fractions.values())


def test_boundary_rejection_high():
    """Raf fraction pushed above 0.99 is rejected."""
    saturating = RATES.with_overrides({"raf_activate": 10.0, "raf_deactivate": 0.01})
    ss = steady_state(TOTALS, saturating, 1.0)
    assert ss.Raf / TOTALS.Raf > 0.99
    with pytest.raises(BoundaryStateError) as exc_info:
        check_boundary(ss, TOTALS, 0.01)
    assert exc_info.value.tier == "Raf"
    assert not is_valid(ss, TOTALS, 0.01)


def test_boundary_rejection_low():
    """Erk fraction pushed below 0.01 is rejected."""
    weak = RATES.with_overrides({"erk_activate": 0.0001, "erk_deactivate": 10.0})
    ss = steady_state(TOTALS, weak, 1.0)
    assert ss.Erk / TOTALS.Erk < 0.01
    with pytest.raises(BoundaryStateError) as exc_info:
        validated_steady_state(TOTALS, weak, 1.0, margin=0.01)
    assert exc_info.value.tier == "Erk"


def test_margin_is_configurable():
    ss = steady_state(TOTALS, RATES, 1.0)
    # Erk sits near 0.85 of its total: fine at 1%, rejected at 20%
    assert is_valid(ss, TOTALS, 0.01)
    assert not is_valid(ss, TOTALS, 0.2)


def test_negative_upstream_rejected():
    with pytest.raises(ValueError):
        steady_state(TOTALS, RATES, -1.0)


def test_vector_helpers():
    ss = steady_state(TOTALS, RATES, 1.0)
    assert ss.as_tuple() == (ss.Raf, ss.Mek, ss.Erk)
    assert np.isclose(ss.fractions(TOTALS)["Raf"], 0.5)
