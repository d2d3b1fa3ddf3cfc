"""Raf/Mek/Erk cascade: mechanistic simulation, steady-state SCM and counterfactuals."""
from .schema import BatchConfig, CascadeState, InterventionSpec, RateSet, Totals, load_batch
from .simulate import Trajectory, simulate, simulate_deterministic, simulate_stochastic
from .steady_state import SteadyStateVector, steady_state
from .scm import StructuralCausalModel, build_scm
from .counterfactual import CounterfactualEngine, CounterfactualQuery, counterfactual_query
from .harness import SensitivityReport, run_batch, run_sensitivity_batch

__all__ = [
    "BatchConfig",
    "CascadeState",
    "CounterfactualEngine",
    "CounterfactualQuery",
    "InterventionSpec",
    "RateSet",
    "SensitivityReport",
    "SteadyStateVector",
    "StructuralCausalModel",
    "Totals",
    "Trajectory",
    "build_scm",
    "counterfactual_query",
    "load_batch",
    "run_batch",
    "run_sensitivity_batch",
    "simulate",
    "simulate_deterministic",
    "simulate_stochastic",
    "steady_state",
]
