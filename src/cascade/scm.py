"""
Structural causal model of the cascade steady state.

The SCM has one structural equation per tier, E1 -> Raf -> Mek -> Erk. Each
equation is the tier's closed-form steady state with an exogenous noise term
``u`` perturbing the effective ratio ``a = parent * k_activate / k_deactivate``:

    multiplicative:  a_u = parent * k * exp(u)
    additive:        a_u = parent * (k + u)        (floored at 0)

Both forms are strictly monotonic in ``u`` and are inverted in closed form,
so abduction is an explicit computation, not an inference query. With
``u = 0`` the SCM reproduces :func:`steady_state` exactly.

In additive mode ``k + u`` must stay positive. Evaluation floors the ratio
at 0, but counterfactual prediction never feeds such a noise value in:
:meth:`StructuralEquation.admits` screens it first.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Literal, Optional

import networkx as nx
import numpy as np

from src.utils.data_validation import validate_dag_structure

from .errors import NoiseInversionError
from .schema import TIERS, InterventionSpec, RateSet, Totals
from .steady_state import SATURATION, SteadyStateVector

NoiseMode = Literal["multiplicative", "additive"]

UPSTREAM_NODE = "E1"


@dataclass(frozen=True)
class NoiseVector:
    """Exogenous noise of each tier."""
    Raf: float = 0.0
    Mek: float = 0.0
    Erk: float = 0.0

    def get(self, tier: str) -> float:
        return float(getattr(self, tier))

    def as_array(self) -> np.ndarray:
        return np.array([self.Raf, self.Mek, self.Erk], dtype=float)


@dataclass(frozen=True)
class StructuralEquation:
    """
    Steady-state structural equation of one tier.

    ``fixed_value`` turns the equation into a constant (hard intervention);
    a constant equation ignores its parent and noise and cannot be inverted.
    """
    tier: str
    total: float
    ratio: float
    noise_mode: NoiseMode = "multiplicative"
    fixed_value: Optional[float] = None

    def effective_ratio(self, parent_value: float, noise: float) -> float:
        if self.noise_mode == "multiplicative":
            return parent_value * self.ratio * float(np.exp(noise))
        return max(parent_value * (self.ratio + noise), 0.0)

    def admits(self, noise: float) -> bool:
        """False if additive noise would make the ratio ``k + u`` non-positive."""
        if self.fixed_value is not None or self.noise_mode == "multiplicative":
            return True
        return self.ratio + noise > 0

    def __call__(self, parent_value: float, noise: float) -> float:
        if self.fixed_value is not None:
            return float(self.fixed_value)
        saturation, _ = SATURATION[self.tier]
        return self.total * saturation(self.effective_ratio(parent_value, noise))

    def invert(self, parent_value: float, observed: float) -> float:
        """
        Noise ``u`` with ``self(parent_value, u) == observed``.

        Raises:
            NoiseInversionError: If the equation is constant, the parent level
                is not positive, or the observation is not strictly inside
                (0, total)
        """
        if self.fixed_value is not None:
            raise NoiseInversionError(f"{self.tier} equation is fixed by an intervention")
        if not parent_value > 0:
            raise NoiseInversionError(f"{self.tier} parent level {parent_value} is not positive")
        fraction = observed / self.total
        if not 0.0 < fraction < 1.0:
            raise NoiseInversionError(f"{self.tier} fraction {fraction} has no finite preimage")
        _, inverse = SATURATION[self.tier]
        target = inverse(fraction)
        if self.noise_mode == "multiplicative":
            noise = float(np.log(target / (parent_value * self.ratio)))
        else:
            noise = target / parent_value - self.ratio
        if not np.isfinite(noise):
            raise NoiseInversionError(f"{self.tier} noise is not finite at observation {observed}")
        return noise


@dataclass(frozen=True, eq=False)
class StructuralCausalModel:
    """
    Three linked structural equations plus the causal graph they induce.

    The graph is a networkx DiGraph E1 -> Raf -> Mek -> Erk; a hard
    intervention on a tier removes its incoming edge (the mutilated graph of
    do-calculus).
    """
    totals: Totals
    rates: RateSet
    upstream_input: float
    equations: Dict[str, StructuralEquation]
    graph: nx.DiGraph

    def parent(self, tier: str) -> Optional[str]:
        parents = list(self.graph.predecessors(tier))
        return parents[0] if parents else None

    @property
    def order(self) -> List[str]:
        """Tiers in causal (topological) order."""
        return [node for node in nx.topological_sort(self.graph) if node in self.equations]

    def parent_value(self, tier: str, levels: Dict[str, float]) -> float:
        parent = self.parent(tier)
        if parent is None:
            return 0.0
        if parent == UPSTREAM_NODE:
            return self.upstream_input
        return levels[parent]

    def evaluate(self, noise: NoiseVector) -> SteadyStateVector:
        """Propagate a noise vector through the equations in causal order."""
        levels: Dict[str, float] = {}
        for tier in self.order:
            levels[tier] = self.equations[tier](self.parent_value(tier, levels), noise.get(tier))
        return SteadyStateVector(**levels)

    def intervene(self, intervention: InterventionSpec) -> "StructuralCausalModel":
        """
        Intervened model: equations of the tiers the intervention touches are
        replaced, every other equation is kept unchanged.
        """
        new_rates = intervention.apply(self.rates)
        equations = dict(self.equations)
        graph = self.graph.copy()
        if intervention.raf_value is not None:
            total = self.totals.Raf
            if not 0.0 <= intervention.raf_value <= total:
                raise ValueError(f"raf_value {intervention.raf_value} outside [0, {total}]")
            equations["Raf"] = replace(equations["Raf"], fixed_value=float(intervention.raf_value))
            graph.remove_edges_from(list(graph.in_edges("Raf")))
        else:
            for tier in intervention.changed_tiers:
                equations[tier] = replace(equations[tier], ratio=new_rates.ratio(tier))
        return StructuralCausalModel(
            totals=self.totals,
            rates=new_rates,
            upstream_input=self.upstream_input,
            equations=equations,
            graph=graph,
        )


def cascade_graph(tiers: Iterable[str] = TIERS) -> nx.DiGraph:
    graph = nx.DiGraph()
    chain = [UPSTREAM_NODE, *tiers]
    graph.add_nodes_from(chain)
    graph.add_edges_from(zip(chain[:-1], chain[1:]))
    validate_dag_structure(graph, required_nodes=chain)
    return graph


def build_scm(
    totals: Totals,
    rates: RateSet,
    upstream_input: float = 1.0,
    noise_mode: NoiseMode = "multiplicative",
) -> StructuralCausalModel:
    """
    Build the cascade SCM from the analytical steady-state map.

    Args:
        totals: Conserved total of each tier
        rates: Rate constants generating the observations
        upstream_input: Upstream enzyme level E1 (exogenous input to Raf)
        noise_mode: "multiplicative" or "additive" noise on the rate ratio

    Returns:
        StructuralCausalModel whose zero-noise evaluation is the analytical steady state
    """
    if noise_mode not in ("multiplicative", "additive"):
        raise ValueError(f"Unknown noise_mode: {noise_mode}")
    if not upstream_input > 0:
        raise ValueError("upstream_input must be positive")
    equations = {
        tier: StructuralEquation(
            tier=tier,
            total=totals.for_tier(tier),
            ratio=rates.ratio(tier),
            noise_mode=noise_mode,
        )
        for tier in TIERS
    }
    return StructuralCausalModel(
        totals=totals,
        rates=rates,
        upstream_input=float(upstream_input),
        equations=equations,
        graph=cascade_graph(),
    )
