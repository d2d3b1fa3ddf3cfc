"""
Counterfactual inference on the cascade SCM: abduction, action, prediction.

Given a steady state observed under some rates, the question is what a tier
would have been, for that same observed system, under an intervention:

1. Abduction: invert each structural equation at the observation to recover
   the exogenous noise of every tier.
2. Action: swap in the intervened structural equation(s); all other
   equations are kept.
3. Prediction: push the abducted noise through the intervened model and
   read off the target tier.

Abducted noise is a point estimate. With ``posterior_spread == 0`` every draw
reuses it and ``sample(n)`` returns ``n`` identical effects. With
``posterior_spread > 0`` each draw re-samples the noise of every tier from
``Normal(u_hat, posterior_spread)`` using the query's own seeded generator,
so repeated ``sample`` calls on one query return the same draws. In additive
mode draws with a non-positive intervened ratio ``k + u`` are redrawn, and a
point estimate in that position raises NoiseInversionError.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from src.config import Config
from src.utils.logging_utils import get_logger

from .errors import BoundaryStateError, InvalidObservationError, NoiseInversionError
from .schema import TIERS, InterventionSpec, SCMSettings
from .scm import NoiseVector, StructuralCausalModel
from .steady_state import SteadyStateVector, check_boundary

logger = get_logger(__name__)

_MAX_REDRAWS = 1000


def _admissible(model: StructuralCausalModel, draws: np.ndarray) -> np.ndarray:
    """Rows of an (n, 3) noise array every equation of ``model`` admits."""
    ok = np.ones(len(draws), dtype=bool)
    for i, tier in enumerate(TIERS):
        equation = model.equations[tier]
        ok &= np.array([equation.admits(u) for u in draws[:, i]], dtype=bool)
    return ok


def validate_observation(
    model: StructuralCausalModel, observation: SteadyStateVector, margin: float
) -> None:
    """
    Raises:
        InvalidObservationError: If any observed tier is non-finite or outside
            the valid range (strictly inside the boundary margin)
    """
    for tier in TIERS:
        if not np.isfinite(observation.get(tier)):
            raise InvalidObservationError(f"Observed {tier} is not finite")
    try:
        check_boundary(observation, model.totals, margin)
    except BoundaryStateError as e:
        raise InvalidObservationError(f"Observation outside the valid range: {e}") from e


def abduct(
    model: StructuralCausalModel, observation: SteadyStateVector, margin: Optional[float] = None
) -> NoiseVector:
    """
    Recover the unique noise vector that reproduces ``observation`` under ``model``.

    Each tier's equation is inverted at its observed parent level, so
    ``model.evaluate(abduct(model, obs)) == obs`` up to floating point.
    """
    margin = Config.BOUNDARY_MARGIN if margin is None else margin
    validate_observation(model, observation, margin)
    observed = {tier: observation.get(tier) for tier in TIERS}
    noise = {}
    for tier in model.order:
        equation = model.equations[tier]
        noise[tier] = equation.invert(model.parent_value(tier, observed), observed[tier])
    return NoiseVector(**noise)


def act(model: StructuralCausalModel, intervention: InterventionSpec) -> StructuralCausalModel:
    return model.intervene(intervention)


def predict(model: StructuralCausalModel, noise: NoiseVector) -> SteadyStateVector:
    return model.evaluate(noise)


@dataclass(frozen=True, eq=False)
class CounterfactualQuery:
    """
    A single counterfactual question about one observation.

    Attributes:
        model: SCM built for the rates that generated the observation
        observation: Observed steady state
        intervention: Rate overrides or hard Raf value
        target_tier: Tier whose counterfactual change is reported
        boundary_margin: Validity margin for the observation
        posterior_spread: Std of noise re-sampled around the abducted point
        seed: Seed of the query's generator (used when posterior_spread > 0)
    """
    model: StructuralCausalModel
    observation: SteadyStateVector
    intervention: InterventionSpec
    target_tier: str = "Erk"
    boundary_margin: float = 0.01
    posterior_spread: float = 0.0
    seed: Optional[int] = None

    def __post_init__(self) -> None:
        if self.target_tier not in TIERS:
            raise ValueError(f"Unknown target tier: {self.target_tier}")
        if self.posterior_spread < 0:
            raise ValueError("posterior_spread must be non-negative")

    def abduct(self) -> NoiseVector:
        return abduct(self.model, self.observation, self.boundary_margin)

    def intervened_model(self) -> StructuralCausalModel:
        return act(self.model, self.intervention)

    def counterfactual(self) -> SteadyStateVector:
        """Counterfactual steady state at the abducted point noise."""
        return predict(self.intervened_model(), self.abduct())

    def point_effect(self) -> float:
        return self.counterfactual().get(self.target_tier) - self.observation.get(self.target_tier)

    def sample(self, n: int) -> np.ndarray:
        """
        Draw ``n`` causal-effect samples (counterfactual minus observed target).

        Raises:
            ValueError: If n < 1
            InvalidObservationError: If the observation is outside the valid range
            NoiseInversionError: If a structural equation cannot be inverted
        """
        if n < 1:
            raise ValueError("n must be at least 1")
        noise = self.abduct()
        intervened = self.intervened_model()
        observed = self.observation.get(self.target_tier)

        if self.posterior_spread == 0:
            if not _admissible(intervened, noise.as_array()[None, :])[0]:
                raise NoiseInversionError(
                    "Abducted noise makes an intervened additive ratio non-positive"
                )
            effect = predict(intervened, noise).get(self.target_tier) - observed
            return np.full(n, effect, dtype=float)

        rng = np.random.default_rng(self.seed)
        center = noise.as_array()
        draws = center + rng.normal(0.0, self.posterior_spread, size=(n, len(TIERS)))
        # Additive draws with k + u <= 0 are redrawn (truncated posterior)
        for _ in range(_MAX_REDRAWS):
            rejected = ~_admissible(intervened, draws)
            if not rejected.any():
                break
            draws[rejected] = center + rng.normal(
                0.0, self.posterior_spread, size=(int(rejected.sum()), len(TIERS))
            )
        else:
            raise NoiseInversionError(
                f"No admissible noise draws after {_MAX_REDRAWS} rounds; posterior_spread is too wide"
            )

        effects = np.empty(n, dtype=float)
        for i, row in enumerate(draws):
            effects[i] = predict(intervened, NoiseVector(*row)).get(self.target_tier) - observed
        return effects


def counterfactual_query(
    model: StructuralCausalModel,
    observation: SteadyStateVector,
    intervention: InterventionSpec,
    target_tier: Optional[str] = None,
    boundary_margin: Optional[float] = None,
    posterior_spread: float = 0.0,
    seed: Optional[int] = None,
) -> CounterfactualQuery:
    """Construct a CounterfactualQuery; ``target_tier`` defaults to the intervention's."""
    return CounterfactualQuery(
        model=model,
        observation=observation,
        intervention=intervention,
        target_tier=target_tier or intervention.target_tier,
        boundary_margin=Config.BOUNDARY_MARGIN if boundary_margin is None else boundary_margin,
        posterior_spread=posterior_spread,
        seed=Config.DEFAULT_RANDOM_SEED if seed is None else seed,
    )


class CounterfactualEngine:
    """Issues counterfactual queries with one set of SCM settings."""

    def __init__(self, settings: Optional[SCMSettings] = None):
        self.settings = settings or SCMSettings()

    def query(
        self,
        model: StructuralCausalModel,
        observation: SteadyStateVector,
        intervention: InterventionSpec,
        seed: Optional[int] = None,
    ) -> CounterfactualQuery:
        return counterfactual_query(
            model,
            observation,
            intervention,
            boundary_margin=self.settings.boundary_margin,
            posterior_spread=self.settings.posterior_spread,
            seed=seed,
        )

    def effect_samples(
        self,
        model: StructuralCausalModel,
        observation: SteadyStateVector,
        intervention: InterventionSpec,
        seed: Optional[int] = None,
    ) -> np.ndarray:
        samples = self.query(model, observation, intervention, seed=seed).sample(self.settings.n_samples)
        logger.debug(
            f"Counterfactual {intervention.target_tier}: mean effect {samples.mean():.6f} over {len(samples)} draws"
        )
        return samples
