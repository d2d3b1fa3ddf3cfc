"""Schema validation for cascade states, rate sets and batch configuration files."""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Optional, List, Dict, Literal, Mapping, Sequence, Tuple
from pathlib import Path
import numpy as np
import yaml

from src.config import Config


# Cascade topology: three tiers, one upstream enzyme, nine species.
TIERS: Tuple[str, ...] = ("Raf", "Mek", "Erk")

SPECIES: Tuple[str, ...] = ("E1", "Raf", "PRaf", "Mek", "PMek", "PPMek", "Erk", "PErk", "PPErk")

TIER_SPECIES: Dict[str, Tuple[str, ...]] = {
    "Raf": ("Raf", "PRaf"),
    "Mek": ("Mek", "PMek", "PPMek"),
    "Erk": ("Erk", "PErk", "PPErk"),
}

# Active (fully phosphorylated) form of each tier
ACTIVE_SPECIES: Dict[str, str] = {"Raf": "PRaf", "Mek": "PPMek", "Erk": "PPErk"}

RATE_NAMES: Tuple[str, ...] = (
    "raf_activate",
    "raf_deactivate",
    "mek_activate",
    "mek_deactivate",
    "erk_activate",
    "erk_deactivate",
)

TIER_RATES: Dict[str, Tuple[str, str]] = {
    tier: (f"{tier.lower()}_activate", f"{tier.lower()}_deactivate") for tier in TIERS
}


class RateSet(BaseModel):
    """Activation/deactivation rate constants for the three tiers. All rates are positive."""
    model_config = ConfigDict(frozen=True)

    raf_activate: float = Field(..., gt=0, description="Raf activation rate (per unit E1)")
    raf_deactivate: float = Field(..., gt=0, description="Raf deactivation rate")
    mek_activate: float = Field(..., gt=0, description="Mek activation rate (per unit active Raf)")
    mek_deactivate: float = Field(..., gt=0, description="Mek deactivation rate")
    erk_activate: float = Field(..., gt=0, description="Erk activation rate (per unit active Mek)")
    erk_deactivate: float = Field(..., gt=0, description="Erk deactivation rate")

    @classmethod
    def from_sequence(cls, values: Sequence[float]) -> "RateSet":
        """Build a RateSet from six values ordered as RATE_NAMES."""
        if len(values) != len(RATE_NAMES):
            raise ValueError(f"Expected {len(RATE_NAMES)} rates, got {len(values)}")
        return cls(**dict(zip(RATE_NAMES, (float(v) for v in values))))

    def ratio(self, tier: str) -> float:
        """Activation over deactivation rate for a tier."""
        activate, deactivate = TIER_RATES[tier]
        return getattr(self, activate) / getattr(self, deactivate)

    def with_overrides(self, overrides: Mapping[str, float]) -> "RateSet":
        """Return a validated copy with some rates replaced."""
        unknown = set(overrides) - set(RATE_NAMES)
        if unknown:
            raise ValueError(f"Unknown rate names: {sorted(unknown)}")
        return RateSet(**{**self.model_dump(), **{k: float(v) for k, v in overrides.items()}})

    def as_array(self) -> np.ndarray:
        return np.array([getattr(self, name) for name in RATE_NAMES], dtype=float)


class Totals(BaseModel):
    """Conserved total of each tier."""
    model_config = ConfigDict(frozen=True)

    Raf: float = Field(..., gt=0)
    Mek: float = Field(..., gt=0)
    Erk: float = Field(..., gt=0)

    def for_tier(self, tier: str) -> float:
        return float(getattr(self, tier))


class CascadeState(BaseModel):
    """Concentrations of the nine cascade species."""
    model_config = ConfigDict(frozen=True)

    E1: float = Field(..., ge=0, description="Upstream enzyme level (constant)")
    Raf: float = Field(..., ge=0)
    PRaf: float = Field(default=0.0, ge=0)
    Mek: float = Field(..., ge=0)
    PMek: float = Field(default=0.0, ge=0)
    PPMek: float = Field(default=0.0, ge=0)
    Erk: float = Field(..., ge=0)
    PErk: float = Field(default=0.0, ge=0)
    PPErk: float = Field(default=0.0, ge=0)

    @model_validator(mode="after")
    def validate_tiers_populated(self):
        """Every tier needs a positive total."""
        for tier, members in TIER_SPECIES.items():
            if sum(getattr(self, s) for s in members) <= 0:
                raise ValueError(f"Tier {tier} has zero total concentration")
        return self

    @classmethod
    def from_totals(cls, totals: Totals, e1: float) -> "CascadeState":
        """All mass unphosphorylated."""
        return cls(E1=e1, Raf=totals.Raf, Mek=totals.Mek, Erk=totals.Erk)

    @classmethod
    def from_array(cls, values: Sequence[float]) -> "CascadeState":
        if len(values) != len(SPECIES):
            raise ValueError(f"Expected {len(SPECIES)} species values, got {len(values)}")
        return cls(**dict(zip(SPECIES, (float(v) for v in values))))

    def as_array(self) -> np.ndarray:
        return np.array([getattr(self, name) for name in SPECIES], dtype=float)

    def totals(self) -> Totals:
        """Per-tier conserved totals, fixed by this (initial) state."""
        return Totals(**{tier: sum(getattr(self, s) for s in members) for tier, members in TIER_SPECIES.items()})

    def active(self, tier: str) -> float:
        return float(getattr(self, ACTIVE_SPECIES[tier]))

    def with_tier_active(self, tier: str, value: float) -> "CascadeState":
        """Move a tier's whole mass into (value active, rest unphosphorylated)."""
        total = self.totals().for_tier(tier)
        if not 0.0 <= value <= total:
            raise ValueError(f"{tier} active value {value} outside [0, {total}]")
        members = TIER_SPECIES[tier]
        update = {s: 0.0 for s in members}
        update[members[0]] = total - value
        update[ACTIVE_SPECIES[tier]] = value
        return CascadeState(**{**self.model_dump(), **update})


class TimeConfig(BaseModel):
    """Time grid configuration."""
    t_start: float = Field(default=0.0, ge=0, description="Grid start")
    t_end: float = Field(..., gt=0, description="Grid end")
    n_points: int = Field(default=401, ge=2, description="Number of grid points")

    @model_validator(mode="after")
    def validate_t_end(self):
        """End time must be after start time."""
        if self.t_end <= self.t_start:
            raise ValueError("t_end must be after t_start")
        return self

    @property
    def grid(self) -> np.ndarray:
        return np.linspace(self.t_start, self.t_end, self.n_points)


class SimulationSettings(BaseModel):
    """Integrator settings shared by both simulation modes."""
    noise_scale: float = Field(default_factory=lambda: Config.NOISE_SCALE, ge=0, description="Langevin diffusion scale")
    negative_tolerance: float = Field(
        default_factory=lambda: Config.NEGATIVE_TOLERANCE, ge=0, lt=1,
        description="Clampable negative excursion, as a fraction of the tier total",
    )
    max_step: float = Field(default=0.01, gt=0, description="Largest Euler-Maruyama substep")
    rtol: float = Field(default=1e-8, gt=0, description="ODE relative tolerance")
    atol: float = Field(default=1e-10, gt=0, description="ODE absolute tolerance")
    steady_state_window: int = Field(default=1, ge=1, description="Final grid points averaged into a steady state")
    convergence_rtol: float = Field(default=1e-4, gt=0, description="Flatness threshold for the convergence flag")


class SCMSettings(BaseModel):
    """Structural causal model and counterfactual settings."""
    boundary_margin: float = Field(
        default_factory=lambda: Config.BOUNDARY_MARGIN, ge=0, lt=0.5,
        description="Reject steady states within this fraction of 0 or the tier total",
    )
    noise_mode: Literal["multiplicative", "additive"] = Field(
        default="multiplicative", description="How exogenous noise perturbs the rate ratio"
    )
    posterior_spread: float = Field(default=0.0, ge=0, description="Std of noise re-sampled around the abducted point")
    n_samples: int = Field(default=100, ge=1, description="Counterfactual draws per trial")


class InterventionSpec(BaseModel):
    """Intervention on the cascade: new rates or a hard Raf value."""
    model_config = ConfigDict(frozen=True)

    rate_overrides: Dict[str, float] = Field(default_factory=dict, description="Rates replaced by the intervention")
    raf_value: Optional[float] = Field(default=None, ge=0, description="Hard do(Raf = value)")
    target_tier: Literal["Raf", "Mek", "Erk"] = Field(default="Erk", description="Tier whose effect is measured")

    @field_validator("rate_overrides")
    @classmethod
    def validate_overrides(cls, v: Dict[str, float]) -> Dict[str, float]:
        unknown = set(v) - set(RATE_NAMES)
        if unknown:
            raise ValueError(f"Unknown rate names: {sorted(unknown)}")
        for name, value in v.items():
            if value <= 0:
                raise ValueError(f"Rate {name} must be positive, got {value}")
        return v

    @model_validator(mode="after")
    def validate_exactly_one(self):
        """Exactly one intervention kind."""
        if bool(self.rate_overrides) == (self.raf_value is not None):
            raise ValueError("Specify exactly one of rate_overrides or raf_value")
        return self

    @property
    def changed_tiers(self) -> List[str]:
        """Tiers whose structural equation the intervention replaces."""
        if self.raf_value is not None:
            return ["Raf"]
        return [t for t in TIERS if set(TIER_RATES[t]) & set(self.rate_overrides)]

    def apply(self, rates: RateSet) -> RateSet:
        """Rates in effect under the intervention."""
        return rates.with_overrides(self.rate_overrides) if self.rate_overrides else rates


class SamplerConfig(BaseModel):
    """Random log-uniform rate-set generator."""
    n: int = Field(..., ge=1, description="Number of candidate rate sets")
    low: float = Field(default=0.01, gt=0, description="Lower bound for every rate")
    high: float = Field(default=10.0, gt=0, description="Upper bound for every rate")
    seed: int = Field(default_factory=lambda: Config.DEFAULT_RANDOM_SEED, description="Generator seed")

    @model_validator(mode="after")
    def validate_bounds(self):
        if self.high <= self.low:
            raise ValueError("high must be greater than low")
        return self


class OutputsConfig(BaseModel):
    """Output configuration."""
    out_dir: str = Field(default="runs", description="Output directory")
    save_csv: bool = Field(default=True, description="Save CSV reports")


class BatchConfig(BaseModel):
    """Schema for sensitivity batch files."""

    name: str = Field(..., description="Batch name")
    description: Optional[str] = Field(default=None, description="Batch description")
    mode: Literal["deterministic", "stochastic"] = Field(default="deterministic", description="Simulation mode")
    seeds: List[int] = Field(default_factory=lambda: [Config.DEFAULT_RANDOM_SEED], min_length=1)

    initial_state: CascadeState = Field(..., description="Initial species concentrations")
    time: TimeConfig = Field(..., description="Time grid")
    rate_sets: List[RateSet] = Field(default_factory=list, description="Explicit candidate rate sets")
    sampler: Optional[SamplerConfig] = Field(default=None, description="Random candidate generator")
    intervention: InterventionSpec = Field(..., description="Intervention applied in every trial")

    simulation: SimulationSettings = Field(default_factory=SimulationSettings)
    scm: SCMSettings = Field(default_factory=SCMSettings)
    max_workers: int = Field(default_factory=lambda: Config.MAX_WORKERS, ge=1)
    outputs: OutputsConfig = Field(default_factory=OutputsConfig)

    @model_validator(mode="after")
    def validate_candidates(self):
        """Need at least one source of rate sets."""
        if not self.rate_sets and self.sampler is None:
            raise ValueError("Provide rate_sets, a sampler, or both")
        return self

    @model_validator(mode="after")
    def validate_raf_value(self):
        """A hard Raf value must fit inside the Raf total of the initial state."""
        raf_value = self.intervention.raf_value
        if raf_value is not None:
            total = self.initial_state.totals().Raf
            if raf_value > total:
                raise ValueError(f"intervention.raf_value {raf_value} exceeds the Raf total {total}")
        return self


def load_batch(path: str) -> BatchConfig:
    """Load and validate a sensitivity batch from a YAML file."""
    batch_path = Path(path)
    if not batch_path.exists():
        raise FileNotFoundError(f"Batch file not found: {path}")

    with open(batch_path, "r") as f:
        data = yaml.safe_load(f)

    # Rate sets may be written as six-element lists in RATE_NAMES order
    if "rate_sets" in data and isinstance(data["rate_sets"], list):
        data["rate_sets"] = [
            RateSet.from_sequence(r) if isinstance(r, (list, tuple)) else r for r in data["rate_sets"]
        ]

    return BatchConfig(**data)
