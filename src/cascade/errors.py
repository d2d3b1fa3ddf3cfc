"""Error kinds raised by the cascade simulators and the counterfactual engine."""

from __future__ import annotations


class CascadeError(Exception):
    """Base class for every error raised by :mod:`src.cascade`."""


class IntegrationError(CascadeError, RuntimeError):
    """Numerical divergence, solver failure or negative concentrations beyond tolerance."""


class BoundaryStateError(CascadeError, ValueError):
    """A steady state sits within the boundary margin of 0 or of its tier total."""

    def __init__(self, message: str, tier: str | None = None, fraction: float | None = None):
        super().__init__(message)
        self.tier = tier
        self.fraction = fraction


class InvalidObservationError(CascadeError, ValueError):
    """An observed steady state lies outside the valid range of its tier."""


class NoiseInversionError(CascadeError, ValueError):
    """A structural equation cannot be inverted for its exogenous noise at an observation."""
