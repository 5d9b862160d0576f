"""Exception types shared by the router, council and executor."""
from __future__ import annotations


class JanusError(Exception):
    """Base class for Janus failures surfaced to callers."""
    pass


class BudgetExceededError(JanusError):
    """Raised when estimated spend cannot fit the remaining budget."""
    pass


class PlanValidationError(JanusError):
    """Raised when an executor plan is malformed or violates the safety policy."""
    pass


class ProviderUnavailableError(JanusError):
    """Raised when a provider has no credentials or routing has no candidates left."""
    pass


class ProviderError(JanusError):
    """Raised when a provider call fails in transport or returns an HTTP error."""
    pass


class CouncilConfigError(JanusError):
    """Raised when the council roster references unknown or unusable models."""
    pass
