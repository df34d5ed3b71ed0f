"""Error taxonomy shared by the API, the queue worker and the pipeline."""
from typing import Optional


class OrchestratorError(Exception):
    """Base class for all article lifecycle errors."""


class NotFoundError(OrchestratorError):
    """Raised when an article or queue item does not exist."""


class InvalidTransition(OrchestratorError):
    """Raised when a status change is not allowed from the current status."""

    def __init__(self, current: Optional[str], target: str, message: Optional[str] = None):
        self.current = current
        self.target = target
        super().__init__(message or f"Cannot move article from '{current}' to '{target}'")


class ConflictError(OrchestratorError):
    """Raised when a single-flight or one-active-entry rule would be broken."""


class SchedulingError(OrchestratorError):
    """Raised for unusable due times (e.g. in the past)."""


class PhaseError(OrchestratorError):
    """Failure of one generation phase."""

    def __init__(self, message: str, phase: Optional[str] = None):
        self.phase = phase
        super().__init__(message)

    def with_phase(self, phase: str) -> "PhaseError":
        if self.phase is None:
            self.phase = phase
        return self


class RecoverableError(PhaseError):
    """Transient failure (network, timeout, rate limit) that may be retried."""


class FatalError(PhaseError):
    """Unrecoverable failure (bad input, policy violation) that aborts generation."""
