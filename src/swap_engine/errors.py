"""Error taxonomy shared by the engine, the batch orchestrator and the API."""

from __future__ import annotations


class EngineError(Exception):
    """Base class for all engine errors."""

    status_code = 500


class ValidationError(EngineError):
    """Malformed input at creation or split time.

    ``errors`` maps each offending field to a human-readable reason so callers
    can surface every problem at once.
    """

    status_code = 400

    def __init__(self, errors: dict[str, str]) -> None:
        self.errors = dict(errors)
        detail = "; ".join(f"{field}: {reason}" for field, reason in self.errors.items())
        super().__init__(f"Validation failed ({detail})")


class NotFoundError(EngineError):
    """Unknown id, or an id not owned by the caller."""

    status_code = 404


class ConflictError(EngineError):
    """Operation incompatible with the current order state."""

    status_code = 409


class ProviderError(EngineError):
    """The swap provider rejected or failed a swap request."""

    status_code = 502


class TransientError(EngineError):
    """A collaborator is momentarily unavailable; safe to retry next tick."""

    status_code = 503
