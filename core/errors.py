"""
Service Errors

Typed errors surfaced by the battle record engine and schedule services.
The HTTP layer maps them to status codes; the scheduler never lets them
escape a tick.
"""

from typing import Any, Optional


class BattleError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(BattleError):
    """Malformed input. Raised before any write happens."""

    status_code = 422


class NotFoundError(BattleError):
    """Unknown clan, roster member, clan battle or master battle."""

    status_code = 404


class ConflictError(BattleError):
    """Uniqueness violation, e.g. a clan recording the same battle twice."""

    status_code = 409


class SchedulerTransientError(BattleError):
    """
    Failure during a scheduled check.

    Always caught and logged at the scheduler boundary; the next tick
    retries from persisted state.
    """

    pass
