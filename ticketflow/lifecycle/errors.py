"""Typed errors raised by the lifecycle core.

Every error carries a stable ``code``; transition errors also carry the
statuses involved so callers can render an actionable message.
"""
from __future__ import annotations

from typing import Any


class LifecycleError(RuntimeError):
    """Base error for lifecycle and settlement failures."""

    code = "LIFECYCLE_ERROR"
    retryable = False


class TransitionError(LifecycleError):
    def __init__(
        self,
        message: str,
        *,
        from_status: str | None = None,
        to_status: str | None = None,
        reason: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.from_status = _plain(from_status)
        self.to_status = _plain(to_status)
        self.reason = reason

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "fromStatus": self.from_status,
            "toStatus": self.to_status,
            "reason": self.reason,
            "retryable": self.retryable,
        }


class EntityNotFound(TransitionError):
    code = "ENTITY_NOT_FOUND"


class InvalidTransition(TransitionError):
    code = "INVALID_TRANSITION"


class GuardFailed(TransitionError):
    code = "GUARD_FAILED"


class ConcurrentModification(TransitionError):
    code = "CONCURRENT_MODIFICATION"
    retryable = True


class VerificationFailed(TransitionError):
    code = "VERIFICATION_FAILED"
    retryable = True


class DatabaseError(TransitionError):
    code = "DATABASE_ERROR"


class SecondaryWriteFailed(LifecycleError):
    """A best-effort mirror write failed after the authoritative commit."""

    code = "SECONDARY_WRITE_FAILED"


class Unauthorized(LifecycleError):
    code = "UNAUTHORIZED"


def _plain(value: Any) -> str | None:
    if value is None:
        return None
    return str(getattr(value, "value", value))
