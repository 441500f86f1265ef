"""Guarded state machines for events and tickets."""

from .errors import (
    ConcurrentModification,
    DatabaseError,
    EntityNotFound,
    GuardFailed,
    InvalidTransition,
    LifecycleError,
    SecondaryWriteFailed,
    TransitionError,
    Unauthorized,
    VerificationFailed,
)
from .state import EntityKind, EventStatus, StateGraph, Status, TicketStatus

__all__ = [
    "ConcurrentModification",
    "DatabaseError",
    "EntityKind",
    "EntityNotFound",
    "EventStatus",
    "GuardFailed",
    "InvalidTransition",
    "LifecycleError",
    "SecondaryWriteFailed",
    "StateGraph",
    "Status",
    "TicketStatus",
    "TransitionError",
    "Unauthorized",
    "VerificationFailed",
]
