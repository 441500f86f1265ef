"""Append-only audit ledger of lifecycle domain events."""

from .ledger import AuditLedger, PostgresAuditLedger
from .models import Actor, ActorType, AuditEnvelope, EventType, MonotonicClock, Order, event_type_for

__all__ = [
    "Actor",
    "ActorType",
    "AuditEnvelope",
    "AuditLedger",
    "EventType",
    "MonotonicClock",
    "Order",
    "PostgresAuditLedger",
    "event_type_for",
]
