from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Mapping

from ticketflow.lifecycle.state import EntityKind, EventStatus, Status, TicketStatus


class ActorType(str, Enum):
    USER = "user"
    SYSTEM = "system"
    CRON = "cron"
    WEBHOOK = "webhook"


@dataclass(frozen=True, slots=True)
class Actor:
    """Who triggered a ledger entry."""

    type: ActorType
    id: str | None = None

    @classmethod
    def system(cls) -> "Actor":
        return cls(ActorType.SYSTEM)

    @classmethod
    def cron(cls) -> "Actor":
        return cls(ActorType.CRON)

    @classmethod
    def user(cls, user_id: str) -> "Actor":
        return cls(ActorType.USER, user_id)

    def to_dict(self) -> dict[str, str | None]:
        return {"type": self.type.value, "id": self.id}


class Order(str, Enum):
    """Read order; timelines want oldest first, activity feeds newest first."""

    OLDEST_FIRST = "asc"
    NEWEST_FIRST = "desc"


class EventType(str, Enum):
    EVENT_PUBLISHED = "EVENT_PUBLISHED"
    EVENT_STARTED = "EVENT_STARTED"
    EVENT_ENDED = "EVENT_ENDED"
    EVENT_ARCHIVED = "EVENT_ARCHIVED"
    EVENT_UNPUBLISHED = "EVENT_UNPUBLISHED"
    TICKET_SUBMITTED = "TICKET_SUBMITTED"
    TICKET_APPROVED = "TICKET_APPROVED"
    TICKET_REJECTED = "TICKET_REJECTED"
    TICKET_ISSUED = "TICKET_ISSUED"
    TICKET_STAKED = "TICKET_STAKED"
    TICKET_CHECKED_IN = "TICKET_CHECKED_IN"
    TICKET_REFUNDED = "TICKET_REFUNDED"
    TICKET_FORFEITED = "TICKET_FORFEITED"
    TICKET_REVOKED = "TICKET_REVOKED"
    PAYMENT_RELEASED = "PAYMENT_RELEASED"
    PAYMENT_FORFEITED = "PAYMENT_FORFEITED"


_TRANSITION_EVENT_TYPES: Mapping[Status, EventType] = {
    EventStatus.PUBLISHED: EventType.EVENT_PUBLISHED,
    EventStatus.LIVE: EventType.EVENT_STARTED,
    EventStatus.ENDED: EventType.EVENT_ENDED,
    EventStatus.ARCHIVED: EventType.EVENT_ARCHIVED,
    EventStatus.DRAFT: EventType.EVENT_UNPUBLISHED,
    TicketStatus.PENDING_APPROVAL: EventType.TICKET_SUBMITTED,
    TicketStatus.APPROVED: EventType.TICKET_APPROVED,
    TicketStatus.REJECTED: EventType.TICKET_REJECTED,
    TicketStatus.ISSUED: EventType.TICKET_ISSUED,
    TicketStatus.STAKED: EventType.TICKET_STAKED,
    TicketStatus.CHECKED_IN: EventType.TICKET_CHECKED_IN,
    TicketStatus.SCANNED: EventType.TICKET_CHECKED_IN,
    TicketStatus.REFUNDED: EventType.TICKET_REFUNDED,
    TicketStatus.FORFEITED: EventType.TICKET_FORFEITED,
    TicketStatus.REVOKED: EventType.TICKET_REVOKED,
}


def event_type_for(kind: EntityKind, target: Status) -> EventType:
    """Ledger event type recorded when an entity of ``kind`` enters ``target``."""

    try:
        return _TRANSITION_EVENT_TYPES[target]
    except KeyError:
        raise ValueError(f"No ledger event type for {kind.value} entering {target.value}") from None


def new_id() -> str:
    return str(uuid.uuid4())


class MonotonicClock:
    """Strictly increasing UTC timestamps for one ledger writer.

    The same value stamps the entity row, the stored envelope and the
    transition result, so the ledger never has to adjust ``created_at``.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._last: datetime | None = None

    def __call__(self) -> datetime:
        now = self._clock()
        if self._last is not None and now <= self._last:
            now = self._last + timedelta(microseconds=1)
        self._last = now
        return now


@dataclass(frozen=True, slots=True)
class AuditEnvelope:
    """Immutable ledger record. Never updated or deleted once appended."""

    entity_type: EntityKind
    entity_id: str
    event_type: str
    actor: Actor
    correlation_id: str
    created_at: datetime
    payload: Mapping[str, Any] = field(default_factory=dict)
    causation_id: str | None = None
    id: str = field(default_factory=new_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "entityType": self.entity_type.value,
            "entityId": self.entity_id,
            "eventType": self.event_type,
            "actor": self.actor.to_dict(),
            "correlationId": self.correlation_id,
            "causationId": self.causation_id,
            "payload": dict(self.payload),
            "createdAt": self.created_at.isoformat(),
        }
