"""Static transition tables for events and tickets.

Pure domain data: no I/O, safe to share across concurrent requests.
"""
from __future__ import annotations

from enum import Enum
from typing import Mapping, Union


class EntityKind(str, Enum):
    """Kinds of entity that carry a lifecycle status."""

    EVENT = "event"
    TICKET = "ticket"


class EventStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    LIVE = "live"
    ENDED = "ended"
    ARCHIVED = "archived"


class TicketStatus(str, Enum):
    PENDING = "pending"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    ISSUED = "issued"
    STAKED = "staked"
    CHECKED_IN = "checked_in"
    SCANNED = "scanned"  # legacy alias of checked_in
    REFUNDED = "refunded"
    FORFEITED = "forfeited"
    REVOKED = "revoked"


Status = Union[EventStatus, TicketStatus]


_EVENT_TRANSITIONS: Mapping[EventStatus, frozenset[EventStatus]] = {
    EventStatus.DRAFT: frozenset({EventStatus.PUBLISHED}),
    EventStatus.PUBLISHED: frozenset({EventStatus.LIVE, EventStatus.DRAFT, EventStatus.ARCHIVED}),
    EventStatus.LIVE: frozenset({EventStatus.ENDED}),
    EventStatus.ENDED: frozenset({EventStatus.ARCHIVED}),
    EventStatus.ARCHIVED: frozenset(),
}

_TICKET_TRANSITIONS: Mapping[TicketStatus, frozenset[TicketStatus]] = {
    TicketStatus.PENDING: frozenset({TicketStatus.APPROVED, TicketStatus.REJECTED}),
    TicketStatus.PENDING_APPROVAL: frozenset({TicketStatus.APPROVED, TicketStatus.REJECTED}),
    TicketStatus.APPROVED: frozenset({TicketStatus.ISSUED, TicketStatus.STAKED}),
    TicketStatus.ISSUED: frozenset({TicketStatus.STAKED, TicketStatus.CHECKED_IN, TicketStatus.REVOKED}),
    TicketStatus.STAKED: frozenset({TicketStatus.CHECKED_IN, TicketStatus.REFUNDED, TicketStatus.FORFEITED}),
    TicketStatus.CHECKED_IN: frozenset(),
    TicketStatus.SCANNED: frozenset(),
    TicketStatus.REJECTED: frozenset(),
    TicketStatus.REFUNDED: frozenset(),
    TicketStatus.FORFEITED: frozenset(),
    TicketStatus.REVOKED: frozenset(),
}

STATUS_DESCRIPTIONS: Mapping[Status, str] = {
    EventStatus.DRAFT: "Event is being created and is not visible to the public",
    EventStatus.PUBLISHED: "Event is visible and open for registration",
    EventStatus.LIVE: "Event is currently in progress",
    EventStatus.ENDED: "Event has completed",
    EventStatus.ARCHIVED: "Event is archived and hidden from listings",
    TicketStatus.PENDING: "Registration pending",
    TicketStatus.PENDING_APPROVAL: "Waiting for organizer approval",
    TicketStatus.APPROVED: "Approved, awaiting stake or ticket issue",
    TicketStatus.REJECTED: "Registration rejected by organizer",
    TicketStatus.ISSUED: "Ticket issued, ready for check-in",
    TicketStatus.STAKED: "Stake received, awaiting check-in",
    TicketStatus.CHECKED_IN: "Checked in",
    TicketStatus.SCANNED: "Checked in (legacy scan)",
    TicketStatus.REFUNDED: "Stake refunded",
    TicketStatus.FORFEITED: "No-show, stake forfeited",
    TicketStatus.REVOKED: "Ticket revoked by organizer",
}


class StateGraph:
    """Answer structural legality questions for every entity kind."""

    _TABLES: Mapping[EntityKind, Mapping[Status, frozenset[Status]]] = {
        EntityKind.EVENT: _EVENT_TRANSITIONS,  # type: ignore[dict-item]
        EntityKind.TICKET: _TICKET_TRANSITIONS,  # type: ignore[dict-item]
    }

    _STATUS_TYPES: Mapping[EntityKind, type[Enum]] = {
        EntityKind.EVENT: EventStatus,
        EntityKind.TICKET: TicketStatus,
    }

    @classmethod
    def initial_status(cls, kind: EntityKind) -> Status:
        return EventStatus.DRAFT if kind is EntityKind.EVENT else TicketStatus.PENDING

    @classmethod
    def parse_status(cls, kind: EntityKind, value: str | Status) -> Status:
        """Coerce a stored string into the kind's status enum.

        Raises ``ValueError`` for values outside the kind's status set, which is
        also how a cross-kind status (an event status on a ticket) is rejected.
        """

        status_type = cls._STATUS_TYPES[EntityKind(kind)]
        if isinstance(value, Enum):
            value = value.value
        return status_type(value)  # type: ignore[return-value]

    @classmethod
    def legal_targets(cls, kind: EntityKind, current: Status) -> frozenset[Status]:
        table = cls._TABLES[EntityKind(kind)]
        try:
            status = cls.parse_status(kind, current)
        except ValueError:
            return frozenset()
        return table.get(status, frozenset())

    @classmethod
    def is_legal(cls, kind: EntityKind, current: Status, target: Status) -> bool:
        try:
            target_status = cls.parse_status(kind, target)
        except ValueError:
            return False
        return target_status in cls.legal_targets(kind, current)

    @classmethod
    def is_terminal(cls, kind: EntityKind, status: Status) -> bool:
        return not cls.legal_targets(kind, status)
