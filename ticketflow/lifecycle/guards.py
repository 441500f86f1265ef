"""Preconditions gating structurally legal transitions.

Guards read entity state through :class:`GuardContext` and never write it.
A pair with no registered guard is allowed once the graph permits it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Protocol

from .models import LifecycleEntity, TransitionRequest
from .state import EntityKind, EventStatus, StateGraph, Status, TicketStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class GuardDecision:
    allowed: bool
    reason: str | None = None

    @classmethod
    def allow(cls) -> "GuardDecision":
        return cls(True)

    @classmethod
    def deny(cls, reason: str) -> "GuardDecision":
        return cls(False, reason)


class EntityReader(Protocol):
    async def get(self, kind: EntityKind, entity_id: str) -> LifecycleEntity | None:
        ...


@dataclass(frozen=True, slots=True)
class GuardContext:
    """Read-only view handed to every guard."""

    entity: LifecycleEntity
    request: TransitionRequest
    reader: EntityReader
    now: datetime

    async def owning_event(self) -> LifecycleEntity | None:
        if self.entity.kind is not EntityKind.TICKET or self.entity.event_id is None:
            return None
        return await self.reader.get(EntityKind.EVENT, self.entity.event_id)


Guard = Callable[[GuardContext], Awaitable[GuardDecision]]
_Key = tuple[EntityKind, Status, Status]


class GuardEvaluator:
    """Registry of guards and documented denials keyed by ``(kind, from, to)``."""

    def __init__(self) -> None:
        self._guards: dict[_Key, list[Guard]] = {}
        self._denials: dict[_Key, str] = {}

    def _key(self, kind: EntityKind, from_status: Status, to_status: Status) -> _Key:
        kind = EntityKind(kind)
        return (
            kind,
            StateGraph.parse_status(kind, from_status),
            StateGraph.parse_status(kind, to_status),
        )

    def register(self, kind: EntityKind, from_status: Status, to_status: Status, guard: Guard) -> None:
        self._guards.setdefault(self._key(kind, from_status, to_status), []).append(guard)

    def forbid(self, kind: EntityKind, from_status: Status, to_status: Status, reason: str) -> None:
        """Record a permanent denial with the message shown to callers."""

        self._denials[self._key(kind, from_status, to_status)] = reason

    def denial_reason(self, kind: EntityKind, from_status: Status, to_status: Status) -> str | None:
        try:
            key = self._key(kind, from_status, to_status)
        except ValueError:
            return None
        return self._denials.get(key)

    def bound(self, kind: EntityKind, from_status: Status, to_status: Status) -> tuple[Guard, ...]:
        return tuple(self._guards.get(self._key(kind, from_status, to_status), ()))

    async def evaluate(self, context: GuardContext) -> GuardDecision:
        entity = context.entity
        target = context.request.target
        denial = self.denial_reason(entity.kind, entity.status, target)
        if denial is not None:
            return GuardDecision.deny(denial)

        for guard in self.bound(entity.kind, entity.status, target):
            decision = await guard(context)
            if not decision.allowed:
                logger.info(
                    "Guard %s denied %s %s: %s -> %s (%s)",
                    getattr(guard, "__name__", repr(guard)),
                    entity.kind.value,
                    entity.id,
                    entity.status.value,
                    StateGraph.parse_status(entity.kind, target).value,
                    decision.reason,
                )
                return decision
        return GuardDecision.allow()


async def require_publishable(context: GuardContext) -> GuardDecision:
    event = context.entity
    if not (event.title or "").strip():
        return GuardDecision.deny("Event must have a title before it can be published")
    if event.starts_at is None:
        return GuardDecision.deny("Event must have a start date before it can be published")
    return GuardDecision.allow()


async def require_stake_record(context: GuardContext) -> GuardDecision:
    stake = context.request.stake
    if stake is None or not stake.tx_hash:
        return GuardDecision.deny("A verified stake with a transaction hash is required")
    return GuardDecision.allow()


async def require_refund_record(context: GuardContext) -> GuardDecision:
    refund = context.request.refund
    if refund is None or not refund.tx_hash:
        return GuardDecision.deny("A refund transaction hash is required")
    return GuardDecision.allow()


async def require_event_over(context: GuardContext) -> GuardDecision:
    event = await context.owning_event()
    if event is None:
        return GuardDecision.deny("Owning event could not be found")
    if event.status in (EventStatus.ENDED, EventStatus.ARCHIVED):
        return GuardDecision.allow()
    if event.ends_at is not None and event.ends_at <= context.now:
        return GuardDecision.allow()
    return GuardDecision.deny("Stake can only be forfeited after the event has ended")


def default_guards() -> GuardEvaluator:
    """Evaluator loaded with the business rules for events and tickets."""

    evaluator = GuardEvaluator()
    evaluator.register(EntityKind.EVENT, EventStatus.DRAFT, EventStatus.PUBLISHED, require_publishable)
    evaluator.register(EntityKind.TICKET, TicketStatus.APPROVED, TicketStatus.STAKED, require_stake_record)
    evaluator.register(EntityKind.TICKET, TicketStatus.ISSUED, TicketStatus.STAKED, require_stake_record)
    evaluator.register(EntityKind.TICKET, TicketStatus.STAKED, TicketStatus.REFUNDED, require_refund_record)
    evaluator.register(EntityKind.TICKET, TicketStatus.STAKED, TicketStatus.FORFEITED, require_event_over)
    evaluator.forbid(
        EntityKind.EVENT,
        EventStatus.LIVE,
        EventStatus.DRAFT,
        "Cannot revert to draft while event is live",
    )
    evaluator.forbid(
        EntityKind.EVENT,
        EventStatus.ENDED,
        EventStatus.PUBLISHED,
        "Cannot republish an event that has ended",
    )
    return evaluator
