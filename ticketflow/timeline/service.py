from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterator, Sequence

from ticketflow.audit.ledger import AuditLedger
from ticketflow.audit.models import AuditEnvelope, EventType, Order
from ticketflow.lifecycle.guards import EntityReader
from ticketflow.lifecycle.state import EntityKind, StateGraph, Status, TicketStatus

logger = logging.getLogger(__name__)

_PAYMENT_EVENTS = frozenset({EventType.PAYMENT_RELEASED.value, EventType.PAYMENT_FORFEITED.value})


@dataclass(frozen=True, slots=True)
class EntityTimeline:
    kind: EntityKind
    entity_id: str
    events: tuple[AuditEnvelope, ...]

    @property
    def count(self) -> int:
        return len(self.events)

    @property
    def first_at(self) -> datetime | None:
        return self.events[0].created_at if self.events else None

    @property
    def last_at(self) -> datetime | None:
        return self.events[-1].created_at if self.events else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "entityType": self.kind.value,
            "entityId": self.entity_id,
            "count": self.count,
            "firstAt": self.first_at.isoformat() if self.first_at else None,
            "lastAt": self.last_at.isoformat() if self.last_at else None,
            "events": [envelope.to_dict() for envelope in self.events],
        }


@dataclass(frozen=True, slots=True)
class IncompleteTransaction:
    correlation_id: str
    entity_id: str
    started_at: datetime
    last_event_type: str
    events: tuple[AuditEnvelope, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "correlationId": self.correlation_id,
            "entityId": self.entity_id,
            "startedAt": self.started_at.isoformat(),
            "lastEventType": self.last_event_type,
            "events": [envelope.to_dict() for envelope in self.events],
        }


@dataclass(frozen=True, slots=True)
class StatusDrift:
    """An entity row whose status disagrees with its ledger history."""

    kind: EntityKind
    entity_id: str
    stored_status: Status | None
    ledger_status: Status
    last_envelope: AuditEnvelope

    def to_dict(self) -> dict[str, Any]:
        return {
            "entityType": self.kind.value,
            "entityId": self.entity_id,
            "storedStatus": self.stored_status.value if self.stored_status else None,
            "ledgerStatus": self.ledger_status.value,
            "lastEnvelopeId": self.last_envelope.id,
            "lastEventAt": self.last_envelope.created_at.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class UnsettledSettlement:
    """A check-in or forfeit whose escrow payment never succeeded."""

    ticket_id: str
    correlation_id: str
    event_type: str
    transitioned_at: datetime
    attempts: int
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ticketId": self.ticket_id,
            "correlationId": self.correlation_id,
            "eventType": self.event_type,
            "transitionedAt": self.transitioned_at.isoformat(),
            "attempts": self.attempts,
            "lastError": self.last_error,
        }


class TimelineService:
    """Reconstruct histories and flag multi-step flows that never finished.

    Only reads. Drift and settlement reports describe problems; repairing them
    is left to an operator.
    """

    def __init__(
        self,
        ledger: AuditLedger,
        *,
        store: EntityReader | None = None,
        start_event: str = EventType.TICKET_STAKED.value,
        completion_event: str = EventType.TICKET_CHECKED_IN.value,
        scan_limit: int = 500,
    ) -> None:
        self._ledger = ledger
        self._store = store
        self._start_event = start_event
        self._completion_event = completion_event
        self._scan_limit = scan_limit

    async def entity_timeline(self, kind: EntityKind, entity_id: str, *, limit: int | None = None) -> EntityTimeline:
        events = await self._ledger.by_entity(kind, entity_id, limit=limit, order=Order.OLDEST_FIRST)
        return EntityTimeline(EntityKind(kind), entity_id, tuple(events))

    async def transaction_timeline(self, correlation_id: str) -> Sequence[AuditEnvelope]:
        return await self._ledger.by_correlation(correlation_id, order=Order.OLDEST_FIRST)

    async def recent(self, limit: int = 100, *, event_types: Sequence[str] | None = None) -> Sequence[AuditEnvelope]:
        return await self._ledger.recent(limit, event_types=event_types)

    async def incomplete_since(self, cutoff: datetime, *, limit: int = 50) -> list[IncompleteTransaction]:
        incomplete: list[IncompleteTransaction] = []
        seen: set[str] = set()
        async for start in self._scan(self._start_event, cutoff):
            if start.correlation_id in seen:
                continue
            seen.add(start.correlation_id)
            if await self._ledger.has_event(start.entity_type, start.entity_id, self._completion_event):
                continue
            trail = await self._ledger.by_correlation(start.correlation_id, order=Order.OLDEST_FIRST)
            incomplete.append(
                IncompleteTransaction(
                    correlation_id=start.correlation_id,
                    entity_id=start.entity_id,
                    started_at=start.created_at,
                    last_event_type=trail[-1].event_type if trail else start.event_type,
                    events=tuple(trail),
                )
            )
            if len(incomplete) >= limit:
                break
        logger.debug("Found %d incomplete %s flows since %s", len(incomplete), self._start_event, cutoff)
        return incomplete

    async def status_drift(self, kind: EntityKind, entity_id: str) -> StatusDrift | None:
        """Fold the entity's ledger into a status and compare it with the stored row.

        The fold starts from the kind's initial status and takes ``newStatus``
        from every transition envelope in order. An entity with no envelopes
        has nothing to compare and reports no drift.
        """

        store = self._require_store()
        kind = EntityKind(kind)
        envelopes = await self._ledger.by_entity(kind, entity_id, order=Order.OLDEST_FIRST)
        if not envelopes:
            return None

        folded = StateGraph.initial_status(kind)
        for envelope in envelopes:
            new_status = envelope.payload.get("newStatus")
            if new_status is None:
                continue
            try:
                folded = StateGraph.parse_status(kind, new_status)
            except ValueError:
                logger.warning("Envelope %s carries unknown %s status %r", envelope.id, kind.value, new_status)

        entity = await store.get(kind, entity_id)
        stored = entity.status if entity is not None else None
        if stored == folded:
            return None
        logger.warning(
            "Status drift for %s %s: stored %s, ledger %s",
            kind.value,
            entity_id,
            stored.value if stored else None,
            folded.value,
        )
        return StatusDrift(kind, entity_id, stored, folded, envelopes[-1])

    async def drift_since(self, cutoff: datetime, *, limit: int = 50) -> list[StatusDrift]:
        drifted: list[StatusDrift] = []
        for kind, entity_id in await self._ledger.touched_since(cutoff):
            drift = await self.status_drift(kind, entity_id)
            if drift is not None:
                drifted.append(drift)
                if len(drifted) >= limit:
                    break
        return drifted

    async def unsettled_since(self, cutoff: datetime, *, limit: int = 50) -> list[UnsettledSettlement]:
        """Check-ins of staked tickets and forfeits with no successful escrow payment."""

        unsettled: list[UnsettledSettlement] = []
        for event_type in (EventType.TICKET_CHECKED_IN.value, EventType.TICKET_FORFEITED.value):
            async for envelope in self._scan(event_type, cutoff):
                if (
                    event_type == EventType.TICKET_CHECKED_IN.value
                    and envelope.payload.get("previousStatus") != TicketStatus.STAKED.value
                ):
                    continue
                trail = await self._ledger.by_correlation(envelope.correlation_id, order=Order.OLDEST_FIRST)
                payments = [
                    item
                    for item in trail
                    if item.event_type in _PAYMENT_EVENTS and item.entity_id == envelope.entity_id
                ]
                if any(payment.payload.get("success") for payment in payments):
                    continue
                unsettled.append(
                    UnsettledSettlement(
                        ticket_id=envelope.entity_id,
                        correlation_id=envelope.correlation_id,
                        event_type=event_type,
                        transitioned_at=envelope.created_at,
                        attempts=len(payments),
                        last_error=payments[-1].payload.get("error") if payments else None,
                    )
                )
        unsettled.sort(key=lambda item: item.transitioned_at)
        return unsettled[:limit]

    async def _scan(self, event_type: str, since: datetime) -> AsyncIterator[AuditEnvelope]:
        # Keyset pages on (created_at, id) until the ledger runs dry.
        after: tuple[datetime, str] | None = None
        while True:
            page = await self._ledger.by_event_type(event_type, since=since, limit=self._scan_limit, after=after)
            for envelope in page:
                yield envelope
            if len(page) < self._scan_limit:
                return
            after = (page[-1].created_at, page[-1].id)

    def _require_store(self) -> EntityReader:
        if self._store is None:
            raise RuntimeError("Status drift reports need an entity store")
        return self._store
