"""Time-driven transitions: start and end events, forfeit no-show stakes.

Each due entity gets its own ``execute`` call; one failure never stops the
rest of the batch.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Protocol, Sequence

from ticketflow.audit.models import Actor
from ticketflow.lifecycle.commands import EndEvent, ForfeitTicket, StartEvent
from ticketflow.lifecycle.errors import LifecycleError
from ticketflow.lifecycle.models import LifecycleEntity
from ticketflow.lifecycle.service import LifecycleService
from ticketflow.settlement.workflow import SettlementWorkflow
from ticketflow.timeline.service import IncompleteTransaction, StatusDrift, TimelineService, UnsettledSettlement

logger = logging.getLogger(__name__)


class DueEntityQueries(Protocol):
    async def find_events_due_to_start(self, now: datetime, *, limit: int = 100) -> list[LifecycleEntity]:
        ...

    async def find_events_due_to_end(self, now: datetime, *, limit: int = 100) -> list[LifecycleEntity]:
        ...

    async def find_forfeitable_tickets(self, cutoff: datetime, *, limit: int = 100) -> list[LifecycleEntity]:
        ...


@dataclass(slots=True)
class BatchResult:
    succeeded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"succeeded": list(self.succeeded), "failed": list(self.failed), "errors": dict(self.errors)}


class LifecycleScheduler:
    def __init__(
        self,
        service: LifecycleService,
        queries: DueEntityQueries,
        *,
        workflow: SettlementWorkflow | None = None,
        timeline: TimelineService | None = None,
        grace: timedelta = timedelta(minutes=60),
        batch_size: int = 100,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._service = service
        self._queries = queries
        self._workflow = workflow
        self._timeline = timeline
        self._grace = grace
        self._batch_size = batch_size
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def start_due_events(self, now: datetime | None = None) -> BatchResult:
        now = now or self._clock()
        events = await self._queries.find_events_due_to_start(now, limit=self._batch_size)
        return await self._run_batch(
            "start_due_events",
            events,
            lambda event: self._service.submit(
                StartEvent(entity_id=event.id, actor=Actor.cron(), reason="Scheduled start time reached")
            ),
        )

    async def end_due_events(self, now: datetime | None = None) -> BatchResult:
        now = now or self._clock()
        events = await self._queries.find_events_due_to_end(now, limit=self._batch_size)
        return await self._run_batch(
            "end_due_events",
            events,
            lambda event: self._service.submit(
                EndEvent(entity_id=event.id, actor=Actor.cron(), reason="Scheduled end time reached")
            ),
        )

    async def forfeit_no_shows(self, now: datetime | None = None) -> BatchResult:
        now = now or self._clock()
        tickets = await self._queries.find_forfeitable_tickets(now - self._grace, limit=self._batch_size)

        async def forfeit(ticket: LifecycleEntity) -> Any:
            if self._workflow is not None:
                return await self._workflow.forfeit(ticket.id, Actor.cron())
            return await self._service.submit(
                ForfeitTicket(entity_id=ticket.id, actor=Actor.cron(), reason="No-show after event end")
            )

        return await self._run_batch("forfeit_no_shows", tickets, forfeit)

    async def incomplete_report(self, cutoff: datetime) -> list[IncompleteTransaction]:
        if self._timeline is None:
            return []
        return await self._timeline.incomplete_since(cutoff)

    async def drift_report(self, cutoff: datetime) -> list[StatusDrift]:
        if self._timeline is None:
            return []
        return await self._timeline.drift_since(cutoff)

    async def unsettled_report(self, cutoff: datetime) -> list[UnsettledSettlement]:
        if self._timeline is None:
            return []
        return await self._timeline.unsettled_since(cutoff)

    async def run_once(self, now: datetime | None = None) -> dict[str, BatchResult]:
        now = now or self._clock()
        return {
            "start_due_events": await self.start_due_events(now),
            "end_due_events": await self.end_due_events(now),
            "forfeit_no_shows": await self.forfeit_no_shows(now),
        }

    async def _run_batch(
        self,
        job: str,
        entities: Sequence[LifecycleEntity],
        action: Callable[[LifecycleEntity], Awaitable[Any]],
    ) -> BatchResult:
        result = BatchResult()
        for entity in entities:
            try:
                await action(entity)
            except LifecycleError as exc:
                result.failed.append(entity.id)
                result.errors[entity.id] = f"{exc.code}: {exc}"
                logger.warning("%s: %s %s failed (%s)", job, entity.kind.value, entity.id, exc.code)
            else:
                result.succeeded.append(entity.id)
        logger.info("%s: %d succeeded, %d failed", job, len(result.succeeded), len(result.failed))
        return result
