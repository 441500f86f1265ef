"""Single entry point for every status change.

``execute`` loads the entity, asks the graph, runs guards, and then applies a
conditional update and the ledger append inside one database transaction.
Losing the conditional update to a concurrent writer restarts from the load,
up to ``max_attempts`` times.
"""
from __future__ import annotations

import logging
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Any, Callable, Protocol

from opentelemetry import trace

from ticketflow.audit.ledger import AuditLedger
from ticketflow.audit.models import AuditEnvelope, MonotonicClock, event_type_for, new_id
from ticketflow.core.logging import bind_correlation_id
from ticketflow.metrics import MetricsRegistry, metrics_registry
from ticketflow.metrics.base import track_duration
from ticketflow.metrics.definitions import (
    TRANSITION_DURATION_SECONDS,
    TRANSITION_FAILURES_TOTAL,
    TRANSITION_RETRIES_TOTAL,
    TRANSITIONS_TOTAL,
)

from .errors import ConcurrentModification, EntityNotFound, GuardFailed, InvalidTransition, TransitionError
from .guards import GuardContext, GuardEvaluator, default_guards
from .models import LifecycleEntity, TransitionRequest, TransitionResult
from .side_effects import NotificationDispatcher, SecondaryChannel
from .state import EntityKind, StateGraph, Status

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class EntityStore(Protocol):
    async def get(
        self, kind: EntityKind, entity_id: str, *, connection: Any | None = None
    ) -> LifecycleEntity | None:
        ...

    def transaction(self) -> AbstractAsyncContextManager[Any]:
        ...

    async def compare_and_set_status(
        self,
        kind: EntityKind,
        entity_id: str,
        *,
        expected: Status,
        target: Status,
        transitioned_at: datetime,
        connection: Any | None = None,
    ) -> bool:
        ...


class TransitionExecutor:
    def __init__(
        self,
        store: EntityStore,
        ledger: AuditLedger,
        *,
        guards: GuardEvaluator | None = None,
        max_attempts: int = 3,
        clock: Callable[[], datetime] | None = None,
        notifications: NotificationDispatcher | None = None,
        secondary: SecondaryChannel | None = None,
        registry: MetricsRegistry | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._store = store
        self._ledger = ledger
        self._guards = guards or default_guards()
        self._max_attempts = max_attempts
        self._clock = clock or MonotonicClock()
        self._notifications = notifications
        self._secondary = secondary

        registry = registry or metrics_registry
        self._transitions = registry.counter(TRANSITIONS_TOTAL, label_names=("entity_kind", "event_type"))
        self._failures = registry.counter(TRANSITION_FAILURES_TOTAL, label_names=("entity_kind", "code"))
        self._retries = registry.counter(TRANSITION_RETRIES_TOTAL, label_names=("entity_kind",))
        self._duration = registry.distribution(TRANSITION_DURATION_SECONDS, label_names=("entity_kind",))

    @property
    def guards(self) -> GuardEvaluator:
        return self._guards

    async def execute(self, request: TransitionRequest) -> TransitionResult:
        kind = EntityKind(request.kind)
        correlation_id = request.correlation_id or new_id()
        with bind_correlation_id(correlation_id):
            try:
                with track_duration(self._duration, labels={"entity_kind": kind.value}):
                    result, envelope, entity = await self._run(kind, request, correlation_id)
            except TransitionError as exc:
                self._failures.inc(labels={"entity_kind": kind.value, "code": exc.code})
                logger.info("%s %s rejected: %s", kind.value, request.entity_id, exc.code)
                raise

            self._transitions.inc(labels={"entity_kind": kind.value, "event_type": envelope.event_type})
            logger.info(
                "%s %s: %s -> %s",
                kind.value,
                result.entity_id,
                result.previous_status.value,
                result.new_status.value,
            )
            await self._after_commit(result, envelope, entity)
        return result

    async def _run(
        self, kind: EntityKind, request: TransitionRequest, correlation_id: str
    ) -> tuple[TransitionResult, AuditEnvelope, LifecycleEntity]:
        try:
            target = StateGraph.parse_status(kind, request.target)
        except ValueError:
            raise InvalidTransition(
                f"{getattr(request.target, 'value', request.target)} is not a {kind.value} status",
                to_status=request.target,
            ) from None

        for attempt in range(1, self._max_attempts + 1):
            with tracer.start_as_current_span("lifecycle.transition") as span:
                span.set_attribute("lifecycle.entity_kind", kind.value)
                span.set_attribute("lifecycle.entity_id", request.entity_id)
                span.set_attribute("lifecycle.target_status", target.value)
                span.set_attribute("lifecycle.attempt", attempt)
                span.set_attribute("lifecycle.correlation_id", correlation_id)

                entity = await self._store.get(kind, request.entity_id)
                if entity is None:
                    raise EntityNotFound(
                        f"{kind.value.capitalize()} {request.entity_id} not found",
                        to_status=target,
                    )
                current = entity.status
                span.set_attribute("lifecycle.from_status", current.value)

                if not StateGraph.is_legal(kind, current, target):
                    if attempt > 1:
                        raise ConcurrentModification(
                            f"{kind.value.capitalize()} {entity.id} moved to {current.value} "
                            f"while applying {target.value}",
                            from_status=current,
                            to_status=target,
                            reason="Entity was changed by a concurrent request",
                        )
                    raise InvalidTransition(
                        f"Cannot transition {kind.value} from {current.value} to {target.value}",
                        from_status=current,
                        to_status=target,
                        reason=self._rejection_reason(kind, current, target),
                    )

                now = self._clock()
                decision = await self._guards.evaluate(
                    GuardContext(entity=entity, request=request, reader=self._store, now=now)
                )
                if not decision.allowed:
                    raise GuardFailed(
                        f"Transition {current.value} -> {target.value} rejected: {decision.reason}",
                        from_status=current,
                        to_status=target,
                        reason=decision.reason,
                    )

                envelope = self._build_envelope(kind, entity, request, target, correlation_id, now)
                async with self._store.transaction() as connection:
                    updated = await self._store.compare_and_set_status(
                        kind,
                        entity.id,
                        expected=current,
                        target=target,
                        transitioned_at=now,
                        connection=connection,
                    )
                    if updated:
                        envelope_id = await self._ledger.append(envelope, connection=connection)

                if updated:
                    result = TransitionResult(
                        success=True,
                        kind=kind,
                        entity_id=entity.id,
                        previous_status=current,
                        new_status=target,
                        transitioned_at=now,
                        correlation_id=correlation_id,
                        envelope_id=envelope_id,
                    )
                    return result, envelope, entity

                span.add_event("conditional update lost")
                self._retries.inc(labels={"entity_kind": kind.value})
                logger.info(
                    "Conditional update lost for %s %s (attempt %d/%d)",
                    kind.value,
                    entity.id,
                    attempt,
                    self._max_attempts,
                )

        raise ConcurrentModification(
            f"{kind.value.capitalize()} {request.entity_id} kept changing; gave up after "
            f"{self._max_attempts} attempts",
            to_status=target,
            reason="Retry with fresh state",
        )

    def _rejection_reason(self, kind: EntityKind, current: Status, target: Status) -> str | None:
        reason = self._guards.denial_reason(kind, current, target)
        if reason is None and StateGraph.is_terminal(kind, current):
            reason = f"{current.value} is a terminal status"
        return reason

    def _build_envelope(
        self,
        kind: EntityKind,
        entity: LifecycleEntity,
        request: TransitionRequest,
        target: Status,
        correlation_id: str,
        now: datetime,
    ) -> AuditEnvelope:
        payload: dict[str, Any] = dict(request.metadata)
        payload.update(request.payload())
        payload.update(
            {
                "entityId": entity.id,
                "previousStatus": entity.status.value,
                "newStatus": target.value,
                "reason": request.reason,
            }
        )
        return AuditEnvelope(
            entity_type=kind,
            entity_id=entity.id,
            event_type=event_type_for(kind, target).value,
            actor=request.actor,
            correlation_id=correlation_id,
            causation_id=request.causation_id,
            payload=payload,
            created_at=now,
        )

    async def _after_commit(
        self, result: TransitionResult, envelope: AuditEnvelope, entity: LifecycleEntity
    ) -> None:
        if self._secondary is not None:
            await self._secondary.mirror(result, envelope)
        if self._notifications is not None:
            recipient = entity.holder_id if entity.kind is EntityKind.TICKET else entity.owner_id
            self._notifications.dispatch(recipient, envelope.event_type.lower(), result.to_dict())
