"""Post-commit collaborators: notifications and the secondary mirror.

Neither can change the outcome of a committed transition. Notification
failures are logged and counted; mirror failures surface as
``SecondaryWriteFailed`` inside :class:`SecondaryChannel` and stop there.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Protocol

import httpx

from ticketflow.audit.models import AuditEnvelope
from ticketflow.metrics import MetricsRegistry, metrics_registry
from ticketflow.metrics.definitions import NOTIFICATION_FAILURES_TOTAL, SECONDARY_WRITE_FAILURES_TOTAL

from .errors import SecondaryWriteFailed
from .models import TransitionResult

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def notify(self, user_id: str, template_kind: str, context: Mapping[str, Any]) -> None:
        ...


class LoggingNotifier:
    """Notifier that only records what would have been delivered."""

    async def notify(self, user_id: str, template_kind: str, context: Mapping[str, Any]) -> None:
        logger.info("Notify %s with %s (%s)", user_id, template_kind, context.get("entityId"))


class NotificationDispatcher:
    """Runs notifier calls as detached tasks so a transition never waits on delivery."""

    def __init__(self, notifier: Notifier, *, registry: MetricsRegistry | None = None) -> None:
        self._notifier = notifier
        self._failures = (registry or metrics_registry).counter(NOTIFICATION_FAILURES_TOTAL)
        self._pending: set[asyncio.Task[None]] = set()

    def dispatch(self, user_id: str | None, template_kind: str, context: Mapping[str, Any]) -> None:
        if not user_id:
            return
        task = asyncio.create_task(self._deliver(user_id, template_kind, dict(context)))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, user_id: str, template_kind: str, context: Mapping[str, Any]) -> None:
        try:
            await self._notifier.notify(user_id, template_kind, context)
        except Exception:
            self._failures.inc()
            logger.warning("Notification %s to %s failed", template_kind, user_id, exc_info=True)

    async def drain(self) -> None:
        """Wait for in-flight deliveries; used at shutdown and by tests."""

        if self._pending:
            await asyncio.gather(*tuple(self._pending))


class MirrorWriter(Protocol):
    async def write(self, result: TransitionResult, envelope: AuditEnvelope) -> None:
        ...


class WebhookMirror:
    """Posts each committed transition to a secondary store over HTTP."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def write(self, result: TransitionResult, envelope: AuditEnvelope) -> None:
        response = await self._client.post(
            self._url,
            json={"transition": result.to_dict(), "envelope": envelope.to_dict()},
        )
        response.raise_for_status()

    async def close(self) -> None:
        await self._client.aclose()


class SecondaryChannel:
    """Named side channel for best-effort mirror writes."""

    def __init__(self, writer: MirrorWriter, *, registry: MetricsRegistry | None = None) -> None:
        self._writer = writer
        self._failures = (registry or metrics_registry).counter(
            SECONDARY_WRITE_FAILURES_TOTAL, label_names=("entity_kind",)
        )

    async def write(self, result: TransitionResult, envelope: AuditEnvelope) -> None:
        try:
            await self._writer.write(result, envelope)
        except Exception as exc:
            raise SecondaryWriteFailed(
                f"Mirror write failed for {result.kind.value} {result.entity_id}: {exc}"
            ) from exc

    async def mirror(self, result: TransitionResult, envelope: AuditEnvelope) -> bool:
        """Write to the mirror; ``False`` when it failed (already logged and counted)."""

        try:
            await self.write(result, envelope)
        except SecondaryWriteFailed as exc:
            self._failures.inc(labels={"entity_kind": result.kind.value})
            logger.warning("%s (code=%s)", exc, exc.code, exc_info=exc.__cause__)
            return False
        return True
