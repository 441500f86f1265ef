from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

import asyncpg
from fastapi import FastAPI

from ticketflow.api.routes import jobs, lifecycle, metrics, ping, tickets, timeline
from ticketflow.audit.ledger import PostgresAuditLedger
from ticketflow.audit.models import MonotonicClock
from ticketflow.core.config import Settings, get_settings
from ticketflow.core.logging import configure_logging, init_tracer, shutdown_tracer
from ticketflow.dependencies.auth import StaticTokenIdentityResolver
from ticketflow.jobs.scheduler import LifecycleScheduler
from ticketflow.lifecycle.errors import DatabaseError
from ticketflow.lifecycle.executor import TransitionExecutor
from ticketflow.lifecycle.guards import default_guards
from ticketflow.lifecycle.repository import EntityRepository
from ticketflow.lifecycle.service import LifecycleService
from ticketflow.lifecycle.side_effects import (
    LoggingNotifier,
    NotificationDispatcher,
    SecondaryChannel,
    WebhookMirror,
)
from ticketflow.services.postgres import PostgresConnectionTester
from ticketflow.settlement.chains import EscrowRelayerWriter, EthereumChainReader, SolanaChainReader
from ticketflow.settlement.verifier import SettlementVerifier
from ticketflow.settlement.workflow import SettlementWorkflow
from ticketflow.timeline.service import TimelineService

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class LifecycleServices:
    """Everything wired for one application instance."""

    service: LifecycleService
    timeline: TimelineService
    workflow: SettlementWorkflow
    scheduler: LifecycleScheduler
    notifications: NotificationDispatcher
    closeables: list[Any] = field(default_factory=list)

    async def aclose(self) -> None:
        await self.notifications.drain()
        for resource in self.closeables:
            await resource.close()


async def build_services(settings: Settings, pool: asyncpg.Pool) -> LifecycleServices:
    repository = EntityRepository(pool)
    ledger = PostgresAuditLedger(pool)
    await repository.ensure_schema()
    await ledger.ensure_schema()

    timeout = settings.chain_rpc_timeout_seconds
    readers = {
        "ethereum": EthereumChainReader(settings.ethereum_rpc_url, timeout=timeout),
        "solana": SolanaChainReader(settings.solana_rpc_url, timeout=timeout),
    }
    closeables: list[Any] = list(readers.values())

    writer = None
    if settings.escrow_relayer_url:
        writer = EscrowRelayerWriter(
            settings.escrow_relayer_url, token=settings.escrow_relayer_token, timeout=timeout
        )
        closeables.append(writer)
    else:
        logger.warning("ESCROW_RELAYER_URL not set; stake release and forfeit will be skipped")

    secondary = None
    if settings.mirror_url:
        mirror = WebhookMirror(settings.mirror_url)
        closeables.append(mirror)
        secondary = SecondaryChannel(mirror)

    clock = MonotonicClock()
    verifier = SettlementVerifier(
        readers, writer, ledger=ledger, strict_recipient_check=settings.strict_recipient_check
    )
    notifications = NotificationDispatcher(LoggingNotifier())
    executor = TransitionExecutor(
        repository,
        ledger,
        guards=default_guards(),
        max_attempts=settings.max_transition_attempts,
        notifications=notifications,
        secondary=secondary,
        clock=clock,
    )
    service = LifecycleService(executor, repository, ledger, verifier)
    timeline_service = TimelineService(ledger, store=repository)
    workflow = SettlementWorkflow(service, verifier, ledger, clock=clock)
    scheduler = LifecycleScheduler(
        service,
        repository,
        workflow=workflow,
        timeline=timeline_service,
        grace=timedelta(minutes=settings.no_show_grace_minutes),
    )
    return LifecycleServices(
        service=service,
        timeline=timeline_service,
        workflow=workflow,
        scheduler=scheduler,
        notifications=notifications,
        closeables=closeables,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    app.state.logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)
    app.state.tracer_provider = tracer_provider

    postgres_tester = PostgresConnectionTester(
        dsn=settings.postgres_dsn,
        min_size=settings.postgres_pool_min_size,
        max_size=settings.postgres_pool_max_size,
    )
    app.state.postgres_tester = postgres_tester
    app.state.identity_resolver = StaticTokenIdentityResolver(settings.api_tokens)

    services: LifecycleServices | None = None
    try:
        pool = await postgres_tester.get_pool()
        services = await build_services(settings, pool)
    except (DatabaseError, asyncpg.PostgresError, OSError):
        logger.exception("Lifecycle services unavailable; API will answer 503")
    app.state.lifecycle_service = services.service if services else None
    app.state.timeline_service = services.timeline if services else None
    app.state.settlement_workflow = services.workflow if services else None
    app.state.scheduler = services.scheduler if services else None
    try:
        yield
    finally:
        if services is not None:
            await services.aclose()
        await postgres_tester.close()
        shutdown_tracer(tracer_provider)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.include_router(ping.router)
    app.include_router(lifecycle.router)
    app.include_router(tickets.router)
    app.include_router(timeline.router)
    app.include_router(jobs.router)
    app.include_router(metrics.router)
    return app


app = create_app()
