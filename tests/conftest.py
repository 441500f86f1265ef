from __future__ import annotations

import pytest

from ticketflow.lifecycle.executor import TransitionExecutor
from ticketflow.lifecycle.guards import default_guards
from ticketflow.lifecycle.service import LifecycleService
from ticketflow.metrics import MetricsRegistry, register_default_metrics

from tests.fakes import InMemoryEntityStore, InMemoryLedger, TickingClock, make_event, make_ticket


@pytest.fixture
def registry() -> MetricsRegistry:
    return register_default_metrics(MetricsRegistry())


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def store() -> InMemoryEntityStore:
    return InMemoryEntityStore(make_event(), make_ticket())


@pytest.fixture
def ledger() -> InMemoryLedger:
    return InMemoryLedger()


@pytest.fixture
def executor(store, ledger, clock, registry) -> TransitionExecutor:
    return TransitionExecutor(
        store,
        ledger,
        guards=default_guards(),
        max_attempts=3,
        clock=clock,
        registry=registry,
    )


@pytest.fixture
def service(executor, store, ledger) -> LifecycleService:
    return LifecycleService(executor, store, ledger)
