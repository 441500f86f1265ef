from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from ticketflow.audit.models import Actor, AuditEnvelope
from ticketflow.dependencies import lifecycle as lifecycle_deps
from ticketflow.dependencies.auth import Identity, Role
from ticketflow.lifecycle.errors import DatabaseError, VerificationFailed
from ticketflow.lifecycle.executor import TransitionExecutor
from ticketflow.lifecycle.guards import default_guards
from ticketflow.lifecycle.service import LifecycleService
from ticketflow.lifecycle.state import EntityKind, TicketStatus
from ticketflow.main import create_app
from ticketflow.timeline.service import TimelineService

from tests.fakes import BASE_TIME, InMemoryEntityStore, InMemoryLedger, TickingClock, make_event, make_ticket

ORGANIZER = Identity("organizer-1", "org@example.com", (Role.ORGANIZER, Role.VIEWER))
VIEWER = Identity("viewer-1", "viewer@example.com", (Role.VIEWER,))


@pytest.fixture
def lifecycle_client(registry):
    app = create_app()
    store = InMemoryEntityStore(make_event(), make_ticket())
    ledger = InMemoryLedger()
    executor = TransitionExecutor(store, ledger, guards=default_guards(), clock=TickingClock(), registry=registry)
    service = LifecycleService(executor, store, ledger)
    workflow = AsyncMock()

    async def override_service():
        return service

    async def override_timeline():
        return TimelineService(ledger, store=store)

    async def override_workflow():
        return workflow

    app.dependency_overrides[lifecycle_deps.get_lifecycle_service] = override_service
    app.dependency_overrides[lifecycle_deps.get_timeline_service] = override_timeline
    app.dependency_overrides[lifecycle_deps.get_settlement_workflow] = override_workflow
    app.dependency_overrides[lifecycle_deps.require_organizer] = lambda: ORGANIZER
    app.dependency_overrides[lifecycle_deps.require_viewer] = lambda: VIEWER

    client = TestClient(app)
    try:
        yield client, store, ledger, workflow
    finally:
        app.dependency_overrides.clear()


def test_transition_endpoint_returns_result(lifecycle_client):
    client, store, ledger, _ = lifecycle_client

    response = client.post(
        "/lifecycle/event/evt-1/transitions",
        json={"targetStatus": "published", "reason": "ready"},
        headers={"X-Correlation-ID": "corr-http"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["previousStatus"] == "draft"
    assert body["newStatus"] == "published"
    assert body["correlationId"] == "corr-http"
    assert ledger.envelopes[0].actor == Actor.user("organizer-1")


def test_stake_transition_accepts_camel_case_record(lifecycle_client):
    client, store, ledger, _ = lifecycle_client

    response = client.post(
        "/lifecycle/ticket/tkt-1/transitions",
        json={
            "targetStatus": "staked",
            "stake": {"amount": 0.01, "currency": "ETH", "txHash": "0xstake", "walletAddress": "0xHolder"},
        },
    )

    assert response.status_code == 200
    assert store.status_of(EntityKind.TICKET, "tkt-1") is TicketStatus.STAKED
    assert ledger.envelopes[0].payload["txHash"] == "0xstake"


@pytest.mark.parametrize(
    ("path", "body", "status_code", "code"),
    [
        ("/lifecycle/event/evt-1/transitions", {"targetStatus": "live"}, 409, "INVALID_TRANSITION"),
        ("/lifecycle/ticket/tkt-1/transitions", {"targetStatus": "published"}, 409, "INVALID_TRANSITION"),
        ("/lifecycle/ticket/tkt-1/transitions", {"targetStatus": "staked"}, 422, "GUARD_FAILED"),
        ("/lifecycle/ticket/tkt-9/transitions", {"targetStatus": "issued"}, 404, "ENTITY_NOT_FOUND"),
    ],
)
def test_transition_errors_map_to_http(lifecycle_client, path, body, status_code, code):
    client, _, ledger, _ = lifecycle_client

    response = client.post(path, json=body)

    assert response.status_code == status_code
    assert response.json()["detail"]["code"] == code
    assert ledger.envelopes == []


def test_unknown_entity_kind_is_rejected(lifecycle_client):
    client, *_ = lifecycle_client
    response = client.post("/lifecycle/venue/v-1/transitions", json={"targetStatus": "published"})
    assert response.status_code == 422


def test_status_endpoint_lists_valid_transitions(lifecycle_client):
    client, *_ = lifecycle_client

    response = client.get("/lifecycle/ticket/tkt-1/status")

    assert response.status_code == 200
    assert response.json() == {
        "entityKind": "ticket",
        "entityId": "tkt-1",
        "status": "approved",
        "validTransitions": ["issued", "staked"],
        "description": "Approved, awaiting stake or ticket issue",
    }


def test_audit_endpoint_returns_envelopes_newest_first(lifecycle_client):
    client, *_ = lifecycle_client
    client.post("/lifecycle/event/evt-1/transitions", json={"targetStatus": "published"})
    client.post("/lifecycle/event/evt-1/transitions", json={"targetStatus": "live"})

    response = client.get("/lifecycle/event/evt-1/audit", params={"order": "desc", "limit": 1})

    assert response.status_code == 200
    assert [item["eventType"] for item in response.json()] == ["EVENT_STARTED"]


def test_timeline_routes(lifecycle_client):
    client, _, ledger, _ = lifecycle_client
    ledger.envelopes.append(
        AuditEnvelope(
            entity_type=EntityKind.TICKET,
            entity_id="tkt-1",
            event_type="TICKET_STAKED",
            actor=Actor.system(),
            correlation_id="corr-open",
            created_at=BASE_TIME,
        )
    )

    entity = client.get("/timeline/ticket/tkt-1")
    transaction = client.get("/timeline/transactions/corr-open")
    incomplete = client.get("/timeline/incomplete", params={"since": BASE_TIME.isoformat()})

    assert entity.json()["count"] == 1
    assert [item["correlationId"] for item in transaction.json()] == ["corr-open"]
    assert [item["entityId"] for item in incomplete.json()] == ["tkt-1"]


def test_confirm_stake_maps_verification_failure(lifecycle_client):
    client, _, _, workflow = lifecycle_client
    workflow.confirm_stake = AsyncMock(side_effect=VerificationFailed("Transaction 0xbad not found"))

    response = client.post("/tickets/tkt-1/stake/confirm", json={"walletAddress": "0xHolder", "txHash": "0xbad"})

    assert response.status_code == 402
    assert response.json()["detail"]["retryable"] is True


def test_database_errors_hide_driver_details(lifecycle_client):
    client, _, _, workflow = lifecycle_client
    workflow.check_in = AsyncMock(side_effect=DatabaseError("relation tickets does not exist"))

    response = client.post("/tickets/tkt-1/check-in")

    assert response.status_code == 500
    assert response.json()["detail"]["message"] == "Persistence failure"


def test_missing_service_returns_503():
    app = create_app()
    app.dependency_overrides[lifecycle_deps.require_viewer] = lambda: VIEWER
    client = TestClient(app)

    response = client.get("/lifecycle/event/evt-1/status")

    assert response.status_code == 503


def test_ping_and_metrics(lifecycle_client):
    client, *_ = lifecycle_client

    assert client.get("/ping").json() == {"status": "ok"}
    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "lifecycle_transitions_total" in metrics.text


def test_timeline_reports_drift_and_unsettled_payments(lifecycle_client):
    client, _, ledger, _ = lifecycle_client
    ledger.envelopes.extend(
        [
            AuditEnvelope(
                entity_type=EntityKind.TICKET,
                entity_id="tkt-1",
                event_type="TICKET_CHECKED_IN",
                actor=Actor.user("organizer-1"),
                correlation_id="corr-door",
                created_at=BASE_TIME,
                payload={"previousStatus": "staked", "newStatus": "checked_in"},
            ),
            AuditEnvelope(
                entity_type=EntityKind.TICKET,
                entity_id="tkt-1",
                event_type="PAYMENT_RELEASED",
                actor=Actor.system(),
                correlation_id="corr-door",
                created_at=BASE_TIME,
                payload={"success": False, "error": "relayer down"},
            ),
        ]
    )
    since = {"since": BASE_TIME.isoformat()}

    drift = client.get("/timeline/drift", params=since)
    unsettled = client.get("/timeline/unsettled", params=since)

    assert drift.status_code == 200
    (item,) = drift.json()
    assert item["entityId"] == "tkt-1"
    assert item["storedStatus"] == TicketStatus.APPROVED.value
    assert item["ledgerStatus"] == "checked_in"
    (payment,) = unsettled.json()
    assert payment["ticketId"] == "tkt-1"
    assert payment["attempts"] == 1
    assert payment["lastError"] == "relayer down"
