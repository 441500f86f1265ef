from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Query

from ticketflow.api.errors import http_error
from ticketflow.api.schemas import (
    EntityTimelineResponse,
    EnvelopeResponse,
    IncompleteTransactionResponse,
    StatusDriftResponse,
    UnsettledSettlementResponse,
)
from ticketflow.dependencies.lifecycle import TimelineServiceDep, ViewerIdentity
from ticketflow.lifecycle.errors import LifecycleError
from ticketflow.lifecycle.state import EntityKind

router = APIRouter(prefix="/timeline", tags=["timeline"])


# Fixed paths first so they are not captured by /{kind}/{entity_id}.
@router.get("/transactions/{correlation_id}", response_model=list[EnvelopeResponse])
async def transaction_timeline(
    correlation_id: str,
    timeline: TimelineServiceDep,
    _: ViewerIdentity,
) -> list[EnvelopeResponse]:
    try:
        envelopes = await timeline.transaction_timeline(correlation_id)
    except LifecycleError as exc:
        raise http_error(exc) from exc
    return [EnvelopeResponse.model_validate(envelope.to_dict()) for envelope in envelopes]


@router.get("/incomplete", response_model=list[IncompleteTransactionResponse])
async def incomplete_transactions(
    timeline: TimelineServiceDep,
    _: ViewerIdentity,
    since: datetime = Query(...),
    limit: int = Query(default=50, ge=1, le=500),
) -> list[IncompleteTransactionResponse]:
    try:
        incomplete = await timeline.incomplete_since(since, limit=limit)
    except LifecycleError as exc:
        raise http_error(exc) from exc
    return [IncompleteTransactionResponse.model_validate(item.to_dict()) for item in incomplete]


@router.get("/drift", response_model=list[StatusDriftResponse])
async def status_drift(
    timeline: TimelineServiceDep,
    _: ViewerIdentity,
    since: datetime = Query(...),
    limit: int = Query(default=50, ge=1, le=500),
) -> list[StatusDriftResponse]:
    try:
        drifted = await timeline.drift_since(since, limit=limit)
    except LifecycleError as exc:
        raise http_error(exc) from exc
    return [StatusDriftResponse.model_validate(item.to_dict()) for item in drifted]


@router.get("/unsettled", response_model=list[UnsettledSettlementResponse])
async def unsettled_settlements(
    timeline: TimelineServiceDep,
    _: ViewerIdentity,
    since: datetime = Query(...),
    limit: int = Query(default=50, ge=1, le=500),
) -> list[UnsettledSettlementResponse]:
    try:
        unsettled = await timeline.unsettled_since(since, limit=limit)
    except LifecycleError as exc:
        raise http_error(exc) from exc
    return [UnsettledSettlementResponse.model_validate(item.to_dict()) for item in unsettled]


@router.get("/recent", response_model=list[EnvelopeResponse])
async def recent_activity(
    timeline: TimelineServiceDep,
    _: ViewerIdentity,
    limit: int = Query(default=100, ge=1, le=500),
    event_type: list[str] | None = Query(default=None),
) -> list[EnvelopeResponse]:
    try:
        envelopes = await timeline.recent(limit, event_types=event_type)
    except LifecycleError as exc:
        raise http_error(exc) from exc
    return [EnvelopeResponse.model_validate(envelope.to_dict()) for envelope in envelopes]


@router.get("/{kind}/{entity_id}", response_model=EntityTimelineResponse)
async def entity_timeline(
    kind: EntityKind,
    entity_id: str,
    timeline: TimelineServiceDep,
    _: ViewerIdentity,
) -> EntityTimelineResponse:
    try:
        history = await timeline.entity_timeline(kind, entity_id)
    except LifecycleError as exc:
        raise http_error(exc) from exc
    return EntityTimelineResponse.model_validate(history.to_dict())
