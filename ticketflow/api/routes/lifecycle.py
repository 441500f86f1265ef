from __future__ import annotations

from fastapi import APIRouter, Query, status

from ticketflow.api.errors import http_error
from ticketflow.api.schemas import EnvelopeResponse, StatusResponse, TransitionRequestBody, TransitionResponse
from ticketflow.audit.models import Order
from ticketflow.dependencies.lifecycle import (
    CorrelationId,
    LifecycleServiceDep,
    OrganizerIdentity,
    ViewerIdentity,
)
from ticketflow.lifecycle.errors import LifecycleError
from ticketflow.lifecycle.state import EntityKind

router = APIRouter(prefix="/lifecycle", tags=["lifecycle"])


@router.post(
    "/{kind}/{entity_id}/transitions",
    response_model=TransitionResponse,
    status_code=status.HTTP_200_OK,
)
async def transition(
    kind: EntityKind,
    entity_id: str,
    payload: TransitionRequestBody,
    service: LifecycleServiceDep,
    identity: OrganizerIdentity,
    correlation_id: CorrelationId,
) -> TransitionResponse:
    try:
        result = await service.transition(
            kind,
            entity_id,
            payload.target_status,
            identity.as_actor(),
            reason=payload.reason,
            metadata=payload.metadata,
            stake=payload.stake.to_record() if payload.stake else None,
            refund=payload.refund.to_record() if payload.refund else None,
            correlation_id=correlation_id,
            causation_id=payload.causation_id,
        )
    except LifecycleError as exc:
        raise http_error(exc) from exc
    return TransitionResponse.model_validate(result.to_dict())


@router.get("/{kind}/{entity_id}/status", response_model=StatusResponse)
async def current_status(
    kind: EntityKind,
    entity_id: str,
    service: LifecycleServiceDep,
    _: ViewerIdentity,
) -> StatusResponse:
    try:
        info = await service.current_status(kind, entity_id)
    except LifecycleError as exc:
        raise http_error(exc) from exc
    return StatusResponse.model_validate(info.to_dict())


@router.get("/{kind}/{entity_id}/audit", response_model=list[EnvelopeResponse])
async def audit_trail(
    kind: EntityKind,
    entity_id: str,
    service: LifecycleServiceDep,
    _: ViewerIdentity,
    limit: int = Query(default=50, ge=1, le=500),
    order: Order = Query(default=Order.OLDEST_FIRST),
) -> list[EnvelopeResponse]:
    try:
        envelopes = await service.audit_trail(kind, entity_id, limit, order=order)
    except LifecycleError as exc:
        raise http_error(exc) from exc
    return [EnvelopeResponse.model_validate(envelope.to_dict()) for envelope in envelopes]
