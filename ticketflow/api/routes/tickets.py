from __future__ import annotations

from fastapi import APIRouter

from ticketflow.api.errors import http_error
from ticketflow.api.schemas import (
    CheckInResponse,
    StakeVerificationBody,
    TransitionResponse,
    VerificationResponse,
)
from ticketflow.dependencies.lifecycle import (
    CorrelationId,
    LifecycleServiceDep,
    OrganizerIdentity,
    SettlementWorkflowDep,
    ViewerIdentity,
)
from ticketflow.lifecycle.errors import LifecycleError

router = APIRouter(prefix="/tickets", tags=["tickets"])


@router.post("/{ticket_id}/stake/verify", response_model=VerificationResponse)
async def verify_stake(
    ticket_id: str,
    payload: StakeVerificationBody,
    service: LifecycleServiceDep,
    _: ViewerIdentity,
) -> VerificationResponse:
    """Check an on-chain stake without changing the ticket."""

    try:
        outcome = await service.verify_stake(
            ticket_id, payload.wallet_address, payload.tx_hash, network=payload.network
        )
    except LifecycleError as exc:
        raise http_error(exc) from exc
    return VerificationResponse.model_validate(outcome.to_dict())


@router.post("/{ticket_id}/stake/confirm", response_model=TransitionResponse)
async def confirm_stake(
    ticket_id: str,
    payload: StakeVerificationBody,
    workflow: SettlementWorkflowDep,
    identity: ViewerIdentity,
    correlation_id: CorrelationId,
) -> TransitionResponse:
    """Verify the stake and move the ticket to ``staked`` in one request."""

    try:
        result = await workflow.confirm_stake(
            ticket_id,
            payload.wallet_address,
            payload.tx_hash,
            identity.as_actor(),
            network=payload.network,
            correlation_id=correlation_id,
        )
    except LifecycleError as exc:
        raise http_error(exc) from exc
    return TransitionResponse.model_validate(result.to_dict())


@router.post("/{ticket_id}/check-in", response_model=CheckInResponse)
async def check_in(
    ticket_id: str,
    workflow: SettlementWorkflowDep,
    identity: OrganizerIdentity,
    correlation_id: CorrelationId,
) -> CheckInResponse:
    try:
        outcome = await workflow.check_in(ticket_id, identity.as_actor(), correlation_id=correlation_id)
    except LifecycleError as exc:
        raise http_error(exc) from exc
    return CheckInResponse.model_validate(outcome.to_dict())
