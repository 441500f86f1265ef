from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ticketflow.lifecycle.models import RefundRecord, StakeRecord


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StakePayload(CamelModel):
    amount: float = Field(..., gt=0)
    currency: str = Field(..., min_length=1, max_length=16)
    tx_hash: str = Field(..., min_length=1)
    wallet_address: str = Field(..., min_length=1)
    network: str | None = None

    def to_record(self) -> StakeRecord:
        return StakeRecord(
            amount=self.amount,
            currency=self.currency,
            tx_hash=self.tx_hash,
            wallet_address=self.wallet_address,
            network=self.network,
        )


class RefundPayload(CamelModel):
    tx_hash: str = Field(..., min_length=1)
    amount: float | None = Field(default=None, gt=0)

    def to_record(self) -> RefundRecord:
        return RefundRecord(tx_hash=self.tx_hash, amount=self.amount)


class TransitionRequestBody(CamelModel):
    target_status: str = Field(..., min_length=1)
    reason: str = Field(default="", max_length=500)
    metadata: dict[str, Any] = Field(default_factory=dict)
    stake: StakePayload | None = None
    refund: RefundPayload | None = None
    causation_id: str | None = None


class TransitionResponse(CamelModel):
    success: bool
    entity_kind: str
    entity_id: str
    previous_status: str
    new_status: str
    transitioned_at: datetime
    correlation_id: str
    envelope_id: str


class StatusResponse(CamelModel):
    entity_kind: str
    entity_id: str
    status: str
    valid_transitions: list[str]
    description: str = ""


class ActorResponse(CamelModel):
    type: str
    id: str | None = None


class EnvelopeResponse(CamelModel):
    id: str
    entity_type: str
    entity_id: str
    event_type: str
    actor: ActorResponse
    correlation_id: str
    causation_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class StakeVerificationBody(CamelModel):
    wallet_address: str = Field(..., min_length=1)
    tx_hash: str = Field(..., min_length=1)
    network: str | None = None


class VerificationResponse(CamelModel):
    verified: bool
    stake: dict[str, Any] | None = None
    info: dict[str, Any] | None = None
    error: str | None = None


class CheckInResponse(CamelModel):
    transition: TransitionResponse
    settlement: dict[str, Any] | None = None


class EntityTimelineResponse(CamelModel):
    entity_type: str
    entity_id: str
    count: int
    first_at: datetime | None = None
    last_at: datetime | None = None
    events: list[EnvelopeResponse]


class IncompleteTransactionResponse(CamelModel):
    correlation_id: str
    entity_id: str
    started_at: datetime
    last_event_type: str
    events: list[EnvelopeResponse]


class StatusDriftResponse(CamelModel):
    entity_type: str
    entity_id: str
    stored_status: str | None = None
    ledger_status: str
    last_envelope_id: str
    last_event_at: datetime


class UnsettledSettlementResponse(CamelModel):
    ticket_id: str
    correlation_id: str
    event_type: str
    transitioned_at: datetime
    attempts: int
    last_error: str | None = None
