from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

from ticketflow.audit.models import Actor

from .state import EntityKind, Status


@dataclass(slots=True)
class LifecycleEntity:
    """Snapshot of an event or ticket row as read before a transition.

    Events use ``owner_id`` (the organizer) and the scheduling/settlement
    columns; tickets use ``event_id`` and ``holder_id``.
    """

    kind: EntityKind
    id: str
    status: Status
    previous_status: Status | None = None
    transitioned_at: datetime | None = None
    owner_id: str | None = None
    event_id: str | None = None
    holder_id: str | None = None
    title: str | None = None
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    payout_wallet: str | None = None
    stake_amount: float | None = None
    stake_currency: str | None = None
    settlement_network: str | None = None


@dataclass(frozen=True, slots=True)
class StakeRecord:
    """Confirmed on-chain stake; produced by the verifier, echoed into the ledger."""

    amount: float
    currency: str
    tx_hash: str
    wallet_address: str
    network: str | None = None
    verified_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "amount": self.amount,
            "currency": self.currency,
            "network": self.network,
            "txHash": self.tx_hash,
            "walletAddress": self.wallet_address,
            "verifiedAt": self.verified_at.isoformat() if self.verified_at else None,
        }


@dataclass(frozen=True, slots=True)
class RefundRecord:
    tx_hash: str
    amount: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"txHash": self.tx_hash, "amount": self.amount}


@dataclass(frozen=True, slots=True)
class TransitionRequest:
    kind: EntityKind
    entity_id: str
    target: Status
    actor: Actor
    reason: str = ""
    metadata: Mapping[str, Any] = field(default_factory=dict)
    stake: StakeRecord | None = None
    refund: RefundRecord | None = None
    correlation_id: str | None = None
    causation_id: str | None = None

    def payload(self) -> dict[str, Any]:
        """Target-specific fields merged into the ledger envelope payload."""

        data: dict[str, Any] = {}
        if self.stake is not None:
            data.update(self.stake.to_dict())
        if self.refund is not None:
            data.update(self.refund.to_dict())
        return data


@dataclass(frozen=True, slots=True)
class TransitionResult:
    success: bool
    kind: EntityKind
    entity_id: str
    previous_status: Status
    new_status: Status
    transitioned_at: datetime
    correlation_id: str
    envelope_id: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "entityKind": self.kind.value,
            "entityId": self.entity_id,
            "previousStatus": self.previous_status.value,
            "newStatus": self.new_status.value,
            "transitionedAt": self.transitioned_at.isoformat(),
            "correlationId": self.correlation_id,
            "envelopeId": self.envelope_id,
        }


@dataclass(frozen=True, slots=True)
class StatusInfo:
    kind: EntityKind
    entity_id: str
    status: Status
    valid_transitions: tuple[Status, ...]
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "entityKind": self.kind.value,
            "entityId": self.entity_id,
            "status": self.status.value,
            "validTransitions": [status.value for status in self.valid_transitions],
            "description": self.description,
        }
