"""Caller-side orchestration of stake confirmation, check-in and forfeiture.

Verification gates the ``staked`` transition and happens before any write.
Release and forfeit run only after their ticket transition has committed;
their outcome is appended to the ledger and never rolls ticket state back.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from ticketflow.audit.ledger import AuditLedger
from ticketflow.audit.models import Actor, AuditEnvelope, EventType, MonotonicClock, Order
from ticketflow.lifecycle.commands import CheckInTicket, ForfeitTicket, StakeTicket
from ticketflow.lifecycle.errors import VerificationFailed
from ticketflow.lifecycle.models import TransitionResult
from ticketflow.lifecycle.service import LifecycleService
from ticketflow.lifecycle.state import EntityKind, TicketStatus

from .verifier import SettlementReceipt, SettlementVerifier

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SettlementResult:
    transition: TransitionResult
    receipt: SettlementReceipt | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "transition": self.transition.to_dict(),
            "settlement": self.receipt.to_dict() if self.receipt else None,
        }


class SettlementWorkflow:
    def __init__(
        self,
        service: LifecycleService,
        verifier: SettlementVerifier,
        ledger: AuditLedger,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._service = service
        self._verifier = verifier
        self._ledger = ledger
        self._clock = clock or MonotonicClock()

    async def confirm_stake(
        self,
        ticket_id: str,
        wallet_address: str,
        reference: str,
        actor: Actor,
        *,
        network: str | None = None,
        correlation_id: str | None = None,
    ) -> TransitionResult:
        outcome = await self._service.verify_stake(ticket_id, wallet_address, reference, network=network)
        if not outcome.verified or outcome.stake is None:
            raise VerificationFailed(
                outcome.error or "Stake could not be verified",
                to_status=TicketStatus.STAKED,
                reason=outcome.error,
            )
        return await self._service.submit(
            StakeTicket(
                entity_id=ticket_id,
                actor=actor,
                reason="On-chain stake verified",
                stake=outcome.stake,
                correlation_id=correlation_id,
            )
        )

    async def check_in(
        self,
        ticket_id: str,
        actor: Actor,
        *,
        correlation_id: str | None = None,
    ) -> SettlementResult:
        result = await self._service.submit(
            CheckInTicket(entity_id=ticket_id, actor=actor, reason="Checked in", correlation_id=correlation_id)
        )
        if result.previous_status is not TicketStatus.STAKED:
            return SettlementResult(result)
        receipt = await self._settle(result, actor, EventType.PAYMENT_RELEASED)
        return SettlementResult(result, receipt)

    async def forfeit(
        self,
        ticket_id: str,
        actor: Actor,
        *,
        reason: str = "No-show after event end",
        correlation_id: str | None = None,
    ) -> SettlementResult:
        result = await self._service.submit(
            ForfeitTicket(entity_id=ticket_id, actor=actor, reason=reason, correlation_id=correlation_id)
        )
        receipt = await self._settle(result, actor, EventType.PAYMENT_FORFEITED)
        return SettlementResult(result, receipt)

    async def _stake_details(self, ticket_id: str) -> tuple[str | None, str]:
        """Wallet and network recorded when the ticket was staked."""

        trail = await self._ledger.by_entity(EntityKind.TICKET, ticket_id, order=Order.NEWEST_FIRST)
        for envelope in trail:
            if envelope.event_type == EventType.TICKET_STAKED.value:
                payload = envelope.payload
                return payload.get("walletAddress"), payload.get("network") or "ethereum"
        return None, "ethereum"

    async def _settle(self, result: TransitionResult, actor: Actor, event_type: EventType) -> SettlementReceipt:
        holder_address, network = await self._stake_details(result.entity_id)
        if not holder_address:
            logger.warning("No staked wallet recorded for ticket %s; skipping settlement", result.entity_id)
            receipt = SettlementReceipt(False, error="No staked wallet recorded")
        elif event_type is EventType.PAYMENT_RELEASED:
            receipt = await self._verifier.release(result.entity_id, holder_address, network=network)
        else:
            receipt = await self._verifier.forfeit(result.entity_id, holder_address, network=network)

        if not receipt.success:
            logger.error(
                "%s for ticket %s not settled on-chain: %s", event_type.value, result.entity_id, receipt.error
            )
        await self._ledger.append(
            AuditEnvelope(
                entity_type=EntityKind.TICKET,
                entity_id=result.entity_id,
                event_type=event_type.value,
                actor=actor,
                correlation_id=result.correlation_id,
                causation_id=result.envelope_id,
                payload={
                    "entityId": result.entity_id,
                    "holderAddress": holder_address,
                    "network": network,
                    **receipt.to_dict(),
                },
                created_at=self._clock(),
            )
        )
        return receipt
