from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from ticketflow.audit.ledger import AuditLedger
from ticketflow.audit.models import Actor, AuditEnvelope, Order
from ticketflow.settlement.verifier import SettlementVerifier, VerificationOutcome

from .commands import Command, command_for, to_request
from .errors import EntityNotFound, VerificationFailed
from .executor import EntityStore, TransitionExecutor
from .models import LifecycleEntity, RefundRecord, StakeRecord, StatusInfo, TransitionResult
from .state import STATUS_DESCRIPTIONS, EntityKind, StateGraph, Status, TicketStatus


@dataclass(slots=True)
class LifecycleService:
    """Command and query surface consumed by the API layer and jobs."""

    executor: TransitionExecutor
    store: EntityStore
    ledger: AuditLedger
    verifier: SettlementVerifier | None = None

    async def transition(
        self,
        kind: EntityKind,
        entity_id: str,
        target: Status | str,
        actor: Actor,
        *,
        reason: str = "",
        metadata: Mapping[str, Any] | None = None,
        stake: StakeRecord | None = None,
        refund: RefundRecord | None = None,
        correlation_id: str | None = None,
        causation_id: str | None = None,
    ) -> TransitionResult:
        command = command_for(
            kind,
            target,
            entity_id=entity_id,
            actor=actor,
            reason=reason,
            metadata=metadata,
            stake=stake,
            refund=refund,
            correlation_id=correlation_id,
            causation_id=causation_id,
        )
        return await self.submit(command)

    async def submit(self, command: Command) -> TransitionResult:
        return await self.executor.execute(to_request(command))

    async def get_entity(self, kind: EntityKind, entity_id: str) -> LifecycleEntity:
        entity = await self.store.get(kind, entity_id)
        if entity is None:
            raise EntityNotFound(f"{EntityKind(kind).value.capitalize()} {entity_id} not found")
        return entity

    async def current_status(self, kind: EntityKind, entity_id: str) -> StatusInfo:
        entity = await self.get_entity(kind, entity_id)
        targets = StateGraph.legal_targets(entity.kind, entity.status)
        return StatusInfo(
            kind=entity.kind,
            entity_id=entity.id,
            status=entity.status,
            valid_transitions=tuple(sorted(targets, key=lambda status: status.value)),
            description=STATUS_DESCRIPTIONS.get(entity.status, ""),
        )

    async def audit_trail(
        self,
        kind: EntityKind,
        entity_id: str,
        limit: int = 50,
        *,
        order: Order = Order.OLDEST_FIRST,
    ) -> Sequence[AuditEnvelope]:
        return await self.ledger.by_entity(EntityKind(kind), entity_id, limit=limit, order=order)

    async def verify_stake(
        self,
        ticket_id: str,
        wallet_address: str,
        reference: str,
        *,
        network: str | None = None,
    ) -> VerificationOutcome:
        """Check an on-chain stake against the owning event's payout settings.

        Read-only: the ticket is not transitioned here.
        """

        if self.verifier is None:
            raise VerificationFailed(
                "Settlement verification is not configured",
                to_status=TicketStatus.STAKED,
            )
        ticket = await self.get_entity(EntityKind.TICKET, ticket_id)
        event = await self.get_entity(EntityKind.EVENT, ticket.event_id or "")
        return await self.verifier.verify(
            ticket.id,
            event.payout_wallet,
            event.stake_amount,
            reference,
            network=network or event.settlement_network or "ethereum",
            wallet_address=wallet_address,
        )
