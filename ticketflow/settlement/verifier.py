from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from ticketflow.audit.ledger import AuditLedger
from ticketflow.audit.models import EventType
from ticketflow.lifecycle.models import StakeRecord
from ticketflow.metrics import MetricsRegistry, metrics_registry
from ticketflow.metrics.definitions import SETTLEMENT_VERIFICATIONS_TOTAL

from .chains import ChainReader, ChainRpcError, ChainWriter

logger = logging.getLogger(__name__)

# Float rounding from wei/lamport conversion must not fail an exact payment.
_AMOUNT_TOLERANCE = 1e-9


@dataclass(frozen=True, slots=True)
class VerificationOutcome:
    verified: bool
    stake: StakeRecord | None = None
    info: Mapping[str, Any] | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "verified": self.verified,
            "stake": self.stake.to_dict() if self.stake else None,
            "info": dict(self.info) if self.info else None,
            "error": self.error,
        }


@dataclass(frozen=True, slots=True)
class SettlementReceipt:
    success: bool
    tx_hash: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "txHash": self.tx_hash, "error": self.error}


class SettlementVerifier:
    """Confirm stakes on-chain and push escrow release/forfeit.

    ``verify`` never touches ticket state. ``release`` and ``forfeit`` are
    called only after the matching ticket transition has committed.

    A stake is only accepted when the wallet it is recorded for actually sent
    the transaction, and when no other ticket already staked with it. The
    ledger lookup catches the common case early; the unique index on staked
    transaction hashes settles concurrent attempts.
    """

    def __init__(
        self,
        readers: Mapping[str, ChainReader],
        writer: ChainWriter | None = None,
        *,
        ledger: AuditLedger | None = None,
        strict_recipient_check: bool = True,
        clock: Callable[[], datetime] | None = None,
        registry: MetricsRegistry | None = None,
    ) -> None:
        self._readers = dict(readers)
        self._writer = writer
        self._ledger = ledger
        self._strict_recipient_check = strict_recipient_check
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._verifications = (registry or metrics_registry).counter(
            SETTLEMENT_VERIFICATIONS_TOTAL, label_names=("network", "outcome")
        )

    @property
    def networks(self) -> tuple[str, ...]:
        return tuple(self._readers)

    async def verify(
        self,
        entity_id: str,
        expected_recipient: str | None,
        expected_amount: float | None,
        reference: str,
        *,
        network: str = "ethereum",
        wallet_address: str | None = None,
    ) -> VerificationOutcome:
        reader = self._readers.get(network)
        if reader is None:
            return self._failed(network, "unsupported", f"Unsupported settlement network: {network}")

        try:
            tx = await reader.get_transaction(reference, recipient=expected_recipient)
        except ChainRpcError as exc:
            logger.warning("Stake lookup for %s on %s failed: %s", entity_id, network, exc)
            return self._failed(network, "error", str(exc))

        if tx is None:
            return self._failed(network, "not_found", f"Transaction {reference} not found on {network}")
        if not tx.confirmed:
            return self._failed(network, "pending", f"Transaction {reference} is not yet confirmed")
        if not tx.succeeded:
            return self._failed(network, "reverted", f"Transaction {reference} failed on-chain")

        info: dict[str, Any] = {
            "txHash": tx.tx_hash,
            "recipients": list(tx.recipients),
            "sender": tx.sender,
            "amount": tx.amount,
        }
        if wallet_address and not (tx.sender and reader.same_address(wallet_address, tx.sender)):
            return self._failed(
                network,
                "sender_mismatch",
                f"Transaction {reference} was not sent by {wallet_address}",
                info,
            )

        claimed_by = await self._claimed_by(entity_id, {reference, tx.tx_hash})
        if claimed_by is not None:
            return self._failed(
                network,
                "reference_reused",
                f"Transaction {reference} already staked ticket {claimed_by}",
                info,
            )

        if not expected_recipient:
            message = f"No payout wallet configured to check transaction {reference} against"
            if self._strict_recipient_check:
                return self._failed(network, "recipient_unknown", message, info)
            logger.warning("%s; accepting because strict recipient check is disabled", message)
            info["recipientUnchecked"] = True
        elif not any(reader.same_address(expected_recipient, recipient) for recipient in tx.recipients):
            message = f"Transaction {reference} does not pay {expected_recipient}"
            if self._strict_recipient_check:
                return self._failed(network, "recipient_mismatch", message, info)
            logger.warning("%s; accepting because strict recipient check is disabled", message)
            info["recipientMismatch"] = True

        if expected_amount is not None:
            received = tx.amount or 0.0
            if received + _AMOUNT_TOLERANCE < expected_amount:
                return self._failed(
                    network,
                    "amount_short",
                    f"Transaction {reference} paid {received} {reader.currency}, expected {expected_amount}",
                    info,
                )

        stake = StakeRecord(
            amount=tx.amount if tx.amount is not None else float(expected_amount or 0.0),
            currency=reader.currency,
            tx_hash=tx.tx_hash,
            wallet_address=wallet_address or tx.sender or "",
            network=network,
            verified_at=self._clock(),
        )
        self._verifications.inc(labels={"network": network, "outcome": "verified"})
        logger.info("Stake %s verified for %s on %s", reference, entity_id, network)
        return VerificationOutcome(True, stake=stake, info=info)

    async def release(self, entity_id: str, holder_address: str, *, network: str = "ethereum") -> SettlementReceipt:
        return await self._settle("release", entity_id, holder_address, network)

    async def forfeit(self, entity_id: str, holder_address: str, *, network: str = "ethereum") -> SettlementReceipt:
        return await self._settle("forfeit", entity_id, holder_address, network)

    async def _settle(self, action: str, entity_id: str, holder_address: str, network: str) -> SettlementReceipt:
        if self._writer is None:
            logger.warning("Escrow relayer not configured; skipping %s for %s", action, entity_id)
            return SettlementReceipt(False, error="Escrow relayer not configured")
        writer_call = self._writer.release if action == "release" else self._writer.forfeit
        try:
            tx_hash = await writer_call(entity_id, holder_address, network=network)
        except ChainRpcError as exc:
            logger.error("Escrow %s for %s failed: %s", action, entity_id, exc)
            return SettlementReceipt(False, error=str(exc))
        return SettlementReceipt(True, tx_hash=tx_hash)

    async def _claimed_by(self, entity_id: str, references: set[str]) -> str | None:
        if self._ledger is None:
            return None
        for reference in sorted(ref for ref in references if ref):
            for envelope in await self._ledger.by_payload_value(
                EventType.TICKET_STAKED.value, "txHash", reference
            ):
                if envelope.entity_id != entity_id:
                    return envelope.entity_id
        return None

    def _failed(
        self, network: str, outcome: str, message: str, info: Mapping[str, Any] | None = None
    ) -> VerificationOutcome:
        self._verifications.inc(labels={"network": network, "outcome": outcome})
        logger.info("Stake verification failed (%s): %s", outcome, message)
        return VerificationOutcome(False, info=info, error=message)
