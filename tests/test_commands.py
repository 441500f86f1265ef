from __future__ import annotations

import pytest

from ticketflow.audit.models import Actor
from ticketflow.lifecycle.commands import (
    ArchiveEvent,
    CheckInTicket,
    PublishEvent,
    RefundTicket,
    StakeTicket,
    UnpublishEvent,
    command_for,
    to_request,
)
from ticketflow.lifecycle.errors import InvalidTransition
from ticketflow.lifecycle.models import RefundRecord, StakeRecord
from ticketflow.lifecycle.state import EntityKind, EventStatus, TicketStatus

ACTOR = Actor.user("organizer-1")


@pytest.mark.parametrize(
    ("kind", "target", "expected"),
    [
        (EntityKind.EVENT, EventStatus.PUBLISHED, PublishEvent),
        (EntityKind.EVENT, "archived", ArchiveEvent),
        (EntityKind.EVENT, EventStatus.DRAFT, UnpublishEvent),
        (EntityKind.TICKET, "staked", StakeTicket),
        (EntityKind.TICKET, TicketStatus.CHECKED_IN, CheckInTicket),
    ],
)
def test_command_for_picks_command_type(kind, target, expected):
    command = command_for(kind, target, entity_id="x-1", actor=ACTOR)
    assert type(command) is expected


def test_command_for_rejects_unknown_and_cross_kind_targets():
    with pytest.raises(InvalidTransition):
        command_for(EntityKind.EVENT, "staked", entity_id="evt-1", actor=ACTOR)
    with pytest.raises(InvalidTransition):
        command_for(EntityKind.TICKET, "nonsense", entity_id="tkt-1", actor=ACTOR)


def test_no_command_enters_initial_ticket_status():
    with pytest.raises(InvalidTransition) as excinfo:
        command_for(EntityKind.TICKET, TicketStatus.PENDING, entity_id="tkt-1", actor=ACTOR)
    assert excinfo.value.to_status == "pending"


def test_stake_command_carries_record_into_request():
    stake = StakeRecord(amount=1.5, currency="SOL", tx_hash="sig-1", wallet_address="Holder111", network="solana")
    command = command_for(
        EntityKind.TICKET,
        TicketStatus.STAKED,
        entity_id="tkt-1",
        actor=ACTOR,
        reason="paid",
        metadata={"channel": "app"},
        stake=stake,
        correlation_id="corr-1",
    )

    request = to_request(command)

    assert request.kind is EntityKind.TICKET
    assert request.target is TicketStatus.STAKED
    assert request.stake == stake
    assert request.refund is None
    assert request.reason == "paid"
    assert request.metadata == {"channel": "app"}
    assert request.correlation_id == "corr-1"
    assert request.payload()["txHash"] == "sig-1"


def test_refund_record_only_attached_to_refund_command():
    refund = RefundRecord(tx_hash="0xrefund", amount=0.01)

    refund_command = command_for(EntityKind.TICKET, "refunded", entity_id="tkt-1", actor=ACTOR, refund=refund)
    check_in_command = command_for(EntityKind.TICKET, "checked_in", entity_id="tkt-1", actor=ACTOR, refund=refund)

    assert isinstance(refund_command, RefundTicket)
    assert to_request(refund_command).payload() == {"txHash": "0xrefund", "amount": 0.01}
    assert to_request(check_in_command).refund is None


def test_to_request_maps_each_command_to_its_target():
    assert to_request(PublishEvent(entity_id="evt-1", actor=ACTOR)).target is EventStatus.PUBLISHED
    assert to_request(UnpublishEvent(entity_id="evt-1", actor=ACTOR)).target is EventStatus.DRAFT
    assert to_request(CheckInTicket(entity_id="tkt-1", actor=ACTOR)).target is TicketStatus.CHECKED_IN


def test_commands_are_immutable():
    command = PublishEvent(entity_id="evt-1", actor=ACTOR)
    with pytest.raises(AttributeError):
        command.entity_id = "evt-2"  # type: ignore[misc]
