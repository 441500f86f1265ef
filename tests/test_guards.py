from __future__ import annotations

from datetime import timedelta

import pytest

from ticketflow.audit.models import Actor
from ticketflow.lifecycle.guards import GuardContext, GuardDecision, GuardEvaluator, default_guards
from ticketflow.lifecycle.models import RefundRecord, StakeRecord, TransitionRequest
from ticketflow.lifecycle.state import EntityKind, EventStatus, TicketStatus

from tests.fakes import BASE_TIME, InMemoryEntityStore, make_event, make_ticket


def _context(entity, target, *, store=None, stake=None, refund=None, now=BASE_TIME) -> GuardContext:
    request = TransitionRequest(
        kind=entity.kind,
        entity_id=entity.id,
        target=target,
        actor=Actor.system(),
        stake=stake,
        refund=refund,
    )
    return GuardContext(entity=entity, request=request, reader=store or InMemoryEntityStore(), now=now)


@pytest.mark.asyncio
async def test_publish_requires_title():
    decision = await default_guards().evaluate(_context(make_event(title="  "), EventStatus.PUBLISHED))
    assert not decision.allowed
    assert "title" in decision.reason


@pytest.mark.asyncio
async def test_publish_requires_start_date():
    decision = await default_guards().evaluate(_context(make_event(starts_at=None), EventStatus.PUBLISHED))
    assert not decision.allowed
    assert "start date" in decision.reason


@pytest.mark.asyncio
async def test_publish_allowed_when_ready():
    decision = await default_guards().evaluate(_context(make_event(), EventStatus.PUBLISHED))
    assert decision == GuardDecision.allow()


@pytest.mark.asyncio
async def test_stake_requires_transaction_hash():
    evaluator = default_guards()
    ticket = make_ticket(status=TicketStatus.APPROVED)

    missing = await evaluator.evaluate(_context(ticket, TicketStatus.STAKED))
    present = await evaluator.evaluate(
        _context(
            ticket,
            TicketStatus.STAKED,
            stake=StakeRecord(amount=0.01, currency="ETH", tx_hash="0xabc", wallet_address="0x123"),
        )
    )

    assert not missing.allowed
    assert present.allowed


@pytest.mark.asyncio
async def test_refund_requires_transaction_hash():
    evaluator = default_guards()
    ticket = make_ticket(status=TicketStatus.STAKED)

    assert not (await evaluator.evaluate(_context(ticket, TicketStatus.REFUNDED))).allowed
    assert (
        await evaluator.evaluate(_context(ticket, TicketStatus.REFUNDED, refund=RefundRecord(tx_hash="0xrefund")))
    ).allowed


@pytest.mark.asyncio
async def test_forfeit_waits_for_event_end():
    event = make_event(status=EventStatus.LIVE)
    ticket = make_ticket(status=TicketStatus.STAKED)
    store = InMemoryEntityStore(event, ticket)
    evaluator = default_guards()

    early = await evaluator.evaluate(_context(ticket, TicketStatus.FORFEITED, store=store))
    after_end = await evaluator.evaluate(
        _context(ticket, TicketStatus.FORFEITED, store=store, now=event.ends_at + timedelta(minutes=1))
    )

    assert not early.allowed
    assert "ended" in early.reason
    assert after_end.allowed


@pytest.mark.asyncio
async def test_forfeit_allowed_once_event_ended():
    store = InMemoryEntityStore(make_event(status=EventStatus.ENDED), make_ticket(status=TicketStatus.STAKED))
    ticket = make_ticket(status=TicketStatus.STAKED)

    decision = await default_guards().evaluate(_context(ticket, TicketStatus.FORFEITED, store=store))

    assert decision.allowed


def test_documented_denials_carry_reasons():
    evaluator = default_guards()
    assert evaluator.denial_reason(EntityKind.EVENT, EventStatus.LIVE, EventStatus.DRAFT) == (
        "Cannot revert to draft while event is live"
    )
    assert "republish" in evaluator.denial_reason(EntityKind.EVENT, EventStatus.ENDED, EventStatus.PUBLISHED)
    assert evaluator.denial_reason(EntityKind.EVENT, EventStatus.DRAFT, EventStatus.PUBLISHED) is None


@pytest.mark.asyncio
async def test_unguarded_pairs_fail_open():
    evaluator = GuardEvaluator()
    decision = await evaluator.evaluate(_context(make_ticket(status=TicketStatus.ISSUED), TicketStatus.REVOKED))
    assert decision.allowed


@pytest.mark.asyncio
async def test_first_denying_guard_wins():
    calls: list[str] = []

    async def deny(context):
        calls.append("deny")
        return GuardDecision.deny("closed for maintenance")

    async def never(context):
        calls.append("never")
        return GuardDecision.allow()

    evaluator = GuardEvaluator()
    evaluator.register(EntityKind.TICKET, TicketStatus.ISSUED, TicketStatus.REVOKED, deny)
    evaluator.register(EntityKind.TICKET, "issued", "revoked", never)

    decision = await evaluator.evaluate(_context(make_ticket(status=TicketStatus.ISSUED), TicketStatus.REVOKED))

    assert decision.reason == "closed for maintenance"
    assert calls == ["deny"]
