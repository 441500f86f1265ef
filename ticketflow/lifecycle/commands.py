"""One command type per transition target.

Callers build a command (or let :func:`command_for` build one from a generic
request) and :func:`to_request` resolves it into the executor's input.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Union, assert_never

from ticketflow.audit.models import Actor

from .errors import InvalidTransition
from .models import RefundRecord, StakeRecord, TransitionRequest
from .state import EntityKind, EventStatus, StateGraph, Status, TicketStatus


@dataclass(frozen=True, slots=True, kw_only=True)
class _Command:
    entity_id: str
    actor: Actor
    reason: str = ""
    metadata: Mapping[str, Any] = field(default_factory=dict)
    correlation_id: str | None = None
    causation_id: str | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class PublishEvent(_Command):
    pass


@dataclass(frozen=True, slots=True, kw_only=True)
class StartEvent(_Command):
    pass


@dataclass(frozen=True, slots=True, kw_only=True)
class EndEvent(_Command):
    pass


@dataclass(frozen=True, slots=True, kw_only=True)
class ArchiveEvent(_Command):
    pass


@dataclass(frozen=True, slots=True, kw_only=True)
class UnpublishEvent(_Command):
    pass


@dataclass(frozen=True, slots=True, kw_only=True)
class ApproveTicket(_Command):
    pass


@dataclass(frozen=True, slots=True, kw_only=True)
class RejectTicket(_Command):
    pass


@dataclass(frozen=True, slots=True, kw_only=True)
class IssueTicket(_Command):
    pass


@dataclass(frozen=True, slots=True, kw_only=True)
class StakeTicket(_Command):
    # Presence is enforced by the staking guard so the graph is consulted first.
    stake: StakeRecord | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class CheckInTicket(_Command):
    pass


@dataclass(frozen=True, slots=True, kw_only=True)
class RefundTicket(_Command):
    refund: RefundRecord | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class ForfeitTicket(_Command):
    pass


@dataclass(frozen=True, slots=True, kw_only=True)
class RevokeTicket(_Command):
    pass


Command = Union[
    PublishEvent,
    StartEvent,
    EndEvent,
    ArchiveEvent,
    UnpublishEvent,
    ApproveTicket,
    RejectTicket,
    IssueTicket,
    StakeTicket,
    CheckInTicket,
    RefundTicket,
    ForfeitTicket,
    RevokeTicket,
]


def _request(command: _Command, kind: EntityKind, target: Status, **extra: Any) -> TransitionRequest:
    return TransitionRequest(
        kind=kind,
        entity_id=command.entity_id,
        target=target,
        actor=command.actor,
        reason=command.reason,
        metadata=dict(command.metadata),
        correlation_id=command.correlation_id,
        causation_id=command.causation_id,
        **extra,
    )


def to_request(command: Command) -> TransitionRequest:
    match command:
        case PublishEvent():
            return _request(command, EntityKind.EVENT, EventStatus.PUBLISHED)
        case StartEvent():
            return _request(command, EntityKind.EVENT, EventStatus.LIVE)
        case EndEvent():
            return _request(command, EntityKind.EVENT, EventStatus.ENDED)
        case ArchiveEvent():
            return _request(command, EntityKind.EVENT, EventStatus.ARCHIVED)
        case UnpublishEvent():
            return _request(command, EntityKind.EVENT, EventStatus.DRAFT)
        case ApproveTicket():
            return _request(command, EntityKind.TICKET, TicketStatus.APPROVED)
        case RejectTicket():
            return _request(command, EntityKind.TICKET, TicketStatus.REJECTED)
        case IssueTicket():
            return _request(command, EntityKind.TICKET, TicketStatus.ISSUED)
        case StakeTicket(stake=stake):
            return _request(command, EntityKind.TICKET, TicketStatus.STAKED, stake=stake)
        case CheckInTicket():
            return _request(command, EntityKind.TICKET, TicketStatus.CHECKED_IN)
        case RefundTicket(refund=refund):
            return _request(command, EntityKind.TICKET, TicketStatus.REFUNDED, refund=refund)
        case ForfeitTicket():
            return _request(command, EntityKind.TICKET, TicketStatus.FORFEITED)
        case RevokeTicket():
            return _request(command, EntityKind.TICKET, TicketStatus.REVOKED)
        case _:
            assert_never(command)


_COMMANDS: Mapping[tuple[EntityKind, Status], type[_Command]] = {
    (EntityKind.EVENT, EventStatus.PUBLISHED): PublishEvent,
    (EntityKind.EVENT, EventStatus.LIVE): StartEvent,
    (EntityKind.EVENT, EventStatus.ENDED): EndEvent,
    (EntityKind.EVENT, EventStatus.ARCHIVED): ArchiveEvent,
    (EntityKind.EVENT, EventStatus.DRAFT): UnpublishEvent,
    (EntityKind.TICKET, TicketStatus.APPROVED): ApproveTicket,
    (EntityKind.TICKET, TicketStatus.REJECTED): RejectTicket,
    (EntityKind.TICKET, TicketStatus.ISSUED): IssueTicket,
    (EntityKind.TICKET, TicketStatus.STAKED): StakeTicket,
    (EntityKind.TICKET, TicketStatus.CHECKED_IN): CheckInTicket,
    (EntityKind.TICKET, TicketStatus.REFUNDED): RefundTicket,
    (EntityKind.TICKET, TicketStatus.FORFEITED): ForfeitTicket,
    (EntityKind.TICKET, TicketStatus.REVOKED): RevokeTicket,
}


def command_for(
    kind: EntityKind,
    target: Status | str,
    *,
    entity_id: str,
    actor: Actor,
    reason: str = "",
    metadata: Mapping[str, Any] | None = None,
    stake: StakeRecord | None = None,
    refund: RefundRecord | None = None,
    correlation_id: str | None = None,
    causation_id: str | None = None,
) -> Command:
    """Build the typed command for a generic transition request.

    Raises ``InvalidTransition`` when no command exists for the target,
    including targets that belong to another entity kind.
    """

    kind = EntityKind(kind)
    try:
        status = StateGraph.parse_status(kind, target)
    except ValueError:
        raise InvalidTransition(
            f"Unknown {kind.value} status {getattr(target, 'value', target)}",
            to_status=target,
        ) from None

    command_type = _COMMANDS.get((kind, status))
    if command_type is None:
        raise InvalidTransition(
            f"No command moves a {kind.value} into {status.value}",
            to_status=status.value,
        )

    extra: dict[str, Any] = {}
    if command_type is StakeTicket:
        extra["stake"] = stake
    elif command_type is RefundTicket:
        extra["refund"] = refund
    return command_type(
        entity_id=entity_id,
        actor=actor,
        reason=reason,
        metadata=dict(metadata or {}),
        correlation_id=correlation_id,
        causation_id=causation_id,
        **extra,
    )  # type: ignore[return-value]
