"""Lifecycle policy engine.

Pure decision functions over an explicit actor and an immutable ticket
snapshot. Nothing here performs I/O or reads ambient state other than the
optional clock default in :func:`evaluate`, so the same inputs always yield
the same :class:`PolicyDecision`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Mapping

from .enums import Role, Tier, TicketStatus, permits_escalation
from .models import Actor, Ticket


class UnknownRoleError(ValueError):
    """Raised when the engine receives a role outside :class:`Role`."""


class UnknownStatusError(ValueError):
    """Raised when the engine receives a status outside :class:`TicketStatus`."""


class TierAccess(str, Enum):
    """How a role may act on a ticket sitting at a given tier."""

    OPEN = "open"
    CLASSIFIED_ONLY = "classified_only"


# Missing entries mean no access.
TIER_ACCESS: Mapping[Role, Mapping[Tier, TierAccess]] = {
    Role.L1: {Tier.L1: TierAccess.OPEN},
    Role.L2: {Tier.L1: TierAccess.OPEN, Tier.L2: TierAccess.OPEN},
    Role.L3: {
        Tier.L1: TierAccess.OPEN,
        Tier.L2: TierAccess.OPEN,
        Tier.L3: TierAccess.CLASSIFIED_ONLY,
    },
    Role.ADMIN: {},
}

_L1_STATUS_SCOPE = frozenset({TicketStatus.NEW, TicketStatus.ATTENDING, TicketStatus.COMPLETED})
_STARTABLE = frozenset({TicketStatus.NEW, TicketStatus.ESCALATED})


@dataclass(frozen=True, slots=True)
class PolicyDecision:
    """Capabilities of one actor on one ticket at one point in time."""

    frozen: bool
    can_start_work: bool
    can_set_severity: bool
    can_escalate: bool
    escalation_target: Tier | None
    can_resolve: bool
    allowed_status_updates: frozenset[TicketStatus]
    has_any_action: bool

    def can_update_status_to(self, target: TicketStatus) -> bool:
        return target in self.allowed_status_updates


def is_frozen(ticket: Ticket, now: datetime) -> bool:
    """A ticket past its due date and not yet resolved accepts no actions."""

    _check_status(ticket.status)
    return ticket.is_overdue(now)


def has_tier_access(actor: Actor, ticket: Ticket) -> bool:
    access = TIER_ACCESS[_check_role(actor.role)].get(ticket.current_tier)
    if access is None:
        return False
    if access is TierAccess.CLASSIFIED_ONLY:
        return permits_escalation(ticket.severity)
    return True


def can_start_work(actor: Actor, ticket: Ticket) -> bool:
    return _check_status(ticket.status) in _STARTABLE and has_tier_access(actor, ticket)


def can_set_severity(actor: Actor, ticket: Ticket) -> bool:
    return (
        _check_role(actor.role) is Role.L2
        and ticket.current_tier is Tier.L2
        and not _check_status(ticket.status).is_settled
    )


def escalation_target(actor: Actor, ticket: Ticket) -> Tier | None:
    """Tier the actor may hand the ticket to, or ``None`` when escalation is blocked."""

    role = _check_role(actor.role)
    if _check_status(ticket.status).is_settled:
        return None
    if role.tier is None or ticket.current_tier is not role.tier:
        return None
    if role is Role.L1:
        return Tier.L2
    if role is Role.L2 and permits_escalation(ticket.severity):
        return Tier.L3
    return None


def can_escalate(actor: Actor, ticket: Ticket) -> bool:
    return escalation_target(actor, ticket) is not None


def can_resolve(actor: Actor, ticket: Ticket) -> bool:
    """Whether the actor may complete the ticket (the "Resolve" action)."""

    role = _check_role(actor.role)
    status = _check_status(ticket.status)
    if role is Role.L1:
        return ticket.current_tier is Tier.L1 and status is TicketStatus.ATTENDING
    if role is Role.L2:
        return ticket.current_tier is Tier.L2
    if role is Role.L3:
        return ticket.current_tier is Tier.L3 and permits_escalation(ticket.severity)
    return False


def can_update_status_to(actor: Actor, ticket: Ticket, target: TicketStatus) -> bool:
    _check_status(ticket.status)
    _check_status(target)
    if _check_role(actor.role) is Role.L1 and target not in _L1_STATUS_SCOPE:
        return False
    return has_tier_access(actor, ticket)


def has_any_action(actor: Actor, ticket: Ticket, now: datetime) -> bool:
    """Gate deciding whether an action region is offered at all."""

    if is_frozen(ticket, now):
        return False
    status = ticket.status
    return (
        can_escalate(actor, ticket)
        or (can_resolve(actor, ticket) and not status.is_settled)
        or (can_start_work(actor, ticket) and status is TicketStatus.NEW)
        or (can_update_status_to(actor, ticket, TicketStatus.COMPLETED) and status is TicketStatus.ATTENDING)
    )


def evaluate(actor: Actor, ticket: Ticket, *, now: datetime | None = None) -> PolicyDecision:
    """Compute every capability of ``actor`` on ``ticket``.

    The freeze rule is checked first and short-circuits all other rules.
    """

    moment = now or datetime.now(timezone.utc)
    _check_role(actor.role)
    _check_status(ticket.status)

    if is_frozen(ticket, moment):
        return PolicyDecision(
            frozen=True,
            can_start_work=False,
            can_set_severity=False,
            can_escalate=False,
            escalation_target=None,
            can_resolve=False,
            allowed_status_updates=frozenset(),
            has_any_action=False,
        )

    target = escalation_target(actor, ticket)
    return PolicyDecision(
        frozen=False,
        can_start_work=can_start_work(actor, ticket),
        can_set_severity=can_set_severity(actor, ticket),
        can_escalate=target is not None,
        escalation_target=target,
        can_resolve=can_resolve(actor, ticket),
        allowed_status_updates=frozenset(
            status for status in TicketStatus if can_update_status_to(actor, ticket, status)
        ),
        has_any_action=has_any_action(actor, ticket, moment),
    )


def _check_role(role: object) -> Role:
    if not isinstance(role, Role):
        raise UnknownRoleError(f"Unknown actor role: {role!r}")
    return role


def _check_status(status: object) -> TicketStatus:
    if not isinstance(status, TicketStatus):
        raise UnknownStatusError(f"Unknown ticket status: {status!r}")
    return status
