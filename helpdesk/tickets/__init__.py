"""Ticket lifecycle: state model, policy engine and enforcement services."""

from .enums import Category, Priority, Role, Severity, Tier, TicketStatus
from .models import ActivityEntry, Actor, EscalationRecord, MalformedTicketError, Ticket, TicketPage
from .policy import PolicyDecision, UnknownRoleError, UnknownStatusError, evaluate
from .service import IllegalTransitionError, TicketNotFoundError, TicketService

__all__ = [
    "ActivityEntry",
    "Actor",
    "Category",
    "EscalationRecord",
    "IllegalTransitionError",
    "MalformedTicketError",
    "PolicyDecision",
    "Priority",
    "Role",
    "Severity",
    "Ticket",
    "TicketNotFoundError",
    "TicketPage",
    "TicketService",
    "TicketStatus",
    "Tier",
    "UnknownRoleError",
    "UnknownStatusError",
    "evaluate",
]
