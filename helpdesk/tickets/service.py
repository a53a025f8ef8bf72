from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable

from opentelemetry import trace

from . import policy
from .enums import Category, Priority, Severity, Tier, TicketStatus
from .models import ActivityEntry, Actor, EscalationRecord, Ticket, TicketPage, TicketSummary
from .policy import PolicyDecision
from .repository import DuplicateRequestError, TicketRepository

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class TicketServiceError(RuntimeError):
    """Base error for ticket service issues."""


class TicketNotFoundError(TicketServiceError):
    """Raised when a ticket could not be located."""


class IllegalTransitionError(TicketServiceError):
    """Raised when the lifecycle policy does not allow the requested action."""

    FROZEN = "ticket_frozen"
    NOT_PERMITTED = "not_permitted"
    INVALID_TARGET = "invalid_target"

    def __init__(self, message: str, *, code: str = NOT_PERMITTED) -> None:
        super().__init__(message)
        self.code = code


class TicketService:
    """Authoritative enforcement of the lifecycle policy around the ticket store.

    Every mutating call re-reads the stored ticket, evaluates the policy for the
    requesting actor and only then writes. A write updates the lifecycle fields
    and appends exactly one activity entry in the same transaction.
    """

    def __init__(
        self,
        repository: TicketRepository,
        *,
        clock: Callable[[], datetime] | None = None,
        default_page_size: int = 20,
    ) -> None:
        self._repository = repository
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._default_page_size = default_page_size

    async def ensure_schema(self) -> None:
        await self._repository.ensure_schema()

    async def create_ticket(
        self,
        *,
        title: str,
        description: str,
        category: Category,
        priority: Priority,
        due_date: datetime | None,
        actor: Actor,
        request_id: str | None = None,
    ) -> Ticket:
        if request_id is not None:
            existing = await self._repository.find_ticket_by_create_request(request_id)
            if existing is not None:
                logger.info("Request %s already created ticket %s", request_id, existing.id)
                return existing

        now = self._clock()
        ticket = Ticket.open(
            title=title,
            description=description,
            category=category,
            priority=priority,
            due_date=due_date,
            created_by=actor.id,
            now=now,
        )
        entry = self._entry(actor, "Ticket created", f"Ticket '{title}' opened at {Tier.L1.value}", to_status=ticket.status)
        try:
            created = await self._repository.create_ticket(ticket, entry, request_id=request_id)
        except DuplicateRequestError:
            if request_id is None:
                raise
            existing = await self._repository.find_ticket_by_create_request(request_id)
            if existing is None:
                raise
            logger.info("Concurrent create with request %s resolved to ticket %s", request_id, existing.id)
            return existing
        logger.info("Ticket %s created by %s", created.id, actor.id)
        return created

    async def get_ticket(self, ticket_id: str) -> Ticket:
        ticket = await self._repository.get_ticket(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    async def list_tickets(
        self,
        *,
        status: TicketStatus | None = None,
        tier: Tier | None = None,
        priority: Priority | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> TicketPage:
        page = max(page, 1)
        limit = limit or self._default_page_size
        tickets, total = await self._repository.list_tickets(
            status=status,
            tier=tier,
            priority=priority,
            limit=limit,
            offset=(page - 1) * limit,
        )
        return TicketPage(tickets=tickets, total=total, page=page, limit=limit)

    async def summarize(self) -> TicketSummary:
        return await self._repository.summarize(self._clock())

    async def evaluate(self, ticket_id: str, actor: Actor) -> PolicyDecision:
        ticket = await self.get_ticket(ticket_id)
        return policy.evaluate(actor, ticket, now=self._clock())

    async def start_work(self, ticket_id: str, *, actor: Actor, request_id: str | None = None) -> Ticket:
        ticket, decision = await self._load_for(ticket_id, actor, request_id)
        if decision is None:
            return ticket
        self._require(decision.can_start_work, actor, ticket, "start work on")
        return await self._write(
            replace(ticket, status=TicketStatus.ATTENDING),
            self._entry(actor, "Started working", "Work started", ticket.status, TicketStatus.ATTENDING),
            request_id=request_id,
        )

    async def update_status(
        self,
        ticket_id: str,
        *,
        status: TicketStatus,
        actor: Actor,
        request_id: str | None = None,
    ) -> Ticket:
        ticket, decision = await self._load_for(ticket_id, actor, request_id)
        if decision is None:
            return ticket
        if ticket.status is status:
            raise IllegalTransitionError(
                f"Ticket {ticket.id} is already {status.value}",
                code=IllegalTransitionError.INVALID_TARGET,
            )
        if status is TicketStatus.RESOLVED:
            raise IllegalTransitionError(
                f"Ticket {ticket.id} can only be resolved through finalize_resolution",
                code=IllegalTransitionError.INVALID_TARGET,
            )
        self._require(decision.can_update_status_to(status), actor, ticket, f"set status {status.value} on")
        return await self._write(
            replace(ticket, status=status),
            self._entry(
                actor,
                "Status updated",
                f"Status changed from {ticket.status.value} to {status.value}",
                ticket.status,
                status,
            ),
            request_id=request_id,
        )

    async def complete_ticket(self, ticket_id: str, *, actor: Actor, request_id: str | None = None) -> Ticket:
        ticket, decision = await self._load_for(ticket_id, actor, request_id)
        if decision is None:
            return ticket
        self._require(decision.can_resolve and not ticket.status.is_settled, actor, ticket, "resolve")
        return await self._write(
            replace(ticket, status=TicketStatus.COMPLETED),
            self._entry(actor, "Ticket completed", "Marked as completed", ticket.status, TicketStatus.COMPLETED),
            request_id=request_id,
        )

    async def set_severity(
        self,
        ticket_id: str,
        *,
        severity: Severity,
        actor: Actor,
        request_id: str | None = None,
    ) -> Ticket:
        ticket, decision = await self._load_for(ticket_id, actor, request_id)
        if decision is None:
            return ticket
        self._require(decision.can_set_severity, actor, ticket, "classify")
        previous = ticket.severity.value if ticket.severity else "unset"
        return await self._write(
            replace(ticket, severity=severity),
            self._entry(actor, "Severity updated", f"Severity changed from {previous} to {severity.value}"),
            request_id=request_id,
        )

    async def escalate(
        self,
        ticket_id: str,
        *,
        actor: Actor,
        reason: str,
        notes: str = "",
        request_id: str | None = None,
    ) -> Ticket:
        ticket, decision = await self._load_for(ticket_id, actor, request_id)
        if decision is None:
            return ticket
        self._require(decision.can_escalate, actor, ticket, "escalate")
        target = decision.escalation_target
        if target is None:
            raise IllegalTransitionError(
                f"Ticket {ticket.id} has no tier to escalate to", code=IllegalTransitionError.INVALID_TARGET
            )
        # Status is left as-is; only ownership moves to the next tier.
        record = EscalationRecord(
            from_tier=ticket.current_tier,
            to_tier=target,
            reason=reason,
            notes=notes,
            escalated_by=actor.id,
            escalated_at=self._clock(),
        )
        return await self._write(
            replace(ticket, current_tier=target),
            self._entry(
                actor,
                "Ticket escalated",
                f"Escalated from {ticket.current_tier.value} to {target.value}: {reason}",
            ),
            escalation=record,
            request_id=request_id,
        )

    async def finalize_resolution(
        self,
        ticket_id: str,
        *,
        actor: Actor,
        resolution: str,
        request_id: str | None = None,
    ) -> Ticket:
        """Move a completed ticket to the terminal ``Resolved`` state."""

        ticket, decision = await self._load_for(ticket_id, actor, request_id)
        if decision is None:
            return ticket
        if ticket.status is not TicketStatus.COMPLETED:
            raise IllegalTransitionError(
                f"Ticket {ticket.id} must be Completed before it is resolved (is {ticket.status.value})",
                code=IllegalTransitionError.INVALID_TARGET,
            )
        self._require(decision.can_update_status_to(TicketStatus.RESOLVED), actor, ticket, "finalize")
        return await self._write(
            replace(ticket, status=TicketStatus.RESOLVED, resolution=resolution),
            self._entry(actor, "Ticket resolved", resolution, ticket.status, TicketStatus.RESOLVED),
            request_id=request_id,
        )

    async def add_note(
        self,
        ticket_id: str,
        *,
        actor: Actor,
        action: str,
        details: str,
        request_id: str | None = None,
    ) -> Ticket:
        ticket, decision = await self._load_for(ticket_id, actor, request_id)
        if decision is None:
            return ticket
        try:
            added = await self._repository.add_activity(
                ticket.id, self._entry(actor, action, details), request_id=request_id
            )
        except DuplicateRequestError:
            logger.info("Request %s already applied to ticket %s", request_id, ticket.id)
            return await self.get_ticket(ticket_id)
        if not added:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return await self.get_ticket(ticket_id)

    async def get_activity_log(self, ticket_id: str) -> list[ActivityEntry]:
        await self.get_ticket(ticket_id)
        return await self._repository.get_activity_log(ticket_id)

    async def _load_for(
        self, ticket_id: str, actor: Actor, request_id: str | None
    ) -> tuple[Ticket, PolicyDecision | None]:
        """Fetch the ticket and the actor's decision.

        The decision is ``None`` when ``request_id`` was already applied; the
        stored ticket is then returned as the outcome of the replayed request.
        """

        ticket = await self.get_ticket(ticket_id)
        if request_id is not None:
            applied = await self._repository.find_activity_by_request(ticket_id, request_id)
            if applied is not None:
                logger.info("Request %s already applied to ticket %s", request_id, ticket_id)
                return ticket, None

        decision = policy.evaluate(actor, ticket, now=self._clock())
        if decision.frozen:
            logger.warning("Rejected action by %s on overdue ticket %s", actor.id, ticket.id)
            raise IllegalTransitionError(
                f"Ticket {ticket.id} is overdue and can no longer be changed",
                code=IllegalTransitionError.FROZEN,
            )
        return ticket, decision

    def _require(self, allowed: bool, actor: Actor, ticket: Ticket, verb: str) -> None:
        if allowed:
            return
        logger.warning(
            "Rejected %s by %s (%s) on ticket %s [%s/%s]",
            verb,
            actor.id,
            actor.role.value,
            ticket.id,
            ticket.status.value,
            ticket.current_tier.value,
        )
        raise IllegalTransitionError(
            f"Role {actor.role.value} cannot {verb} ticket {ticket.id} "
            f"({ticket.status.value} at {ticket.current_tier.value})"
        )

    async def _write(
        self,
        ticket: Ticket,
        entry: ActivityEntry,
        *,
        escalation: EscalationRecord | None = None,
        request_id: str | None = None,
    ) -> Ticket:
        with tracer.start_as_current_span("ticket.transition") as span:
            span.set_attribute("ticket.id", ticket.id)
            span.set_attribute("ticket.action", entry.action)
            try:
                updated = await self._repository.apply_transition(
                    ticket=ticket, entry=entry, escalation=escalation, request_id=request_id
                )
            except DuplicateRequestError:
                span.set_attribute("ticket.replayed", True)
                logger.info("Request %s already applied to ticket %s", request_id, ticket.id)
                return await self.get_ticket(ticket.id)
        if updated is None:
            raise TicketNotFoundError(f"Ticket {ticket.id} not found")
        logger.info("Ticket %s: %s by %s", updated.id, entry.action, entry.actor)
        return updated

    def _entry(
        self,
        actor: Actor,
        action: str,
        detail: str,
        from_status: TicketStatus | None = None,
        to_status: TicketStatus | None = None,
    ) -> ActivityEntry:
        return ActivityEntry(
            id=str(uuid.uuid4()),
            actor=actor.id,
            actor_role=actor.role,
            action=action,
            detail=detail,
            timestamp=self._clock(),
            from_status=from_status,
            to_status=to_status,
        )
