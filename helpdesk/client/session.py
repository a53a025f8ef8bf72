"""Caller-side gate around ticket actions.

A :class:`TicketSession` is what a presentation layer holds for one open
ticket. It decides which actions to offer by evaluating the lifecycle policy on
its current snapshot, submits one request per action, and only ever replaces
the snapshot with a ticket confirmed by the service.
"""

from __future__ import annotations

import logging
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterator

from helpdesk.tickets import policy
from helpdesk.tickets.enums import Severity, TicketStatus
from helpdesk.tickets.models import Actor, MalformedTicketError, Ticket
from helpdesk.tickets.policy import PolicyDecision

from .api import HelpdeskAPIClient
from .errors import APIError, IllegalTransitionRequested, TransitionInFlightError, TransitionRejectedByServer

logger = logging.getLogger(__name__)


class TicketSession:
    def __init__(
        self,
        client: HelpdeskAPIClient,
        actor: Actor,
        ticket: Ticket,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._client = client
        self._actor = actor
        self._ticket = ticket
        self._clock = clock
        self._lock = threading.Lock()
        self._pending: str | None = None

    @classmethod
    def open(cls, client: HelpdeskAPIClient, actor: Actor, ticket_id: str, **kwargs) -> TicketSession:
        return cls(client, actor, client.get_ticket(ticket_id), **kwargs)

    @property
    def ticket(self) -> Ticket:
        return self._ticket

    @property
    def actor(self) -> Actor:
        return self._actor

    @property
    def pending_action(self) -> str | None:
        """Name of the action currently awaiting the service, if any."""

        return self._pending

    def decision(self, now: datetime | None = None) -> PolicyDecision:
        moment = now or (self._clock() if self._clock else None)
        return policy.evaluate(self._actor, self._ticket, now=moment)

    def refresh(self) -> Ticket:
        self._ticket = self._client.get_ticket(self._ticket.id)
        return self._ticket

    def start_work(self) -> Ticket:
        return self._submit(
            "start_work",
            lambda d: d.can_start_work,
            lambda key: self._client.start_work(self._ticket.id, request_id=key),
        )

    def complete(self) -> Ticket:
        return self._submit(
            "complete",
            lambda d: d.can_resolve and not self._ticket.status.is_settled,
            lambda key: self._client.complete_ticket(self._ticket.id, request_id=key),
        )

    def escalate(self, reason: str = "Escalated by agent", notes: str = "") -> Ticket:
        return self._submit(
            "escalate",
            lambda d: d.can_escalate,
            lambda key: self._client.escalate(self._ticket.id, reason=reason, notes=notes, request_id=key),
        )

    def set_severity(self, severity: Severity) -> Ticket:
        return self._submit(
            "set_severity",
            lambda d: d.can_set_severity,
            lambda key: self._client.set_severity(self._ticket.id, severity, request_id=key),
        )

    def update_status(self, status: TicketStatus) -> Ticket:
        return self._submit(
            "update_status",
            lambda d: (
                d.can_update_status_to(status)
                and status is not self._ticket.status
                and status is not TicketStatus.RESOLVED
            ),
            lambda key: self._client.update_status(self._ticket.id, status, request_id=key),
        )

    def _submit(
        self,
        action: str,
        allowed: Callable[[PolicyDecision], bool],
        send: Callable[[str], Ticket],
    ) -> Ticket:
        with self._in_flight(action):
            if not allowed(self.decision()):
                raise IllegalTransitionRequested(action, self._ticket.id)
            try:
                confirmed = send(str(uuid.uuid4()))
            except TransitionRejectedByServer:
                logger.info("Service rejected %s on ticket %s; refreshing", action, self._ticket.id)
                try:
                    self.refresh()
                except (APIError, MalformedTicketError) as exc:
                    logger.warning("Refresh of ticket %s failed: %s", self._ticket.id, exc)
                raise
            self._ticket = confirmed
            return confirmed

    @contextmanager
    def _in_flight(self, action: str) -> Iterator[None]:
        if not self._lock.acquire(blocking=False):
            raise TransitionInFlightError(f"'{self._pending}' is still in progress")
        self._pending = action
        try:
            yield
        finally:
            self._pending = None
            self._lock.release()
