from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import uuid4

import asyncpg

from .enums import Category, Priority, Role, Severity, Tier, TicketStatus
from .models import ActivityEntry, EscalationRecord, Ticket, TicketSummary, ensure_utc


class DuplicateRequestError(RuntimeError):
    """Raised when an idempotency key has already been recorded."""

    def __init__(self, request_id: str | None) -> None:
        super().__init__(f"Request {request_id} was already applied")
        self.request_id = request_id


class TicketRepository:
    """Data access layer for tickets, their activity log and escalation history."""

    _CREATE_TICKETS_SQL = """
    CREATE TABLE IF NOT EXISTS tickets (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        description TEXT NOT NULL,
        category TEXT NOT NULL,
        priority TEXT NOT NULL,
        status TEXT NOT NULL,
        current_tier TEXT NOT NULL,
        severity TEXT NULL,
        due_date TIMESTAMPTZ NULL,
        resolution TEXT NULL,
        created_by TEXT NOT NULL,
        create_request_id TEXT NULL UNIQUE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """

    _CREATE_ACTIVITY_SQL = """
    CREATE TABLE IF NOT EXISTS ticket_activity (
        id TEXT PRIMARY KEY,
        seq BIGSERIAL,
        ticket_id TEXT NOT NULL REFERENCES tickets(id),
        actor TEXT NOT NULL,
        actor_role TEXT NULL,
        action TEXT NOT NULL,
        detail TEXT NOT NULL,
        from_status TEXT NULL,
        to_status TEXT NULL,
        request_id TEXT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (ticket_id, request_id)
    )
    """

    _CREATE_ESCALATIONS_SQL = """
    CREATE TABLE IF NOT EXISTS ticket_escalations (
        id TEXT PRIMARY KEY,
        seq BIGSERIAL,
        ticket_id TEXT NOT NULL REFERENCES tickets(id),
        from_tier TEXT NOT NULL,
        to_tier TEXT NOT NULL,
        reason TEXT NOT NULL,
        notes TEXT NOT NULL,
        escalated_by TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """

    _TICKET_COLUMNS = (
        "id, title, description, category, priority, status, current_tier, severity, "
        "due_date, resolution, created_by, created_at, updated_at"
    )

    _INSERT_TICKET_SQL = f"""
    INSERT INTO tickets (id, title, description, category, priority, status, current_tier,
                         severity, due_date, resolution, created_by, create_request_id, created_at, updated_at)
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $13)
    RETURNING {_TICKET_COLUMNS}
    """

    _SELECT_TICKET_SQL = f"""
    SELECT {_TICKET_COLUMNS}
    FROM tickets
    WHERE id = $1
    """

    _SELECT_TICKET_BY_CREATE_REQUEST_SQL = f"""
    SELECT {_TICKET_COLUMNS}
    FROM tickets
    WHERE create_request_id = $1
    """

    _LIST_TICKETS_SQL = f"""
    SELECT {_TICKET_COLUMNS}
    FROM tickets
    WHERE ($1::text IS NULL OR status = $1)
      AND ($2::text IS NULL OR current_tier = $2)
      AND ($3::text IS NULL OR priority = $3)
    ORDER BY created_at DESC
    LIMIT $4 OFFSET $5
    """

    _COUNT_TICKETS_SQL = """
    SELECT COUNT(*)
    FROM tickets
    WHERE ($1::text IS NULL OR status = $1)
      AND ($2::text IS NULL OR current_tier = $2)
      AND ($3::text IS NULL OR priority = $3)
    """

    _SUMMARY_SQL = """
    SELECT COUNT(*) AS total,
           COUNT(*) FILTER (WHERE status = ANY($1::text[])) AS open,
           COUNT(*) FILTER (WHERE priority = $2) AS high_priority,
           COUNT(*) FILTER (WHERE due_date IS NOT NULL AND due_date < $3 AND status <> $4) AS overdue
    FROM tickets
    """

    _UPDATE_LIFECYCLE_SQL = f"""
    UPDATE tickets
    SET status = $2,
        current_tier = $3,
        severity = $4,
        resolution = $5,
        updated_at = $6
    WHERE id = $1
    RETURNING {_TICKET_COLUMNS}
    """

    _TOUCH_TICKET_SQL = """
    UPDATE tickets SET updated_at = $2 WHERE id = $1 RETURNING id
    """

    _INSERT_ACTIVITY_SQL = """
    INSERT INTO ticket_activity (id, ticket_id, actor, actor_role, action, detail, from_status, to_status, request_id,
                                 created_at)
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
    """

    _SELECT_ACTIVITY_SQL = """
    SELECT id, actor, actor_role, action, detail, from_status, to_status, created_at
    FROM ticket_activity
    WHERE ticket_id = $1
    ORDER BY created_at ASC, seq ASC
    """

    _SELECT_ACTIVITY_BY_REQUEST_SQL = """
    SELECT id FROM ticket_activity WHERE ticket_id = $1 AND request_id = $2
    """

    _INSERT_ESCALATION_SQL = """
    INSERT INTO ticket_escalations (id, ticket_id, from_tier, to_tier, reason, notes, escalated_by, created_at)
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
    """

    _SELECT_ESCALATIONS_SQL = """
    SELECT from_tier, to_tier, reason, notes, escalated_by, created_at
    FROM ticket_escalations
    WHERE ticket_id = $1
    ORDER BY created_at ASC, seq ASC
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def ensure_schema(self) -> None:
        async with self._pool.acquire() as connection:
            await connection.execute(self._CREATE_TICKETS_SQL)
            await connection.execute(self._CREATE_ACTIVITY_SQL)
            await connection.execute(self._CREATE_ESCALATIONS_SQL)

    async def create_ticket(self, ticket: Ticket, entry: ActivityEntry, *, request_id: str | None = None) -> Ticket:
        """Insert a new ticket with its creation entry.

        ``request_id`` is stored as the ticket's creation key; reusing it raises
        :class:`DuplicateRequestError` and nothing is written.
        """

        async with self._pool.acquire() as connection:
            try:
                async with connection.transaction():
                    row = await connection.fetchrow(
                        self._INSERT_TICKET_SQL,
                        ticket.id,
                        ticket.title,
                        ticket.description,
                        ticket.category.value,
                        ticket.priority.value,
                        ticket.status.value,
                        ticket.current_tier.value,
                        _value(ticket.severity),
                        ticket.due_date,
                        ticket.resolution,
                        ticket.created_by,
                        request_id,
                        ticket.created_at,
                    )
                    if row is None:
                        raise RuntimeError("Failed to insert ticket")
                    await self._insert_activity(connection, ticket.id, entry, request_id=request_id)
            except asyncpg.UniqueViolationError as exc:
                raise DuplicateRequestError(request_id) from exc
            return await self._load(connection, row)

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._SELECT_TICKET_SQL, ticket_id)
            if row is None:
                return None
            return await self._load(connection, row)

    async def find_ticket_by_create_request(self, request_id: str) -> Ticket | None:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._SELECT_TICKET_BY_CREATE_REQUEST_SQL, request_id)
            if row is None:
                return None
            return await self._load(connection, row)

    async def list_tickets(
        self,
        *,
        status: TicketStatus | None = None,
        tier: Tier | None = None,
        priority: Priority | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Ticket], int]:
        """Return one page of ticket summaries (without history) and the total match count."""

        filters = (_value(status), _value(tier), _value(priority))
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(self._LIST_TICKETS_SQL, *filters, limit, offset)
            total = await connection.fetchval(self._COUNT_TICKETS_SQL, *filters)
        return [self._row_to_ticket(row) for row in rows], int(total or 0)

    async def summarize(self, now: datetime) -> TicketSummary:
        open_statuses = [status.value for status in TicketStatus if not status.is_settled]
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(
                self._SUMMARY_SQL,
                open_statuses,
                Priority.HIGH.value,
                now,
                TicketStatus.RESOLVED.value,
            )
        if row is None:
            return TicketSummary(total=0, open=0, high_priority=0, overdue=0)
        return TicketSummary(
            total=int(row["total"] or 0),
            open=int(row["open"] or 0),
            high_priority=int(row["high_priority"] or 0),
            overdue=int(row["overdue"] or 0),
        )

    async def apply_transition(
        self,
        *,
        ticket: Ticket,
        entry: ActivityEntry,
        escalation: EscalationRecord | None = None,
        request_id: str | None = None,
    ) -> Ticket | None:
        """Persist the lifecycle fields of ``ticket`` together with its new history rows.

        Raises :class:`DuplicateRequestError` when ``request_id`` was already
        recorded for the ticket; the transaction is rolled back.
        """

        async with self._pool.acquire() as connection:
            try:
                async with connection.transaction():
                    row = await connection.fetchrow(
                        self._UPDATE_LIFECYCLE_SQL,
                        ticket.id,
                        ticket.status.value,
                        ticket.current_tier.value,
                        _value(ticket.severity),
                        ticket.resolution,
                        entry.timestamp,
                    )
                    if row is None:
                        return None
                    await self._insert_activity(connection, ticket.id, entry, request_id=request_id)
                    if escalation is not None:
                        await connection.execute(
                            self._INSERT_ESCALATION_SQL,
                            str(uuid4()),
                            ticket.id,
                            escalation.from_tier.value,
                            escalation.to_tier.value,
                            escalation.reason,
                            escalation.notes,
                            escalation.escalated_by,
                            escalation.escalated_at,
                        )
            except asyncpg.UniqueViolationError as exc:
                raise DuplicateRequestError(request_id) from exc
            return await self._load(connection, row)

    async def add_activity(self, ticket_id: str, entry: ActivityEntry, *, request_id: str | None = None) -> bool:
        async with self._pool.acquire() as connection:
            try:
                async with connection.transaction():
                    touched = await connection.fetchrow(self._TOUCH_TICKET_SQL, ticket_id, entry.timestamp)
                    if touched is None:
                        return False
                    await self._insert_activity(connection, ticket_id, entry, request_id=request_id)
            except asyncpg.UniqueViolationError as exc:
                raise DuplicateRequestError(request_id) from exc
        return True

    async def find_activity_by_request(self, ticket_id: str, request_id: str) -> str | None:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._SELECT_ACTIVITY_BY_REQUEST_SQL, ticket_id, request_id)
        if row is None:
            return None
        return str(row["id"])

    async def get_activity_log(self, ticket_id: str) -> list[ActivityEntry]:
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(self._SELECT_ACTIVITY_SQL, ticket_id)
        return [self._row_to_activity(row) for row in rows]

    async def _insert_activity(
        self,
        connection: Any,
        ticket_id: str,
        entry: ActivityEntry,
        *,
        request_id: str | None,
    ) -> None:
        await connection.execute(
            self._INSERT_ACTIVITY_SQL,
            entry.id,
            ticket_id,
            entry.actor,
            _value(entry.actor_role),
            entry.action,
            entry.detail,
            _value(entry.from_status),
            _value(entry.to_status),
            request_id,
            entry.timestamp,
        )

    async def _load(self, connection: Any, row: Any) -> Ticket:
        ticket_id = str(row["id"])
        activity_rows = await connection.fetch(self._SELECT_ACTIVITY_SQL, ticket_id)
        escalation_rows = await connection.fetch(self._SELECT_ESCALATIONS_SQL, ticket_id)
        return self._row_to_ticket(
            row,
            activity=tuple(self._row_to_activity(item) for item in activity_rows),
            escalations=tuple(self._row_to_escalation(item) for item in escalation_rows),
        )

    @staticmethod
    def _row_to_ticket(
        row: Any,
        *,
        activity: tuple[ActivityEntry, ...] = (),
        escalations: tuple[EscalationRecord, ...] = (),
    ) -> Ticket:
        severity = row["severity"]
        due_date = row["due_date"]
        return Ticket(
            id=str(row["id"]),
            status=TicketStatus(str(row["status"])),
            current_tier=Tier(str(row["current_tier"])),
            severity=Severity(str(severity)) if severity else None,
            due_date=ensure_utc(due_date) if due_date is not None else None,
            title=str(row["title"]),
            description=str(row["description"]),
            category=Category(str(row["category"])),
            priority=Priority(str(row["priority"])),
            created_by=str(row["created_by"]),
            created_at=ensure_utc(row["created_at"]),
            updated_at=ensure_utc(row["updated_at"]),
            resolution=row["resolution"],
            activity_log=activity,
            escalation_history=escalations,
        )

    @staticmethod
    def _row_to_activity(row: Any) -> ActivityEntry:
        actor_role = row["actor_role"]
        from_status = row["from_status"]
        to_status = row["to_status"]
        return ActivityEntry(
            id=str(row["id"]),
            actor=str(row["actor"]),
            actor_role=Role(str(actor_role)) if actor_role else None,
            action=str(row["action"]),
            detail=str(row["detail"]),
            timestamp=ensure_utc(row["created_at"]),
            from_status=TicketStatus(str(from_status)) if from_status else None,
            to_status=TicketStatus(str(to_status)) if to_status else None,
        )

    @staticmethod
    def _row_to_escalation(row: Any) -> EscalationRecord:
        return EscalationRecord(
            from_tier=Tier(str(row["from_tier"])),
            to_tier=Tier(str(row["to_tier"])),
            reason=str(row["reason"]),
            notes=str(row["notes"]),
            escalated_by=str(row["escalated_by"]),
            escalated_at=ensure_utc(row["created_at"]),
        )


def _value(member: Any) -> str | None:
    return None if member is None else member.value
