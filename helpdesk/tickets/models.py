from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence

from .enums import Category, Priority, Role, Severity, Tier, TicketStatus


class MalformedTicketError(ValueError):
    """Raised when a remote ticket representation lacks lifecycle fields."""


@dataclass(frozen=True, slots=True)
class Actor:
    """Authenticated user acting on tickets."""

    id: str
    role: Role


@dataclass(frozen=True, slots=True)
class ActivityEntry:
    """Append-only history entry recorded by a successful ticket action."""

    id: str
    actor: str
    actor_role: Role | None
    action: str
    detail: str
    timestamp: datetime
    from_status: TicketStatus | None = None
    to_status: TicketStatus | None = None


@dataclass(frozen=True, slots=True)
class EscalationRecord:
    """Tier hand-over captured when a ticket is escalated."""

    from_tier: Tier
    to_tier: Tier
    reason: str
    escalated_by: str
    escalated_at: datetime
    notes: str = ""


@dataclass(frozen=True, slots=True)
class Ticket:
    """Immutable snapshot of a ticket's lifecycle state.

    Snapshots are never patched: every confirmed change produces a new
    instance which replaces the previous one wholesale.
    """

    id: str
    status: TicketStatus
    current_tier: Tier
    severity: Severity | None = None
    due_date: datetime | None = None
    title: str = ""
    description: str = ""
    category: Category = Category.GENERAL_INQUIRY
    priority: Priority = Priority.MEDIUM
    created_by: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None
    resolution: str | None = None
    activity_log: tuple[ActivityEntry, ...] = field(default_factory=tuple)
    escalation_history: tuple[EscalationRecord, ...] = field(default_factory=tuple)

    @classmethod
    def open(
        cls,
        *,
        title: str,
        description: str,
        category: Category,
        priority: Priority,
        due_date: datetime | None,
        created_by: str,
        ticket_id: str | None = None,
        now: datetime | None = None,
    ) -> Ticket:
        """Create a ticket in its initial lifecycle state."""

        created_at = now or datetime.now(timezone.utc)
        return cls(
            id=ticket_id or str(uuid.uuid4()),
            status=TicketStatus.NEW,
            current_tier=Tier.L1,
            severity=None,
            due_date=ensure_utc(due_date) if due_date is not None else None,
            title=title,
            description=description,
            category=category,
            priority=priority,
            created_by=created_by,
            created_at=created_at,
            updated_at=created_at,
        )

    @classmethod
    def from_remote(cls, payload: Mapping[str, Any]) -> Ticket:
        """Build a snapshot from the JSON representation served by the API."""

        missing = [name for name in ("id", "status", "current_tier") if not payload.get(name)]
        if missing:
            raise MalformedTicketError(f"Ticket payload is missing required fields: {', '.join(missing)}")

        try:
            return cls(
                id=str(payload["id"]),
                status=TicketStatus(payload["status"]),
                current_tier=Tier(payload["current_tier"]),
                severity=_optional(Severity, payload.get("severity")),
                due_date=_parse_datetime(payload.get("due_date")),
                title=str(payload.get("title") or ""),
                description=str(payload.get("description") or ""),
                category=_optional(Category, payload.get("category")) or Category.GENERAL_INQUIRY,
                priority=_optional(Priority, payload.get("priority")) or Priority.MEDIUM,
                created_by=str(payload.get("created_by") or ""),
                created_at=_parse_datetime(payload.get("created_at")),
                updated_at=_parse_datetime(payload.get("updated_at")),
                resolution=payload.get("resolution"),
                activity_log=tuple(_activity_from_remote(item) for item in payload.get("activity_log") or ()),
                escalation_history=tuple(
                    _escalation_from_remote(item) for item in payload.get("escalation_history") or ()
                ),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise MalformedTicketError(f"Ticket {payload.get('id')!s} is malformed: {exc}") from exc

    def is_overdue(self, now: datetime) -> bool:
        """Past its due date without having reached the terminal state."""

        if self.due_date is None or self.status is TicketStatus.RESOLVED:
            return False
        return ensure_utc(now) > ensure_utc(self.due_date)


@dataclass(slots=True)
class TicketPage:
    """One page of a filtered ticket listing."""

    tickets: Sequence[Ticket]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        if self.limit <= 0:
            return 1
        return max(1, -(-self.total // self.limit))

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1


@dataclass(frozen=True, slots=True)
class TicketSummary:
    """Dashboard counters over the whole ticket store."""

    total: int
    open: int
    high_priority: int
    overdue: int


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _parse_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    return ensure_utc(datetime.fromisoformat(str(value)))


def _optional(enum_type, value):
    if value is None or value == "":
        return None
    return enum_type(value)


def _activity_from_remote(item: Mapping[str, Any]) -> ActivityEntry:
    timestamp = _parse_datetime(item.get("timestamp"))
    if timestamp is None:
        raise ValueError("activity entry without timestamp")
    return ActivityEntry(
        id=str(item.get("id") or ""),
        actor=str(item["actor"]),
        actor_role=_optional(Role, item.get("actor_role")),
        action=str(item["action"]),
        detail=str(item.get("detail") or ""),
        timestamp=timestamp,
        from_status=_optional(TicketStatus, item.get("from_status")),
        to_status=_optional(TicketStatus, item.get("to_status")),
    )


def _escalation_from_remote(item: Mapping[str, Any]) -> EscalationRecord:
    escalated_at = _parse_datetime(item.get("escalated_at"))
    if escalated_at is None:
        raise ValueError("escalation record without timestamp")
    return EscalationRecord(
        from_tier=Tier(item["from_tier"]),
        to_tier=Tier(item["to_tier"]),
        reason=str(item.get("reason") or ""),
        escalated_by=str(item["escalated_by"]),
        escalated_at=escalated_at,
        notes=str(item.get("notes") or ""),
    )


def parse_activity_log(items: Sequence[Mapping[str, Any]]) -> tuple[ActivityEntry, ...]:
    """Parse the activity list served by the API."""

    try:
        return tuple(_activity_from_remote(item) for item in items)
    except (KeyError, TypeError, ValueError) as exc:
        raise MalformedTicketError(f"Activity log is malformed: {exc}") from exc
