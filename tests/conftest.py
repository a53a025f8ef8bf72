from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from helpdesk.tickets.enums import Role, Tier, TicketStatus
from helpdesk.tickets.models import Actor, Ticket

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def make_ticket():
    base = Ticket(
        id="t-1",
        status=TicketStatus.NEW,
        current_tier=Tier.L1,
        due_date=NOW + timedelta(days=3),
        title="Printer offline",
        description="Floor 3 printer does not respond",
        created_by="agent-l1",
        created_at=NOW - timedelta(hours=1),
        updated_at=NOW - timedelta(hours=1),
    )

    def factory(**overrides) -> Ticket:
        return replace(base, **overrides)

    return factory


@pytest.fixture
def actors() -> dict[Role, Actor]:
    return {role: Actor(id=f"user-{role.value.lower()}", role=role) for role in Role}
