from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from helpdesk.api.routes import tickets as ticket_routes
from helpdesk.dependencies import tickets as ticket_deps
from helpdesk.main import create_app
from helpdesk.tickets.enums import Role, Severity, Tier, TicketStatus
from helpdesk.tickets.models import ActivityEntry, Actor, Ticket, TicketPage, TicketSummary
from helpdesk.tickets.policy import PolicyDecision
from helpdesk.tickets.repository import DuplicateRequestError
from helpdesk.tickets.service import IllegalTransitionError, TicketNotFoundError, TicketService


def _make_ticket(**overrides) -> Ticket:
    now = datetime(2026, 10, 19, 12, tzinfo=timezone.utc)
    fields = dict(
        id="t-1",
        status=TicketStatus.NEW,
        current_tier=Tier.L1,
        title="Printer offline",
        description="Floor 3",
        created_by="agent-l1",
        created_at=now,
        updated_at=now,
        activity_log=(
            ActivityEntry(
                id="a-1",
                actor="agent-l1",
                actor_role=Role.L1,
                action="Ticket created",
                detail="",
                timestamp=now,
                to_status=TicketStatus.NEW,
            ),
        ),
    )
    fields.update(overrides)
    return Ticket(**fields)


@pytest.fixture
def ticket_client():
    app = create_app()
    service = AsyncMock()
    agent = Actor(id="agent-l1", role=Role.L1)

    async def override_service():
        return service

    app.dependency_overrides[ticket_routes.get_ticket_service] = override_service
    app.dependency_overrides[ticket_deps.require_agent] = lambda: agent
    app.dependency_overrides[ticket_deps.require_member] = lambda: agent

    client = TestClient(app)
    try:
        yield client, service
    finally:
        app.dependency_overrides.clear()


def test_create_ticket_endpoint_returns_created(ticket_client):
    client, service = ticket_client
    service.create_ticket = AsyncMock(return_value=_make_ticket())

    response = client.post(
        "/tickets",
        json={"title": "Printer offline", "description": "Floor 3", "priority": "High"},
        headers={"Idempotency-Key": "req-1"},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "New"
    assert body["current_tier"] == "L1"
    assert body["severity"] is None
    assert body["activity_log"][0]["action"] == "Ticket created"
    assert service.create_ticket.await_args.kwargs["request_id"] == "req-1"


def test_create_ticket_rejects_unknown_category(ticket_client):
    client, service = ticket_client
    service.create_ticket = AsyncMock()

    response = client.post("/tickets", json={"title": "x", "description": "y", "category": "Plumbing"})

    assert response.status_code == 422
    service.create_ticket.assert_not_awaited()


def test_list_tickets_endpoint_filters_and_paginates(ticket_client):
    client, service = ticket_client
    ticket = _make_ticket(status=TicketStatus.ESCALATED, current_tier=Tier.L2, activity_log=())
    service.list_tickets = AsyncMock(return_value=TicketPage(tickets=[ticket], total=21, page=2, limit=10))

    response = client.get("/tickets", params={"status": "Escalated", "tier": "L2", "page": 2, "limit": 10})

    assert response.status_code == 200
    body = response.json()
    assert body["tickets"][0]["status"] == "Escalated"
    assert body["total_pages"] == 3
    assert body["has_next"] is True
    service.list_tickets.assert_awaited_with(
        status=TicketStatus.ESCALATED, tier=Tier.L2, priority=None, page=2, limit=10
    )


def test_get_ticket_returns_404_when_missing(ticket_client):
    client, service = ticket_client
    service.get_ticket = AsyncMock(side_effect=TicketNotFoundError("Ticket t-9 not found"))

    response = client.get("/tickets/t-9")

    assert response.status_code == 404
    assert response.json()["detail"] == "Ticket t-9 not found"


def test_capabilities_endpoint_exposes_decision(ticket_client):
    client, service = ticket_client
    service.evaluate = AsyncMock(
        return_value=PolicyDecision(
            frozen=False,
            can_start_work=True,
            can_set_severity=False,
            can_escalate=True,
            escalation_target=Tier.L2,
            can_resolve=False,
            allowed_status_updates=frozenset({TicketStatus.COMPLETED, TicketStatus.NEW, TicketStatus.ATTENDING}),
            has_any_action=True,
        )
    )

    response = client.get("/tickets/t-1/capabilities")

    assert response.status_code == 200
    body = response.json()
    assert body["escalation_target"] == "L2"
    assert body["allowed_status_updates"] == ["New", "Attending", "Completed"]
    assert body["has_any_action"] is True


def test_escalate_endpoint_passes_reason(ticket_client):
    client, service = ticket_client
    service.escalate = AsyncMock(return_value=_make_ticket(current_tier=Tier.L2))

    response = client.post("/tickets/t-1/escalate", json={"reason": "Needs specialist"})

    assert response.status_code == 200
    assert response.json()["current_tier"] == "L2"
    assert service.escalate.await_args.kwargs["reason"] == "Needs specialist"


def test_rejected_transition_returns_conflict_with_code(ticket_client):
    client, service = ticket_client
    service.complete_ticket = AsyncMock(
        side_effect=IllegalTransitionError("Ticket t-1 is overdue", code=IllegalTransitionError.FROZEN)
    )

    response = client.post("/tickets/t-1/complete")

    assert response.status_code == 409
    assert response.json()["detail"] == {"code": "ticket_frozen", "message": "Ticket t-1 is overdue"}


def test_set_severity_rejects_unknown_value(ticket_client):
    client, service = ticket_client
    service.set_severity = AsyncMock()

    response = client.patch("/tickets/t-1/severity", json={"severity": "C7"})

    assert response.status_code == 422
    service.set_severity.assert_not_awaited()


def test_set_severity_endpoint(ticket_client):
    client, service = ticket_client
    service.set_severity = AsyncMock(return_value=_make_ticket(current_tier=Tier.L2, severity=Severity.C2))

    response = client.patch("/tickets/t-1/severity", json={"severity": "C2"})

    assert response.status_code == 200
    assert response.json()["severity"] == "C2"
    assert service.set_severity.await_args.kwargs["severity"] is Severity.C2


def test_add_activity_note_returns_created(ticket_client):
    client, service = ticket_client
    service.add_note = AsyncMock(return_value=_make_ticket())

    response = client.post("/tickets/t-1/activity", json={"action": "Comment", "details": "Called user"})

    assert response.status_code == 201
    assert service.add_note.await_args.kwargs["details"] == "Called user"


def test_get_activity_endpoint_returns_entries(ticket_client):
    client, service = ticket_client
    service.get_activity_log = AsyncMock(return_value=list(_make_ticket().activity_log))

    response = client.get("/tickets/t-1/activity")

    assert response.status_code == 200
    assert response.json()[0]["to_status"] == "New"


def test_ticket_routes_require_authentication():
    app = create_app()
    app.state.ticket_service = AsyncMock()
    client = TestClient(app)

    response = client.get("/tickets/t-1")

    assert response.status_code == 401


def test_ticket_routes_report_unconfigured_service():
    client = TestClient(create_app())

    response = client.get("/tickets/t-1", headers={"Authorization": "Bearer l2-token"})

    assert response.status_code == 503


def test_ping_reports_ticket_service_state():
    client = TestClient(create_app())

    assert client.get("/ping").json() == {"status": "ok", "tickets": "unavailable", "database": "unavailable"}
    secure = client.get("/ping/secure", headers={"Authorization": "Bearer l3-token"})
    assert secure.json() == {"status": "ok", "actor": "agent-l3", "role": "L3"}


def test_ping_reports_database_state():
    app = create_app()
    app.state.postgres = MagicMock()
    app.state.postgres.test_connection = AsyncMock(return_value=True)
    client = TestClient(app)

    assert client.get("/ping").json()["database"] == "ok"
    app.state.postgres.test_connection.assert_awaited()

    app.state.postgres.test_connection = AsyncMock(side_effect=OSError("connection refused"))
    assert client.get("/ping").json()["database"] == "unavailable"


def test_summary_endpoint_returns_counters(ticket_client):
    client, service = ticket_client
    service.summarize = AsyncMock(return_value=TicketSummary(total=12, open=7, high_priority=4, overdue=2))

    response = client.get("/tickets/summary")

    assert response.status_code == 200
    assert response.json() == {"total": 12, "open": 7, "high_priority": 4, "overdue": 2}
    service.get_ticket.assert_not_awaited()


def test_concurrent_duplicate_submission_replays_instead_of_failing():
    app = create_app()
    repository = MagicMock()
    stored = _make_ticket(status=TicketStatus.ATTENDING)
    repository.get_ticket = AsyncMock(side_effect=[_make_ticket(), stored])
    repository.find_activity_by_request = AsyncMock(return_value=None)
    repository.apply_transition = AsyncMock(side_effect=DuplicateRequestError("k1"))
    app.state.ticket_service = TicketService(repository)
    client = TestClient(app)

    response = client.post(
        "/tickets/t-1/start",
        headers={"Authorization": "Bearer l1-token", "Idempotency-Key": "k1"},
    )

    assert response.status_code == 200
    assert response.json()["status"] == "Attending"
    repository.apply_transition.assert_awaited_once()
