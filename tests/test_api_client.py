import json

import httpx
import pytest

from helpdesk.client.api import HelpdeskAPIClient
from helpdesk.client.errors import APIError, TransitionRejectedByServer
from helpdesk.tickets.enums import Severity, Tier, TicketStatus
from helpdesk.tickets.models import MalformedTicketError


def _ticket_payload(**overrides):
    payload = {
        "id": "t-1",
        "title": "Printer offline",
        "description": "Floor 3",
        "category": "Hardware Issue",
        "priority": "High",
        "status": "New",
        "current_tier": "L1",
        "severity": None,
        "due_date": "2026-10-22T12:00:00Z",
        "resolution": None,
        "created_by": "agent-l1",
        "created_at": "2026-10-19T11:00:00Z",
        "updated_at": "2026-10-19T11:00:00Z",
        "activity_log": [],
        "escalation_history": [],
    }
    payload.update(overrides)
    return payload


def _client(handler, token="l1-token") -> HelpdeskAPIClient:
    return HelpdeskAPIClient(base_url="http://helpdesk.test", token=token, transport=httpx.MockTransport(handler))


def test_ticket_action_sends_token_and_idempotency_key():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_ticket_payload(current_tier="L2"))

    ticket = _client(handler).escalate("t-1", reason="Needs specialist", request_id="req-7")

    assert ticket.current_tier is Tier.L2
    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/tickets/t-1/escalate"
    assert request.headers["Authorization"] == "Bearer l1-token"
    assert request.headers["Idempotency-Key"] == "req-7"
    assert json.loads(request.content) == {"reason": "Needs specialist", "notes": ""}


def test_ticket_action_generates_request_id_when_missing():
    keys: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        keys.append(request.headers.get("Idempotency-Key", ""))
        return httpx.Response(200, json=_ticket_payload(status="Attending"))

    ticket = _client(handler).start_work("t-1")

    assert ticket.status is TicketStatus.ATTENDING
    assert keys[0]


def test_set_severity_and_update_status_payloads():
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json=_ticket_payload(current_tier="L2", severity="C1"))

    client = _client(handler, token="l2-token")
    client.set_severity("t-1", Severity.C1)
    client.update_status("t-1", TicketStatus.ESCALATED)

    assert bodies == [{"severity": "C1"}, {"status": "Escalated"}]


def test_list_tickets_passes_filters_and_splits_pagination():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["status"] == "Escalated"
        assert request.url.params["tier"] == "L2"
        assert request.url.params["page"] == "2"
        return httpx.Response(
            200,
            json={
                "tickets": [_ticket_payload(status="Escalated", current_tier="L2")],
                "page": 2,
                "limit": 20,
                "total": 21,
                "total_pages": 2,
                "has_next": False,
                "has_prev": True,
            },
        )

    tickets, pagination = _client(handler).list_tickets(status=TicketStatus.ESCALATED, tier=Tier.L2, page=2)

    assert [ticket.status for ticket in tickets] == [TicketStatus.ESCALATED]
    assert pagination["total"] == 21
    assert "tickets" not in pagination


def test_conflict_raises_transition_rejected_with_code():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(409, json={"detail": {"code": "ticket_frozen", "message": "Ticket t-1 is overdue"}})

    with pytest.raises(TransitionRejectedByServer) as exc:
        _client(handler).complete_ticket("t-1")

    assert exc.value.status_code == 409
    assert exc.value.code == "ticket_frozen"
    assert str(exc.value) == "Ticket t-1 is overdue"


@pytest.mark.parametrize(
    "status_code,body,message",
    [
        (404, {"detail": "Ticket t-9 not found"}, "Ticket t-9 not found"),
        (422, {"detail": [{"loc": ["body", "severity"], "msg": "Input should be 'C1', 'C2' or 'C3'"}]}, "Input should"),
        (401, {"detail": "Not authenticated"}, "Not authenticated"),
    ],
)
def test_other_failures_raise_api_error(status_code, body, message):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json=body)

    with pytest.raises(APIError) as exc:
        _client(handler).get_ticket("t-9")

    assert not isinstance(exc.value, TransitionRejectedByServer)
    assert exc.value.status_code == status_code
    assert message in str(exc.value)


def test_transport_failure_is_wrapped():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(APIError) as exc:
        _client(handler).ping()

    assert exc.value.status_code is None


def test_malformed_ticket_payload_is_rejected():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_ticket_payload(status="Closed"))

    with pytest.raises(MalformedTicketError):
        _client(handler).get_ticket("t-1")


def test_get_activity_log_parses_entries():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/tickets/t-1/activity"
        return httpx.Response(
            200,
            json=[
                {
                    "id": "a-1",
                    "actor": "agent-l1",
                    "actor_role": "L1",
                    "action": "Ticket created",
                    "detail": "",
                    "from_status": None,
                    "to_status": "New",
                    "timestamp": "2026-10-19T11:00:00Z",
                }
            ],
        )

    entries = _client(handler).get_activity_log("t-1")

    assert [entry.to_status for entry in entries] == [TicketStatus.NEW]


def test_get_activity_log_rejects_entries_without_timestamp():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[{"actor": "agent-l1", "action": "Comment"}])

    with pytest.raises(MalformedTicketError):
        _client(handler).get_activity_log("t-1")


def test_api_error_string_carries_status_code():
    error = APIError("Ticket t-9 not found", status_code=404)

    assert str(error) == "[404] Ticket t-9 not found"
    assert error.message == "Ticket t-9 not found"


def test_get_summary_parses_counters():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/tickets/summary"
        return httpx.Response(200, json={"total": 5, "open": 3, "high_priority": 1, "overdue": 0})

    summary = _client(handler).get_summary()

    assert (summary.total, summary.open, summary.high_priority, summary.overdue) == (5, 3, 1, 0)
