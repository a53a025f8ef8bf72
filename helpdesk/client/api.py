from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

import httpx

from helpdesk.tickets.enums import Category, Priority, Severity, Tier, TicketStatus
from helpdesk.tickets.models import ActivityEntry, Ticket, TicketSummary, parse_activity_log

from .errors import APIError, TransitionRejectedByServer


def _extract_error(response: httpx.Response) -> tuple[str, str | None]:
    try:
        data = response.json()
    except ValueError:
        return response.text or "Unknown server error", None

    if isinstance(data, Mapping):
        detail = data.get("detail")
        if isinstance(detail, str):
            return detail, None
        if isinstance(detail, Mapping):
            code = detail.get("code")
            message = detail.get("message") or detail.get("msg")
            if message:
                return str(message), str(code) if code else None
        if isinstance(detail, list) and detail:
            first = detail[0]
            if isinstance(first, Mapping) and "msg" in first:
                return str(first["msg"]), None
    return "An unexpected error occurred", None


@dataclass(slots=True)
class HelpdeskAPIClient:
    """Small synchronous client for the helpdesk ticket service."""

    base_url: str
    token: str | None = None
    timeout: float = 10.0
    transport: httpx.BaseTransport | None = None

    def _request(self, method: str, path: str, *, request_id: str | None = None, **kwargs: Any) -> Any:
        headers: dict[str, str] = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if request_id:
            headers["Idempotency-Key"] = request_id
        headers.update(kwargs.pop("headers", {}))

        try:
            with httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=self.transport) as client:
                response = client.request(method, self._build_path(path), headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            raise APIError(f"Request to helpdesk service failed: {exc}") from exc

        if response.status_code >= 400:
            message, code = _extract_error(response)
            error_type = TransitionRejectedByServer if response.status_code == 409 else APIError
            raise error_type(message, status_code=response.status_code, code=code, response=response)

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    @staticmethod
    def _build_path(path: str) -> str:
        return path if path.startswith("/") else f"/{path}"

    def _ticket_action(
        self, method: str, path: str, *, json: Mapping[str, Any] | None = None, request_id: str | None = None
    ) -> Ticket:
        data = self._request(method, path, json=json, request_id=request_id or str(uuid.uuid4()))
        return Ticket.from_remote(data)

    def ping(self) -> Mapping[str, Any]:
        return self._request("GET", "/ping")

    def list_tickets(
        self,
        *,
        status: TicketStatus | None = None,
        tier: Tier | None = None,
        priority: Priority | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> tuple[list[Ticket], Mapping[str, Any]]:
        """Return the tickets of one page and the pagination block."""

        params: dict[str, Any] = {"page": page}
        if status is not None:
            params["status"] = status.value
        if tier is not None:
            params["tier"] = tier.value
        if priority is not None:
            params["priority"] = priority.value
        if limit is not None:
            params["limit"] = limit
        data = self._request("GET", "/tickets", params=params) or {}
        tickets = [Ticket.from_remote(item) for item in data.get("tickets", [])]
        pagination = {key: value for key, value in data.items() if key != "tickets"}
        return tickets, pagination

    def get_ticket(self, ticket_id: str) -> Ticket:
        return Ticket.from_remote(self._request("GET", f"/tickets/{ticket_id}"))

    def get_summary(self) -> TicketSummary:
        data = self._request("GET", "/tickets/summary") or {}
        return TicketSummary(
            total=int(data.get("total", 0)),
            open=int(data.get("open", 0)),
            high_priority=int(data.get("high_priority", 0)),
            overdue=int(data.get("overdue", 0)),
        )

    def get_capabilities(self, ticket_id: str) -> Mapping[str, Any]:
        return self._request("GET", f"/tickets/{ticket_id}/capabilities")

    def create_ticket(
        self,
        *,
        title: str,
        description: str,
        category: Category = Category.GENERAL_INQUIRY,
        priority: Priority = Priority.MEDIUM,
        due_date: datetime | None = None,
    ) -> Ticket:
        payload = {
            "title": title,
            "description": description,
            "category": category.value,
            "priority": priority.value,
            "due_date": due_date.isoformat() if due_date else None,
        }
        return self._ticket_action("POST", "/tickets", json=payload)

    def start_work(self, ticket_id: str, *, request_id: str | None = None) -> Ticket:
        return self._ticket_action("POST", f"/tickets/{ticket_id}/start", request_id=request_id)

    def update_status(self, ticket_id: str, status: TicketStatus, *, request_id: str | None = None) -> Ticket:
        return self._ticket_action(
            "PATCH", f"/tickets/{ticket_id}/status", json={"status": status.value}, request_id=request_id
        )

    def complete_ticket(self, ticket_id: str, *, request_id: str | None = None) -> Ticket:
        return self._ticket_action("POST", f"/tickets/{ticket_id}/complete", request_id=request_id)

    def set_severity(self, ticket_id: str, severity: Severity, *, request_id: str | None = None) -> Ticket:
        return self._ticket_action(
            "PATCH", f"/tickets/{ticket_id}/severity", json={"severity": severity.value}, request_id=request_id
        )

    def escalate(
        self, ticket_id: str, *, reason: str, notes: str = "", request_id: str | None = None
    ) -> Ticket:
        return self._ticket_action(
            "POST",
            f"/tickets/{ticket_id}/escalate",
            json={"reason": reason, "notes": notes},
            request_id=request_id,
        )

    def resolve(self, ticket_id: str, *, resolution: str, request_id: str | None = None) -> Ticket:
        return self._ticket_action(
            "POST", f"/tickets/{ticket_id}/resolve", json={"resolution": resolution}, request_id=request_id
        )

    def get_activity_log(self, ticket_id: str) -> tuple[ActivityEntry, ...]:
        return parse_activity_log(self._request("GET", f"/tickets/{ticket_id}/activity") or [])

    def add_note(self, ticket_id: str, *, action: str, details: str, request_id: str | None = None) -> Ticket:
        return self._ticket_action(
            "POST",
            f"/tickets/{ticket_id}/activity",
            json={"action": action, "details": details},
            request_id=request_id,
        )
