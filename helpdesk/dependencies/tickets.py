from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request

from helpdesk.dependencies.auth import role_required
from helpdesk.tickets.enums import Role
from helpdesk.tickets.models import Actor
from helpdesk.tickets.service import TicketService

require_agent = role_required(Role.L1, Role.L2, Role.L3)
require_member = role_required(Role.L1, Role.L2, Role.L3, Role.ADMIN)

AgentActor = Annotated[Actor, Depends(require_agent)]
MemberActor = Annotated[Actor, Depends(require_member)]


async def get_ticket_service(request: Request) -> TicketService:
    service = getattr(request.app.state, "ticket_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Ticket service is not configured")
    return service


async def get_request_id(
    idempotency_key: Annotated[str | None, Header(alias="Idempotency-Key", max_length=128)] = None,
) -> str | None:
    return idempotency_key or None


RequestId = Annotated[str | None, Depends(get_request_id)]
