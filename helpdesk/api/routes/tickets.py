from __future__ import annotations

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from helpdesk.core.config import get_settings
from helpdesk.dependencies.tickets import AgentActor, MemberActor, RequestId, get_ticket_service
from helpdesk.tickets.enums import Category, Priority, Role, Severity, Tier, TicketStatus
from helpdesk.tickets.models import ActivityEntry, Ticket, TicketPage, TicketSummary
from helpdesk.tickets.policy import PolicyDecision
from helpdesk.tickets.service import IllegalTransitionError, TicketNotFoundError, TicketService

router = APIRouter(prefix="/tickets", tags=["tickets"])


class TicketCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    category: Category = Category.GENERAL_INQUIRY
    priority: Priority = Priority.MEDIUM
    due_date: datetime | None = None


class TicketStatusChangeRequest(BaseModel):
    status: TicketStatus


class TicketSeverityRequest(BaseModel):
    severity: Severity


class TicketEscalationRequest(BaseModel):
    reason: str = Field(default="Escalated by agent", min_length=1, max_length=500)
    notes: str = Field(default="", max_length=2000)


class TicketResolutionRequest(BaseModel):
    resolution: str = Field(..., min_length=1, max_length=2000)


class ActivityNoteRequest(BaseModel):
    action: str = Field(..., min_length=1, max_length=100)
    details: str = Field(default="", max_length=2000)


class ActivityEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    actor: str
    actor_role: Role | None
    action: str
    detail: str
    from_status: TicketStatus | None
    to_status: TicketStatus | None
    timestamp: datetime


class EscalationRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    from_tier: Tier
    to_tier: Tier
    reason: str
    notes: str
    escalated_by: str
    escalated_at: datetime


class TicketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    description: str
    category: Category
    priority: Priority
    status: TicketStatus
    current_tier: Tier
    severity: Severity | None
    due_date: datetime | None
    resolution: str | None
    created_by: str
    created_at: datetime | None
    updated_at: datetime | None
    activity_log: list[ActivityEntryResponse]
    escalation_history: list[EscalationRecordResponse]


class TicketPageResponse(BaseModel):
    tickets: list[TicketResponse]
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class TicketSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total: int
    open: int
    high_priority: int
    overdue: int


class CapabilitiesResponse(BaseModel):
    ticket_id: str
    frozen: bool
    can_start_work: bool
    can_set_severity: bool
    can_escalate: bool
    escalation_target: Tier | None
    can_resolve: bool
    allowed_status_updates: list[TicketStatus]
    has_any_action: bool


TicketServiceDep = Annotated[TicketService, Depends(get_ticket_service)]


def _to_response(ticket: Ticket) -> TicketResponse:
    return TicketResponse.model_validate(ticket)


def _to_page_response(page: TicketPage) -> TicketPageResponse:
    return TicketPageResponse(
        tickets=[_to_response(ticket) for ticket in page.tickets],
        page=page.page,
        limit=page.limit,
        total=page.total,
        total_pages=page.total_pages,
        has_next=page.has_next,
        has_prev=page.has_prev,
    )


def _to_capabilities(ticket_id: str, decision: PolicyDecision) -> CapabilitiesResponse:
    return CapabilitiesResponse(
        ticket_id=ticket_id,
        frozen=decision.frozen,
        can_start_work=decision.can_start_work,
        can_set_severity=decision.can_set_severity,
        can_escalate=decision.can_escalate,
        escalation_target=decision.escalation_target,
        can_resolve=decision.can_resolve,
        # Stable order for clients.
        allowed_status_updates=[s for s in TicketStatus if s in decision.allowed_status_updates],
        has_any_action=decision.has_any_action,
    )


def _conflict(exc: IllegalTransitionError) -> HTTPException:
    return HTTPException(status_code=409, detail={"code": exc.code, "message": str(exc)})


@router.post("", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    payload: TicketCreateRequest,
    service: TicketServiceDep,
    actor: AgentActor,
    request_id: RequestId,
) -> TicketResponse:
    ticket = await service.create_ticket(
        title=payload.title,
        description=payload.description,
        category=payload.category,
        priority=payload.priority,
        due_date=payload.due_date,
        actor=actor,
        request_id=request_id,
    )
    return _to_response(ticket)


@router.get("", response_model=TicketPageResponse)
async def list_tickets(
    service: TicketServiceDep,
    _: MemberActor,
    status_filter: TicketStatus | None = Query(default=None, alias="status"),
    tier: Tier | None = Query(default=None),
    priority: Priority | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int | None = Query(default=None, ge=1),
) -> TicketPageResponse:
    if limit is not None:
        limit = min(limit, get_settings().max_page_size)
    result = await service.list_tickets(status=status_filter, tier=tier, priority=priority, page=page, limit=limit)
    return _to_page_response(result)


@router.get("/summary", response_model=TicketSummaryResponse)
async def get_ticket_summary(service: TicketServiceDep, _: MemberActor) -> TicketSummaryResponse:
    summary: TicketSummary = await service.summarize()
    return TicketSummaryResponse.model_validate(summary)


@router.get("/{ticket_id}", response_model=TicketResponse)
async def get_ticket(ticket_id: str, service: TicketServiceDep, _: MemberActor) -> TicketResponse:
    try:
        ticket = await service.get_ticket(ticket_id)
    except TicketNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _to_response(ticket)


@router.get("/{ticket_id}/capabilities", response_model=CapabilitiesResponse)
async def get_capabilities(ticket_id: str, service: TicketServiceDep, actor: MemberActor) -> CapabilitiesResponse:
    try:
        decision = await service.evaluate(ticket_id, actor)
    except TicketNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _to_capabilities(ticket_id, decision)


@router.post("/{ticket_id}/start", response_model=TicketResponse)
async def start_work(
    ticket_id: str, service: TicketServiceDep, actor: MemberActor, request_id: RequestId
) -> TicketResponse:
    try:
        ticket = await service.start_work(ticket_id, actor=actor, request_id=request_id)
    except TicketNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except IllegalTransitionError as exc:
        raise _conflict(exc) from exc
    return _to_response(ticket)


@router.patch("/{ticket_id}/status", response_model=TicketResponse)
async def change_ticket_status(
    ticket_id: str,
    payload: TicketStatusChangeRequest,
    service: TicketServiceDep,
    actor: MemberActor,
    request_id: RequestId,
) -> TicketResponse:
    try:
        ticket = await service.update_status(ticket_id, status=payload.status, actor=actor, request_id=request_id)
    except TicketNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except IllegalTransitionError as exc:
        raise _conflict(exc) from exc
    return _to_response(ticket)


@router.post("/{ticket_id}/complete", response_model=TicketResponse)
async def complete_ticket(
    ticket_id: str, service: TicketServiceDep, actor: MemberActor, request_id: RequestId
) -> TicketResponse:
    try:
        ticket = await service.complete_ticket(ticket_id, actor=actor, request_id=request_id)
    except TicketNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except IllegalTransitionError as exc:
        raise _conflict(exc) from exc
    return _to_response(ticket)


@router.patch("/{ticket_id}/severity", response_model=TicketResponse)
async def set_ticket_severity(
    ticket_id: str,
    payload: TicketSeverityRequest,
    service: TicketServiceDep,
    actor: MemberActor,
    request_id: RequestId,
) -> TicketResponse:
    try:
        ticket = await service.set_severity(ticket_id, severity=payload.severity, actor=actor, request_id=request_id)
    except TicketNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except IllegalTransitionError as exc:
        raise _conflict(exc) from exc
    return _to_response(ticket)


@router.post("/{ticket_id}/escalate", response_model=TicketResponse)
async def escalate_ticket(
    ticket_id: str,
    payload: TicketEscalationRequest,
    service: TicketServiceDep,
    actor: MemberActor,
    request_id: RequestId,
) -> TicketResponse:
    try:
        ticket = await service.escalate(
            ticket_id,
            actor=actor,
            reason=payload.reason,
            notes=payload.notes,
            request_id=request_id,
        )
    except TicketNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except IllegalTransitionError as exc:
        raise _conflict(exc) from exc
    return _to_response(ticket)


@router.post("/{ticket_id}/resolve", response_model=TicketResponse)
async def resolve_ticket(
    ticket_id: str,
    payload: TicketResolutionRequest,
    service: TicketServiceDep,
    actor: MemberActor,
    request_id: RequestId,
) -> TicketResponse:
    try:
        ticket = await service.finalize_resolution(
            ticket_id, actor=actor, resolution=payload.resolution, request_id=request_id
        )
    except TicketNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except IllegalTransitionError as exc:
        raise _conflict(exc) from exc
    return _to_response(ticket)


@router.post("/{ticket_id}/activity", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
async def add_activity_note(
    ticket_id: str,
    payload: ActivityNoteRequest,
    service: TicketServiceDep,
    actor: MemberActor,
    request_id: RequestId,
) -> TicketResponse:
    try:
        ticket = await service.add_note(
            ticket_id, actor=actor, action=payload.action, details=payload.details, request_id=request_id
        )
    except TicketNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except IllegalTransitionError as exc:
        raise _conflict(exc) from exc
    return _to_response(ticket)


@router.get("/{ticket_id}/activity", response_model=list[ActivityEntryResponse])
async def get_activity_log(ticket_id: str, service: TicketServiceDep, _: MemberActor) -> list[ActivityEntryResponse]:
    try:
        entries: list[ActivityEntry] = await service.get_activity_log(ticket_id)
    except TicketNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return [ActivityEntryResponse.model_validate(entry) for entry in entries]
