from __future__ import annotations

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, ConfigDict, Field

from helpdesk.dependencies.auth import CurrentActor
from helpdesk.dependencies.tickets import TicketServiceDep, to_http_exception
from helpdesk.tickets.errors import TicketServiceError, TicketValidationError
from helpdesk.tickets.state import parse_status

from .schemas import SuccessResponse, TicketResponse

router = APIRouter(prefix="/api/tickets", tags=["tickets"])


class TicketCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    category: str | None = Field(default=None, max_length=100)
    subcategory: str | None = Field(default=None, max_length=100)
    location: str | None = Field(default=None, max_length=255)


class TicketUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str | None = None
    comment: str | None = None
    comment_type: str | None = Field(default=None, alias="commentType")
    expected_version: int | None = Field(default=None, alias="expectedVersion")


class TicketForwardRequest(BaseModel):
    committee_id: int
    reason: str | None = Field(default=None, max_length=1000)


class TicketEscalateRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=1000)


class ForwardedTo(BaseModel):
    id: int
    name: str
    email: str | None


class TicketForwardResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: str
    ticket: TicketResponse
    forwarded_to: ForwardedTo = Field(alias="forwardedTo")


@router.post("", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    payload: TicketCreateRequest,
    service: TicketServiceDep,
    actor: CurrentActor,
) -> TicketResponse:
    try:
        ticket = await service.create_ticket(
            actor,
            title=payload.title,
            description=payload.description,
            category=payload.category,
            subcategory=payload.subcategory,
            location=payload.location,
        )
    except TicketServiceError as exc:
        raise to_http_exception(exc) from exc
    return TicketResponse.from_ticket(ticket, actor.role)


@router.get("", response_model=list[TicketResponse])
async def list_tickets(
    service: TicketServiceDep,
    actor: CurrentActor,
    status_filter: str | None = Query(default=None, alias="status"),
) -> list[TicketResponse]:
    parsed = None
    if status_filter is not None:
        parsed = parse_status(status_filter)
        if parsed is None:
            raise to_http_exception(TicketValidationError(f"Invalid status: {status_filter}"))
    try:
        tickets = await service.list_tickets(actor, status=parsed)
    except TicketServiceError as exc:
        raise to_http_exception(exc) from exc
    return [TicketResponse.from_ticket(ticket, actor.role) for ticket in tickets]


@router.get("/{ticket_id}", response_model=TicketResponse)
async def get_ticket(ticket_id: int, service: TicketServiceDep, actor: CurrentActor) -> TicketResponse:
    try:
        ticket = await service.get_ticket(actor, ticket_id)
    except TicketServiceError as exc:
        raise to_http_exception(exc) from exc
    return TicketResponse.from_ticket(ticket, actor.role)


@router.patch("/{ticket_id}", response_model=TicketResponse)
async def update_ticket(
    ticket_id: int,
    payload: TicketUpdateRequest,
    service: TicketServiceDep,
    actor: CurrentActor,
) -> TicketResponse:
    try:
        ticket = await service.update_ticket(
            actor,
            ticket_id,
            status=payload.status,
            comment=payload.comment,
            comment_type=payload.comment_type,
            expected_version=payload.expected_version,
        )
    except TicketServiceError as exc:
        raise to_http_exception(exc) from exc
    return TicketResponse.from_ticket(ticket, actor.role)


@router.delete("/{ticket_id}", response_model=SuccessResponse)
async def delete_ticket(ticket_id: int, service: TicketServiceDep, actor: CurrentActor) -> SuccessResponse:
    try:
        await service.delete_ticket(actor, ticket_id)
    except TicketServiceError as exc:
        raise to_http_exception(exc) from exc
    return SuccessResponse()


@router.post("/{ticket_id}/forward", response_model=TicketForwardResponse)
async def forward_ticket(
    ticket_id: int,
    payload: TicketForwardRequest,
    service: TicketServiceDep,
    actor: CurrentActor,
) -> TicketForwardResponse:
    try:
        result = await service.forward_ticket(
            actor, ticket_id, committee_id=payload.committee_id, reason=payload.reason
        )
    except TicketServiceError as exc:
        raise to_http_exception(exc) from exc
    return TicketForwardResponse(
        message=f"Ticket forwarded to {result.committee.name}",
        ticket=TicketResponse.from_ticket(result.ticket, actor.role),
        forwarded_to=ForwardedTo(id=result.head.id, name=result.head.display_name, email=result.head.email),
    )


@router.post("/{ticket_id}/escalate", response_model=TicketResponse)
async def escalate_ticket(
    ticket_id: int,
    payload: TicketEscalateRequest,
    service: TicketServiceDep,
    actor: CurrentActor,
) -> TicketResponse:
    try:
        ticket = await service.escalate_ticket(actor, ticket_id, reason=payload.reason)
    except TicketServiceError as exc:
        raise to_http_exception(exc) from exc
    return TicketResponse.from_ticket(ticket, actor.role)


class TicketTatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tat: str = Field(..., min_length=1, max_length=100)
    mark_in_progress: bool = Field(default=False, alias="markInProgress")


class TicketRateRequest(BaseModel):
    rating: int
    feedback: str | None = Field(default=None, max_length=2000)


class TicketReassignRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    assigned_to: int | None = Field(default=None, alias="assignedTo")


@router.post("/{ticket_id}/tat", response_model=TicketResponse)
async def set_ticket_tat(
    ticket_id: int,
    payload: TicketTatRequest,
    service: TicketServiceDep,
    actor: CurrentActor,
) -> TicketResponse:
    try:
        ticket = await service.set_tat(actor, ticket_id, tat=payload.tat, mark_in_progress=payload.mark_in_progress)
    except TicketServiceError as exc:
        raise to_http_exception(exc) from exc
    return TicketResponse.from_ticket(ticket, actor.role)


@router.post("/{ticket_id}/rate", response_model=TicketResponse)
async def rate_ticket(
    ticket_id: int,
    payload: TicketRateRequest,
    service: TicketServiceDep,
    actor: CurrentActor,
) -> TicketResponse:
    try:
        ticket = await service.rate_ticket(actor, ticket_id, rating=payload.rating, feedback=payload.feedback)
    except TicketServiceError as exc:
        raise to_http_exception(exc) from exc
    return TicketResponse.from_ticket(ticket, actor.role)


@router.post("/{ticket_id}/reassign", response_model=TicketResponse)
async def reassign_ticket(
    ticket_id: int,
    payload: TicketReassignRequest,
    service: TicketServiceDep,
    actor: CurrentActor,
) -> TicketResponse:
    try:
        ticket = await service.reassign_ticket(actor, ticket_id, assignee_id=payload.assigned_to)
    except TicketServiceError as exc:
        raise to_http_exception(exc) from exc
    return TicketResponse.from_ticket(ticket, actor.role)
