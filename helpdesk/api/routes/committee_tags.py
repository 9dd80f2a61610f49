from __future__ import annotations

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, Field

from helpdesk.dependencies.auth import CurrentActor
from helpdesk.dependencies.tickets import TicketServiceDep, to_http_exception
from helpdesk.tickets.errors import TicketServiceError

from .schemas import CommitteeTagResponse, SuccessResponse

router = APIRouter(prefix="/api/tickets/{ticket_id}/committee-tags", tags=["committee-tags"])


class CommitteeTagCreateRequest(BaseModel):
    committee_id: int
    reason: str | None = Field(default=None, max_length=1000)


class CommitteeTagListResponse(BaseModel):
    tags: list[CommitteeTagResponse]


class CommitteeTagCreatedResponse(BaseModel):
    tag: CommitteeTagResponse


@router.get("", response_model=CommitteeTagListResponse)
async def list_committee_tags(
    ticket_id: int, service: TicketServiceDep, actor: CurrentActor
) -> CommitteeTagListResponse:
    try:
        tags = await service.list_tags(actor, ticket_id)
    except TicketServiceError as exc:
        raise to_http_exception(exc) from exc
    return CommitteeTagListResponse(tags=[CommitteeTagResponse.from_tag(tag) for tag in tags])


@router.post("", response_model=CommitteeTagCreatedResponse, status_code=status.HTTP_201_CREATED)
async def add_committee_tag(
    ticket_id: int,
    payload: CommitteeTagCreateRequest,
    service: TicketServiceDep,
    actor: CurrentActor,
) -> CommitteeTagCreatedResponse:
    try:
        tag = await service.add_tag(actor, ticket_id, committee_id=payload.committee_id, reason=payload.reason)
    except TicketServiceError as exc:
        raise to_http_exception(exc) from exc
    return CommitteeTagCreatedResponse(tag=CommitteeTagResponse.from_tag(tag))


@router.delete("", response_model=SuccessResponse)
async def remove_committee_tag(
    ticket_id: int,
    service: TicketServiceDep,
    actor: CurrentActor,
    tag_id: int | None = Query(default=None, alias="tagId"),
    committee_id: int | None = Query(default=None, alias="committeeId"),
) -> SuccessResponse:
    try:
        await service.remove_tag(actor, ticket_id, tag_id=tag_id, committee_id=committee_id)
    except TicketServiceError as exc:
        raise to_http_exception(exc) from exc
    return SuccessResponse()
