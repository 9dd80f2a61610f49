from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from helpdesk.tickets.errors import (
    AccessDeniedError,
    DuplicateTagError,
    NotFoundError,
    StaleTicketError,
    TicketServiceError,
    TicketValidationError,
)
from helpdesk.tickets.outbox import OutboxProcessor
from helpdesk.tickets.service import TicketService


async def get_ticket_service(request: Request) -> TicketService:
    service = getattr(request.app.state, "ticket_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Ticket service is not available")
    return service


async def get_outbox_processor(request: Request) -> OutboxProcessor:
    processor = getattr(request.app.state, "outbox_processor", None)
    if processor is None:
        raise HTTPException(status_code=503, detail="Ticket service is not available")
    return processor


def to_http_exception(exc: TicketServiceError) -> HTTPException:
    """Map a domain error raised by the ticket services to its HTTP response."""

    if isinstance(exc, AccessDeniedError):
        return HTTPException(status_code=exc.status_code, detail=exc.reason)
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (TicketValidationError, DuplicateTagError)):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, StaleTicketError):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=500, detail="Internal Server Error")


TicketServiceDep = Annotated[TicketService, Depends(get_ticket_service)]
OutboxProcessorDep = Annotated[OutboxProcessor, Depends(get_outbox_processor)]
