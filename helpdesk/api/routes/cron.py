from __future__ import annotations

import hmac
import logging

from fastapi import APIRouter, Header, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field

from helpdesk.dependencies.tickets import OutboxProcessorDep, TicketServiceDep

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cron", tags=["cron"])


class OutboxRunResponse(BaseModel):
    success: bool = True
    processed: int
    errors: int


class AutoEscalateResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    escalated: int
    ticket_ids: list[int] = Field(alias="ticketIds")
    errors: list[int]


def _check_cron_secret(request: Request, presented: str | None) -> None:
    """When a cron secret is configured the caller must present it in ``X-Cron-Secret``."""

    expected = request.app.state.settings.cron_secret
    if expected and not hmac.compare_digest(presented or "", expected):
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.post("/process-outbox", response_model=OutboxRunResponse)
async def process_outbox(
    request: Request,
    processor: OutboxProcessorDep,
    cron_secret: str | None = Header(default=None, alias="X-Cron-Secret"),
) -> OutboxRunResponse:
    """Deliver a batch of pending outbox events."""

    _check_cron_secret(request, cron_secret)
    result = await processor.process_batch()
    if result.processed or result.errors:
        logger.info("Outbox run delivered %s events with %s errors", result.processed, result.errors)
    return OutboxRunResponse(processed=result.processed, errors=result.errors)


@router.post("/auto-escalate", response_model=AutoEscalateResponse, response_model_by_alias=True)
async def auto_escalate(
    request: Request,
    service: TicketServiceDep,
    cron_secret: str | None = Header(default=None, alias="X-Cron-Secret"),
) -> AutoEscalateResponse:
    """Escalate open tickets that are overdue, stalled or bouncing between owners."""

    _check_cron_secret(request, cron_secret)
    result = await service.auto_escalate()
    return AutoEscalateResponse(escalated=len(result.escalated), ticket_ids=result.escalated, errors=result.errors)
