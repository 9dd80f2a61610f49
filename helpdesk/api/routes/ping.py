from typing import Any

from fastapi import APIRouter, Request

from helpdesk.dependencies.auth import CurrentActor, SuperAdmin
from helpdesk.metrics import metrics_registry

router = APIRouter(prefix="/ping", tags=["health"])


@router.get("", summary="Public health probe")
async def ping() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/secure", summary="Authenticated health probe")
async def secure_ping(actor: CurrentActor) -> dict[str, str]:
    return {"status": "ok", "user": actor.external_id, "role": actor.role.value}


@router.get("/metrics", summary="Snapshot of the in-process metrics")
async def metrics_snapshot(request: Request, _: SuperAdmin) -> dict[str, Any]:
    registry = getattr(request.app.state, "metrics_registry", None) or metrics_registry
    return {"metrics": registry.snapshot()}
