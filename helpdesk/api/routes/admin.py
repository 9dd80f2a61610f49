from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from helpdesk.dependencies.auth import CurrentActor, get_user_service
from helpdesk.dependencies.tickets import to_http_exception
from helpdesk.security.roles import Role
from helpdesk.services.users import UserService
from helpdesk.tickets.errors import TicketServiceError

router = APIRouter(prefix="/api/admin", tags=["admin"])

UserServiceDep = Annotated[UserService, Depends(get_user_service)]


class RoleChangeRequest(BaseModel):
    role: str = Field(..., min_length=1)


class UserResponse(BaseModel):
    id: int
    external_id: str
    email: str | None
    first_name: str | None
    last_name: str | None
    role: Role


class RoleChangeResponse(BaseModel):
    user: UserResponse


@router.patch("/users/{user_id}/role", response_model=RoleChangeResponse)
async def change_user_role(
    user_id: int,
    payload: RoleChangeRequest,
    users: UserServiceDep,
    actor: CurrentActor,
) -> RoleChangeResponse:
    try:
        user = await users.change_role(actor, user_id, payload.role)
    except TicketServiceError as exc:
        raise to_http_exception(exc) from exc
    return RoleChangeResponse(
        user=UserResponse(
            id=user.id,
            external_id=user.external_id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            role=user.role,
        )
    )
