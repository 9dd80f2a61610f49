"""Response models shared by the ticket routers."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel

from helpdesk.security.roles import Role
from helpdesk.tickets.models import Committee, CommitteeTag, Ticket
from helpdesk.tickets.state import TicketStatus


class TicketResponse(BaseModel):
    id: int
    title: str
    description: str
    category: str
    subcategory: str | None
    location: str | None
    status: TicketStatus
    created_by: int
    assigned_to: int | None
    group_id: int | None
    escalation_level: int
    last_escalation_at: datetime | None
    resolution_due_at: datetime | None
    metadata: dict[str, Any]
    version: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_ticket(cls, ticket: Ticket, viewer: Role) -> TicketResponse:
        """Serialise ``ticket`` with internal comments hidden from non-admin viewers."""

        return cls(
            id=ticket.id,
            title=ticket.title,
            description=ticket.description,
            category=ticket.category,
            subcategory=ticket.subcategory,
            location=ticket.location,
            status=ticket.status,
            created_by=ticket.created_by,
            assigned_to=ticket.assigned_to,
            group_id=ticket.group_id,
            escalation_level=ticket.escalation_level,
            last_escalation_at=ticket.last_escalation_at,
            resolution_due_at=ticket.resolution_due_at,
            metadata=ticket.metadata.for_viewer(viewer),
            version=ticket.version,
            created_at=ticket.created_at,
            updated_at=ticket.updated_at,
        )


class CommitteeResponse(BaseModel):
    id: int
    name: str
    description: str | None
    contact_email: str | None
    head_id: int | None

    @classmethod
    def from_committee(cls, committee: Committee) -> CommitteeResponse:
        return cls(
            id=committee.id,
            name=committee.name,
            description=committee.description,
            contact_email=committee.contact_email,
            head_id=committee.head_id,
        )


class CommitteeTagResponse(BaseModel):
    id: int
    ticket_id: int
    committee_id: int
    tagged_by: int
    reason: str | None
    created_at: datetime
    committee: CommitteeResponse | None

    @classmethod
    def from_tag(cls, tag: CommitteeTag) -> CommitteeTagResponse:
        return cls(
            id=tag.id,
            ticket_id=tag.ticket_id,
            committee_id=tag.committee_id,
            tagged_by=tag.tagged_by,
            reason=tag.reason,
            created_at=tag.created_at,
            committee=CommitteeResponse.from_committee(tag.committee) if tag.committee else None,
        )


class SuccessResponse(BaseModel):
    success: bool = True
