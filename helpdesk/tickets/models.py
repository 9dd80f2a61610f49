from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

from helpdesk.security.roles import Role

from .metadata import TicketMetadata
from .state import TicketStatus


@dataclass(slots=True)
class Ticket:
    """Aggregate representing a helpdesk ticket."""

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
    metadata: TicketMetadata
    version: int
    created_at: datetime
    updated_at: datetime

    @property
    def is_final(self) -> bool:
        return self.status.is_final


@dataclass(slots=True)
class TicketDraft:
    """Values needed to insert a new ticket."""

    title: str
    description: str
    category: str
    created_by: int
    subcategory: str | None = None
    location: str | None = None
    status: TicketStatus = TicketStatus.OPEN
    assigned_to: int | None = None
    group_id: int | None = None
    resolution_due_at: datetime | None = None
    metadata: TicketMetadata = field(default_factory=TicketMetadata)
    id: int | None = None


@dataclass(slots=True)
class TicketChanges:
    """Mutable fields written by a single ticket update."""

    status: TicketStatus
    assigned_to: int | None
    metadata: TicketMetadata
    escalation_level: int
    last_escalation_at: datetime | None
    resolution_due_at: datetime | None


@dataclass(slots=True)
class UserRecord:
    id: int
    external_id: str
    role: Role
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None

    @property
    def display_name(self) -> str:
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or self.email or f"User {self.id}"


@dataclass(slots=True)
class Committee:
    id: int
    name: str
    head_id: int | None
    description: str | None = None
    contact_email: str | None = None


@dataclass(slots=True)
class CommitteeTag:
    """Link between a ticket and a committee."""

    id: int
    ticket_id: int
    committee_id: int
    tagged_by: int
    reason: str | None
    created_at: datetime
    committee: Committee | None = None


@dataclass(slots=True)
class TagDraft:
    committee_id: int
    tagged_by: int
    reason: str | None = None


@dataclass(slots=True)
class AdminAssignment:
    """Area of responsibility of an admin: a category, optionally narrowed to a location."""

    user_id: int
    domain: str
    scope: str | None = None


@dataclass(slots=True)
class OutboxDraft:
    event_type: str
    payload: Mapping[str, Any]


@dataclass(slots=True)
class OutboxEvent:
    id: int
    event_type: str
    payload: Mapping[str, Any]
    attempts: int
    last_error: str | None
    next_retry_at: datetime | None
    processed_at: datetime | None
    created_at: datetime
