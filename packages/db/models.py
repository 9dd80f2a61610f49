"""SQLModel table definitions for the helpdesk data layer."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    """Return a timezone aware UTC timestamp."""

    return datetime.now(timezone.utc)


class UserTable(SQLModel, table=True):
    """Local user records linked to the external identity provider."""

    __tablename__ = "users"

    id: int | None = Field(default=None, primary_key=True)
    external_id: str = Field(sa_column=Column(String(255), nullable=False, unique=True, index=True))
    email: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    first_name: str | None = Field(default=None, sa_column=Column(String(120), nullable=True))
    last_name: str | None = Field(default=None, sa_column=Column(String(120), nullable=True))
    role: str = Field(sa_column=Column(String(32), nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketStatusTable(SQLModel, table=True):
    """Lookup table for the ticket status enumeration."""

    __tablename__ = "ticket_statuses"

    id: int | None = Field(default=None, primary_key=True)
    value: str = Field(sa_column=Column(String(50), nullable=False, unique=True))
    label: str = Field(sa_column=Column(String(100), nullable=False))
    badge_color: str = Field(default="default", sa_column=Column(String(50), nullable=False))
    is_final: bool = Field(default=False, sa_column=Column(Boolean, nullable=False))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False))
    display_order: int = Field(default=0, sa_column=Column(Integer, nullable=False))


class TicketGroupTable(SQLModel, table=True):
    """Named bundle of tickets archived once every member is final."""

    __tablename__ = "ticket_groups"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(sa_column=Column(String(255), nullable=False))
    is_archived: bool = Field(default=False, sa_column=Column(Boolean, nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketTable(SQLModel, table=True):
    """Ticket rows; the flexible fields live in the ``metadata`` document."""

    __tablename__ = "tickets"

    id: int | None = Field(default=None, primary_key=True)
    title: str = Field(sa_column=Column(String(255), nullable=False))
    description: str = Field(default="", sa_column=Column(Text, nullable=False))
    category: str = Field(sa_column=Column(String(120), nullable=False, index=True))
    subcategory: str | None = Field(default=None, sa_column=Column(String(120), nullable=True))
    location: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    status_id: int = Field(sa_column=Column(Integer, ForeignKey("ticket_statuses.id"), nullable=False))
    created_by: int = Field(sa_column=Column(Integer, ForeignKey("users.id"), nullable=False, index=True))
    assigned_to: int | None = Field(
        default=None, sa_column=Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    )
    group_id: int | None = Field(
        default=None,
        sa_column=Column(Integer, ForeignKey("ticket_groups.id", ondelete="SET NULL"), nullable=True),
    )
    escalation_level: int = Field(default=0, sa_column=Column(Integer, nullable=False))
    last_escalation_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    resolution_due_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    metadata_: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column("metadata", JSON, nullable=False)
    )
    version: int = Field(default=1, sa_column=Column(Integer, nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class CommitteeTable(SQLModel, table=True):
    """Committees that can be tagged on tickets."""

    __tablename__ = "committees"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(sa_column=Column(String(140), nullable=False, unique=True))
    description: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    contact_email: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    head_id: int | None = Field(default=None, sa_column=Column(Integer, ForeignKey("users.id"), nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class CommitteeMemberTable(SQLModel, table=True):
    """Membership roster of a committee."""

    __tablename__ = "committee_members"
    __table_args__ = (UniqueConstraint("committee_id", "user_id", name="unique_committee_member"),)

    id: int | None = Field(default=None, primary_key=True)
    committee_id: int = Field(
        sa_column=Column(Integer, ForeignKey("committees.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    user_id: int = Field(
        sa_column=Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    role: str | None = Field(default=None, sa_column=Column(String(64), nullable=True))


class TicketCommitteeTagTable(SQLModel, table=True):
    """Link granting a committee rights on a ticket."""

    __tablename__ = "ticket_committee_tags"
    __table_args__ = (UniqueConstraint("ticket_id", "committee_id", name="unique_ticket_committee_tag"),)

    id: int | None = Field(default=None, primary_key=True)
    ticket_id: int = Field(
        sa_column=Column(Integer, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    committee_id: int = Field(
        sa_column=Column(Integer, ForeignKey("committees.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    tagged_by: int = Field(sa_column=Column(Integer, ForeignKey("users.id"), nullable=False))
    reason: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class AdminAssignmentTable(SQLModel, table=True):
    """Domain/scope areas an admin is responsible for."""

    __tablename__ = "admin_assignments"
    __table_args__ = (UniqueConstraint("user_id", "domain", "scope", name="unique_admin_assignment"),)

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(
        sa_column=Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    domain: str = Field(sa_column=Column(String(120), nullable=False))
    scope: str | None = Field(default=None, sa_column=Column(String(120), nullable=True))


class OutboxTable(SQLModel, table=True):
    """Append-only events written together with ticket changes."""

    __tablename__ = "outbox"

    id: int | None = Field(default=None, primary_key=True)
    event_type: str = Field(sa_column=Column(String(100), nullable=False))
    payload: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    attempts: int = Field(default=0, sa_column=Column(Integer, nullable=False))
    last_error: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    next_retry_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    processed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
