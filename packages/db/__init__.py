"""Database models and utilities."""

from .models import (
    AdminAssignmentTable,
    CommitteeMemberTable,
    CommitteeTable,
    OutboxTable,
    TicketCommitteeTagTable,
    TicketGroupTable,
    TicketStatusTable,
    TicketTable,
    UserTable,
)

__all__ = [
    "AdminAssignmentTable",
    "CommitteeMemberTable",
    "CommitteeTable",
    "OutboxTable",
    "TicketCommitteeTagTable",
    "TicketGroupTable",
    "TicketStatusTable",
    "TicketTable",
    "UserTable",
]
