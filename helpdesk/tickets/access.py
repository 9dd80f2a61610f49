"""Allow/deny decisions for ticket operations.

The gate is a pure function of the actor's role, the ticket, and the
relationship facts the caller looked up beforehand (committee tag membership
and admin domain/scope match). It performs no I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from helpdesk.security.roles import Actor, Role

from .errors import AccessDeniedError
from .metadata import CommentType
from .models import AdminAssignment, Ticket
from .state import TicketStatus

COMMITTEE_CATEGORY = "committee"


class Operation(str, Enum):
    VIEW = "view"
    COMMENT = "comment"
    SET_STATUS = "set_status"
    FORWARD = "forward"
    ESCALATE = "escalate"
    DELETE = "delete"
    CREATE = "create"
    VIEW_TAGS = "view_tags"
    MANAGE_TAGS = "manage_tags"
    SET_TAT = "set_tat"
    REASSIGN = "reassign"
    RATE = "rate"


_TICKET_INDEPENDENT = frozenset(
    {Operation.CREATE, Operation.DELETE, Operation.VIEW_TAGS, Operation.MANAGE_TAGS}
)

_ADMIN_ONLY = {
    Operation.FORWARD: "Only admins can forward tickets",
    Operation.SET_TAT: "Only admins can set TAT",
    Operation.REASSIGN: "Only admins can reassign tickets",
}


@dataclass(frozen=True, slots=True)
class AccessDecision:
    allowed: bool
    reason: str | None = None
    unauthenticated: bool = False

    @classmethod
    def allow(cls) -> AccessDecision:
        return cls(True)

    @classmethod
    def deny(cls, reason: str) -> AccessDecision:
        return cls(False, reason)

    @classmethod
    def unauthorized(cls) -> AccessDecision:
        return cls(False, "Unauthorized", unauthenticated=True)

    def raise_for_denial(self) -> None:
        if not self.allowed:
            raise AccessDeniedError(self.reason or "Forbidden", unauthenticated=self.unauthenticated)


def is_committee_owner(actor: Actor, ticket: Ticket) -> bool:
    return ticket.category.strip().lower() == COMMITTEE_CATEGORY and ticket.created_by == actor.user_id


def matches_scope(assignments: Iterable[AdminAssignment], ticket: Ticket) -> bool:
    """True when any assignment covers the ticket's category and location.

    Domains compare against the category and scopes against the location,
    both case-insensitively. An assignment without a scope covers every
    location in its domain.
    """

    category = ticket.category.strip().lower()
    location = (ticket.location or "").strip().lower()
    for assignment in assignments:
        if assignment.domain.strip().lower() != category:
            continue
        if assignment.scope is None or assignment.scope.strip().lower() == location:
            return True
    return False


class AccessGate:
    """Evaluate role rules for ticket operations."""

    @classmethod
    def check(
        cls,
        actor: Actor | None,
        operation: Operation,
        ticket: Ticket | None = None,
        *,
        tagged: bool = False,
        scope_match: bool = False,
        target_status: TicketStatus | None = None,
        comment_type: CommentType | None = None,
    ) -> AccessDecision:
        if actor is None:
            return AccessDecision.unauthorized()
        if operation is Operation.RATE:
            return cls._check_rating(actor, ticket)
        if actor.role is Role.SUPER_ADMIN:
            return AccessDecision.allow()
        if operation in _TICKET_INDEPENDENT:
            return cls._check_global(actor, operation)
        if ticket is None:
            raise ValueError(f"Operation {operation.value!r} requires a ticket")

        if actor.role is Role.STUDENT:
            return cls._check_student(actor, operation, ticket, target_status, comment_type)
        if actor.role is Role.COMMITTEE:
            return cls._check_committee(actor, operation, ticket, tagged, target_status, comment_type)
        return cls._check_admin(actor, operation, ticket, scope_match, comment_type)

    @staticmethod
    def _check_global(actor: Actor, operation: Operation) -> AccessDecision:
        role = actor.role
        if operation is Operation.DELETE:
            return AccessDecision.deny("Only super admins can delete tickets")
        if operation is Operation.CREATE:
            if role in (Role.STUDENT, Role.COMMITTEE):
                return AccessDecision.allow()
            return AccessDecision.deny("Only students and committee members can create tickets")
        if operation is Operation.VIEW_TAGS:
            if role in (Role.ADMIN, Role.COMMITTEE):
                return AccessDecision.allow()
            return AccessDecision.deny("You do not have permission to view committee tags")
        if role is Role.ADMIN:
            return AccessDecision.allow()
        return AccessDecision.deny("Only admins can manage committee tags")

    @staticmethod
    def _check_student(
        actor: Actor,
        operation: Operation,
        ticket: Ticket,
        target_status: TicketStatus | None,
        comment_type: CommentType | None,
    ) -> AccessDecision:
        if ticket.created_by != actor.user_id:
            return AccessDecision.deny("You can only access your own tickets")

        reopening = target_status is TicketStatus.REOPENED and ticket.is_final
        if operation in (Operation.VIEW, Operation.ESCALATE):
            return AccessDecision.allow()
        if operation is Operation.SET_STATUS:
            if reopening:
                return AccessDecision.allow()
            return AccessDecision.deny("Students can only reopen resolved tickets")
        if operation is Operation.COMMENT:
            if comment_type not in (None, CommentType.STUDENT_VISIBLE):
                return AccessDecision.deny("Students can only add student-visible comments")
            if ticket.status is TicketStatus.AWAITING_STUDENT_RESPONSE or reopening:
                return AccessDecision.allow()
            return AccessDecision.deny("You can only comment while the ticket is awaiting your response")
        return AccessDecision.deny(_ADMIN_ONLY[operation])

    @staticmethod
    def _check_committee(
        actor: Actor,
        operation: Operation,
        ticket: Ticket,
        tagged: bool,
        target_status: TicketStatus | None,
        comment_type: CommentType | None,
    ) -> AccessDecision:
        owns = is_committee_owner(actor, ticket)
        if not owns and not tagged:
            return AccessDecision.deny("This ticket is not tagged to your committee")

        if operation is Operation.VIEW:
            return AccessDecision.allow()
        if operation is Operation.COMMENT:
            if comment_type in (None, CommentType.STUDENT_VISIBLE):
                return AccessDecision.allow()
            return AccessDecision.deny("Committee members can only add student-visible comments")
        if operation is Operation.SET_STATUS:
            if target_status in (TicketStatus.RESOLVED, TicketStatus.CLOSED):
                return AccessDecision.allow()
            if owns and target_status is TicketStatus.REOPENED and ticket.is_final:
                return AccessDecision.allow()
            return AccessDecision.deny("Committee members can only close or resolve tickets")
        if operation is Operation.ESCALATE:
            return AccessDecision.deny("Committee members cannot escalate tickets")
        return AccessDecision.deny(_ADMIN_ONLY[operation])

    @staticmethod
    def _check_admin(
        actor: Actor,
        operation: Operation,
        ticket: Ticket,
        scope_match: bool,
        comment_type: CommentType | None,
    ) -> AccessDecision:
        if ticket.assigned_to != actor.user_id and not scope_match:
            return AccessDecision.deny("This ticket is outside your assigned domain")
        if operation is Operation.COMMENT and comment_type is CommentType.SUPER_ADMIN_NOTE:
            return AccessDecision.deny("Only super admins can add super admin notes")
        return AccessDecision.allow()

    @staticmethod
    def _check_rating(actor: Actor, ticket: Ticket | None) -> AccessDecision:
        if ticket is None:
            raise ValueError("Rating requires a ticket")
        if ticket.created_by != actor.user_id:
            return AccessDecision.deny("You can only rate your own tickets")
        return AccessDecision.allow()
