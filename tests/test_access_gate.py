from __future__ import annotations

import pytest

from helpdesk.security.roles import Role
from helpdesk.tickets.access import AccessGate, Operation, is_committee_owner, matches_scope
from helpdesk.tickets.errors import AccessDeniedError
from helpdesk.tickets.metadata import CommentType
from helpdesk.tickets.models import AdminAssignment
from helpdesk.tickets.state import TicketStatus

from .factories import make_actor, make_ticket

STUDENT = make_actor(1, Role.STUDENT)
OTHER_STUDENT = make_actor(2, Role.STUDENT)
COMMITTEE = make_actor(5, Role.COMMITTEE)
ADMIN = make_actor(7, Role.ADMIN)
SUPER_ADMIN = make_actor(9, Role.SUPER_ADMIN)


def test_missing_actor_is_unauthorized():
    decision = AccessGate.check(None, Operation.VIEW, make_ticket())

    assert not decision.allowed
    assert decision.unauthenticated
    with pytest.raises(AccessDeniedError) as exc_info:
        decision.raise_for_denial()
    assert exc_info.value.status_code == 401


@pytest.mark.parametrize("operation", [operation for operation in Operation if operation is not Operation.RATE])
def test_super_admin_is_allowed_everything(operation):
    assert AccessGate.check(SUPER_ADMIN, operation, make_ticket(status=TicketStatus.CLOSED)).allowed


@pytest.mark.parametrize("actor", [STUDENT, COMMITTEE, ADMIN])
def test_only_super_admin_may_delete(actor):
    decision = AccessGate.check(actor, Operation.DELETE)

    assert not decision.allowed
    assert decision.reason == "Only super admins can delete tickets"


@pytest.mark.parametrize(
    ("actor", "allowed"),
    [(STUDENT, True), (COMMITTEE, True), (ADMIN, False)],
)
def test_create_is_limited_to_students_and_committee(actor, allowed):
    assert AccessGate.check(actor, Operation.CREATE).allowed is allowed


@pytest.mark.parametrize(
    ("actor", "view", "manage"),
    [(STUDENT, False, False), (COMMITTEE, True, False), (ADMIN, True, True)],
)
def test_committee_tag_permissions(actor, view, manage):
    assert AccessGate.check(actor, Operation.VIEW_TAGS).allowed is view
    assert AccessGate.check(actor, Operation.MANAGE_TAGS).allowed is manage


def test_ticket_bound_operation_requires_ticket():
    with pytest.raises(ValueError):
        AccessGate.check(STUDENT, Operation.VIEW)


def test_student_cannot_touch_someone_elses_ticket():
    decision = AccessGate.check(OTHER_STUDENT, Operation.VIEW, make_ticket(created_by=1))

    assert not decision.allowed
    assert decision.reason == "You can only access your own tickets"


@pytest.mark.parametrize("status", [TicketStatus.RESOLVED, TicketStatus.CLOSED])
def test_student_may_reopen_final_ticket(status):
    ticket = make_ticket(status=status)

    decision = AccessGate.check(STUDENT, Operation.SET_STATUS, ticket, target_status=TicketStatus.REOPENED)

    assert decision.allowed


@pytest.mark.parametrize(
    ("status", "target"),
    [
        (TicketStatus.OPEN, TicketStatus.REOPENED),
        (TicketStatus.RESOLVED, TicketStatus.CLOSED),
        (TicketStatus.OPEN, TicketStatus.RESOLVED),
    ],
)
def test_student_cannot_set_other_statuses(status, target):
    decision = AccessGate.check(STUDENT, Operation.SET_STATUS, make_ticket(status=status), target_status=target)

    assert not decision.allowed
    assert decision.reason == "Students can only reopen resolved tickets"


def test_student_comment_only_while_awaiting_response():
    awaiting = make_ticket(status=TicketStatus.AWAITING_STUDENT_RESPONSE)
    in_progress = make_ticket(status=TicketStatus.IN_PROGRESS)

    assert AccessGate.check(STUDENT, Operation.COMMENT, awaiting, comment_type=CommentType.STUDENT_VISIBLE).allowed
    denied = AccessGate.check(STUDENT, Operation.COMMENT, in_progress, comment_type=CommentType.STUDENT_VISIBLE)
    assert denied.reason == "You can only comment while the ticket is awaiting your response"


def test_student_may_comment_alongside_reopen():
    ticket = make_ticket(status=TicketStatus.RESOLVED)

    decision = AccessGate.check(
        STUDENT,
        Operation.COMMENT,
        ticket,
        target_status=TicketStatus.REOPENED,
        comment_type=CommentType.STUDENT_VISIBLE,
    )

    assert decision.allowed


def test_student_cannot_leave_internal_notes():
    ticket = make_ticket(status=TicketStatus.AWAITING_STUDENT_RESPONSE)

    decision = AccessGate.check(STUDENT, Operation.COMMENT, ticket, comment_type=CommentType.INTERNAL_NOTE)

    assert decision.reason == "Students can only add student-visible comments"


def test_student_cannot_forward():
    decision = AccessGate.check(STUDENT, Operation.FORWARD, make_ticket())

    assert decision.reason == "Only admins can forward tickets"


def test_committee_needs_tag_or_ownership():
    ticket = make_ticket(created_by=1)

    assert AccessGate.check(COMMITTEE, Operation.VIEW, ticket).reason == "This ticket is not tagged to your committee"
    assert AccessGate.check(COMMITTEE, Operation.VIEW, ticket, tagged=True).allowed


def test_committee_owns_tickets_it_filed_under_committee_category():
    ticket = make_ticket(created_by=COMMITTEE.user_id, category="Committee", status=TicketStatus.RESOLVED)

    assert is_committee_owner(COMMITTEE, ticket)
    assert AccessGate.check(COMMITTEE, Operation.VIEW, ticket).allowed
    assert AccessGate.check(
        COMMITTEE, Operation.SET_STATUS, ticket, target_status=TicketStatus.REOPENED
    ).allowed


@pytest.mark.parametrize(
    ("target", "allowed"),
    [
        (TicketStatus.RESOLVED, True),
        (TicketStatus.CLOSED, True),
        (TicketStatus.IN_PROGRESS, False),
        (TicketStatus.FORWARDED, False),
    ],
)
def test_tagged_committee_may_only_close_or_resolve(target, allowed):
    decision = AccessGate.check(COMMITTEE, Operation.SET_STATUS, make_ticket(), tagged=True, target_status=target)

    assert decision.allowed is allowed
    if not allowed:
        assert decision.reason == "Committee members can only close or resolve tickets"


def test_committee_comments_must_be_student_visible():
    ticket = make_ticket()

    assert AccessGate.check(
        COMMITTEE, Operation.COMMENT, ticket, tagged=True, comment_type=CommentType.STUDENT_VISIBLE
    ).allowed
    denied = AccessGate.check(COMMITTEE, Operation.COMMENT, ticket, tagged=True, comment_type=CommentType.INTERNAL_NOTE)
    assert denied.reason == "Committee members can only add student-visible comments"


def test_committee_cannot_escalate_or_forward():
    ticket = make_ticket()

    assert AccessGate.check(COMMITTEE, Operation.ESCALATE, ticket, tagged=True).reason == (
        "Committee members cannot escalate tickets"
    )
    assert not AccessGate.check(COMMITTEE, Operation.FORWARD, ticket, tagged=True).allowed


def test_admin_allowed_when_assigned_or_in_scope():
    assigned = make_ticket(assigned_to=ADMIN.user_id)
    unassigned = make_ticket(assigned_to=None)

    assert AccessGate.check(ADMIN, Operation.FORWARD, assigned).allowed
    assert AccessGate.check(ADMIN, Operation.FORWARD, unassigned, scope_match=True).allowed
    denied = AccessGate.check(ADMIN, Operation.FORWARD, unassigned)
    assert denied.reason == "This ticket is outside your assigned domain"


def test_admin_cannot_add_super_admin_notes():
    ticket = make_ticket(assigned_to=ADMIN.user_id)

    decision = AccessGate.check(ADMIN, Operation.COMMENT, ticket, comment_type=CommentType.SUPER_ADMIN_NOTE)

    assert decision.reason == "Only super admins can add super admin notes"


def test_scope_matching_is_case_insensitive():
    ticket = make_ticket(category="Hostel", location="Block A")

    assert matches_scope([AdminAssignment(user_id=7, domain="hostel")], ticket)
    assert matches_scope([AdminAssignment(user_id=7, domain="HOSTEL", scope="block a")], ticket)
    assert not matches_scope([AdminAssignment(user_id=7, domain="Hostel", scope="Block B")], ticket)
    assert not matches_scope([AdminAssignment(user_id=7, domain="Mess")], ticket)
    assert not matches_scope([], ticket)


@pytest.mark.parametrize("operation", [Operation.SET_TAT, Operation.REASSIGN])
def test_tat_and_reassign_are_admin_work(operation):
    ticket = make_ticket(created_by=STUDENT.user_id)
    expected = "Only admins can set TAT" if operation is Operation.SET_TAT else "Only admins can reassign tickets"

    assert AccessGate.check(STUDENT, operation, ticket).reason == expected
    assert AccessGate.check(COMMITTEE, operation, ticket, tagged=True).reason == expected
    assert AccessGate.check(ADMIN, operation, ticket, scope_match=True).allowed
    assert AccessGate.check(ADMIN, operation, ticket).reason == "This ticket is outside your assigned domain"


@pytest.mark.parametrize(
    ("actor", "allowed"),
    [(STUDENT, True), (OTHER_STUDENT, False), (ADMIN, False), (SUPER_ADMIN, False)],
)
def test_only_the_creator_may_rate(actor, allowed):
    ticket = make_ticket(created_by=STUDENT.user_id, status=TicketStatus.RESOLVED, assigned_to=ADMIN.user_id)

    decision = AccessGate.check(actor, Operation.RATE, ticket)

    assert decision.allowed is allowed
    if not allowed:
        assert decision.reason == "You can only rate your own tickets"
