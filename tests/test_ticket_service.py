from __future__ import annotations

from datetime import timedelta

import pytest

from helpdesk.metrics.definitions import ACCESS_DENIED_TOTAL, AUTO_ESCALATIONS_TOTAL, STATUS_CHANGES_TOTAL
from helpdesk.security.roles import Role
from helpdesk.tickets.errors import (
    AccessDeniedError,
    CommitteeNotFoundError,
    DuplicateTagError,
    StaleTicketError,
    TagNotFoundError,
    TicketNotFoundError,
    TicketValidationError,
    UserNotFoundError,
)
from helpdesk.tickets.metadata import CommentType, TatState, TicketMetadata, TicketRating
from helpdesk.tickets.outbox import (
    TICKET_ESCALATED,
    TICKET_FORWARDED,
    TICKET_REASSIGNED,
    TICKET_STATUS_UPDATED,
    TICKET_TAT_SET,
)
from helpdesk.tickets.state import TicketStatus

from .factories import FIXED_NOW, make_actor


@pytest.fixture
def service(container):
    return container.ticket_service


@pytest.fixture
def actors(users):
    return {
        "student": make_actor(users.student, Role.STUDENT, external_id="student-1"),
        "other_student": make_actor(users.other_student, Role.STUDENT, external_id="student-2"),
        "member": make_actor(users.committee_member, Role.COMMITTEE, external_id="committee-5"),
        "head": make_actor(users.head, Role.COMMITTEE, external_id="head-42"),
        "admin": make_actor(users.admin, Role.ADMIN, external_id="admin-7"),
        "unscoped_admin": make_actor(users.unscoped_admin, Role.ADMIN, external_id="admin-8"),
        "super_admin": make_actor(users.super_admin, Role.SUPER_ADMIN, external_id="super-9"),
    }


@pytest.mark.asyncio
async def test_student_reopens_resolved_ticket(service, actors, create_ticket, fanout, registry):
    await create_ticket(ticket_id=10, status=TicketStatus.RESOLVED)

    ticket = await service.update_ticket(actors["student"], 10, status="reopened")

    assert ticket.status is TicketStatus.REOPENED
    assert ticket.metadata.reopen_count == 1
    assert ticket.metadata.reopened_at == FIXED_NOW
    assert ticket.version == 2
    notice = fanout.status_changed.await_args.args[0]
    assert notice.previous_status is TicketStatus.RESOLVED
    assert notice.new_status is TicketStatus.REOPENED
    assert notice.recipient_email == "student-1@example.edu"
    assert registry.counter(STATUS_CHANGES_TOTAL).value(labels={"status": "reopened"}) == 1


@pytest.mark.asyncio
async def test_repeating_a_status_writes_nothing(service, actors, create_ticket, fanout):
    await create_ticket(ticket_id=15, status=TicketStatus.IN_PROGRESS)

    first = await service.update_ticket(actors["admin"], 15, status="resolved")
    second = await service.update_ticket(actors["admin"], 15, status="RESOLVED")

    assert first.metadata.resolved_at == FIXED_NOW
    assert second.version == first.version
    assert second.metadata == first.metadata
    assert fanout.status_changed.await_count == 1


@pytest.mark.asyncio
async def test_tagged_committee_member_cannot_start_progress(
    service, actors, users, container, create_ticket, registry
):
    await create_ticket(ticket_id=11)
    await service.add_tag(actors["admin"], 11, committee_id=users.committee)

    with pytest.raises(AccessDeniedError) as exc_info:
        await service.update_ticket(actors["member"], 11, status="in_progress")

    assert exc_info.value.status_code == 403
    assert exc_info.value.reason == "Committee members can only close or resolve tickets"
    assert (await container.ticket_repository.get_ticket(11)).status is TicketStatus.OPEN
    assert registry.counter(ACCESS_DENIED_TOTAL).value(labels={"operation": "set_status"}) == 1


@pytest.mark.asyncio
async def test_tagged_committee_member_may_resolve(service, actors, users, create_ticket):
    await create_ticket(ticket_id=16, assigned_to=users.admin)
    await service.add_tag(actors["admin"], 16, committee_id=users.committee)

    ticket = await service.update_ticket(actors["member"], 16, status="resolved")

    assert ticket.status is TicketStatus.RESOLVED
    assert ticket.assigned_to == users.admin


@pytest.mark.asyncio
async def test_admin_forwards_ticket_to_committee_head(service, actors, users, container, create_ticket):
    await create_ticket(ticket_id=12)

    result = await service.forward_ticket(actors["admin"], 12, committee_id=users.committee, reason="Needs warden")

    assert result.head.id == users.head
    assert result.committee.name == "Hostel Committee"
    assert result.ticket.status is TicketStatus.FORWARDED
    assert result.ticket.assigned_to == users.head
    assert result.ticket.metadata.forward_count == 1
    note = result.ticket.metadata.comments[-1]
    assert note.type is CommentType.INTERNAL_NOTE
    assert note.text == "Forwarded to Hostel Committee: Needs warden"

    tags = await container.ticket_repository.list_tags(12)
    assert [tag.committee_id for tag in tags] == [users.committee]
    events = await container.outbox_repository.list_events(event_type=TICKET_FORWARDED)
    assert len(events) == 1
    assert events[0].payload["head_email"] == "head@example.edu"
    assert events[0].payload["committee_name"] == "Hostel Committee"


@pytest.mark.asyncio
@pytest.mark.parametrize("actor_name", ["student", "admin", "super_admin"])
async def test_forwarding_resolved_ticket_fails_for_everyone(service, actors, users, create_ticket, actor_name):
    await create_ticket(ticket_id=17, status=TicketStatus.RESOLVED)

    with pytest.raises(TicketValidationError):
        await service.forward_ticket(actors[actor_name], 17, committee_id=users.committee)


@pytest.mark.asyncio
async def test_forward_requires_existing_committee_with_head(service, actors, container, create_ticket):
    await create_ticket(ticket_id=18)
    headless = await container.directory.create_committee(name="Mess Committee", head_id=None)

    with pytest.raises(CommitteeNotFoundError):
        await service.forward_ticket(actors["admin"], 18, committee_id=999)
    with pytest.raises(TicketValidationError, match="Committee has no head assigned"):
        await service.forward_ticket(actors["admin"], 18, committee_id=headless.id)


@pytest.mark.asyncio
async def test_forward_with_missing_head_user(service, actors, container, create_ticket):
    await create_ticket(ticket_id=19)
    orphan = await container.directory.create_committee(name="Sports Committee", head_id=404)

    with pytest.raises(UserNotFoundError, match="Committee head not found"):
        await service.forward_ticket(actors["admin"], 19, committee_id=orphan.id)


@pytest.mark.asyncio
async def test_student_cannot_forward(service, actors, users, create_ticket):
    await create_ticket(ticket_id=22)

    with pytest.raises(AccessDeniedError, match="Only admins can forward tickets"):
        await service.forward_ticket(actors["student"], 22, committee_id=users.committee)


@pytest.mark.asyncio
async def test_super_admin_deletes_ticket(service, actors, create_ticket):
    await create_ticket(ticket_id=13)

    with pytest.raises(AccessDeniedError, match="Only super admins can delete tickets"):
        await service.delete_ticket(actors["admin"], 13)
    await service.delete_ticket(actors["super_admin"], 13)

    with pytest.raises(TicketNotFoundError):
        await service.get_ticket(actors["super_admin"], 13)
    with pytest.raises(TicketNotFoundError):
        await service.delete_ticket(actors["super_admin"], 13)


@pytest.mark.asyncio
async def test_update_validation(service, actors, create_ticket):
    await create_ticket(ticket_id=23)

    with pytest.raises(TicketValidationError, match="Missing required fields"):
        await service.update_ticket(actors["admin"], 23)
    with pytest.raises(TicketValidationError, match="Invalid status: bogus"):
        await service.update_ticket(actors["admin"], 23, status="bogus")
    with pytest.raises(TicketValidationError, match="Invalid comment type: shout"):
        await service.update_ticket(actors["admin"], 23, comment="hi", comment_type="shout")
    with pytest.raises(TicketNotFoundError):
        await service.update_ticket(actors["admin"], 999, status="resolved")
    with pytest.raises(AccessDeniedError) as exc_info:
        await service.update_ticket(None, 23, status="resolved")
    assert exc_info.value.status_code == 401


@pytest.mark.asyncio
async def test_expected_version_mismatch_is_rejected(service, actors, create_ticket):
    await create_ticket(ticket_id=24)
    await service.update_ticket(actors["admin"], 24, status="in_progress")

    with pytest.raises(StaleTicketError):
        await service.update_ticket(actors["admin"], 24, status="resolved", expected_version=1)

    ticket = await service.update_ticket(actors["admin"], 24, status="resolved", expected_version=2)
    assert ticket.version == 3


@pytest.mark.asyncio
async def test_admin_comment_defaults_to_internal_note(service, actors, users, create_ticket, fanout):
    await create_ticket(ticket_id=25, status=TicketStatus.IN_PROGRESS, assigned_to=users.unscoped_admin)

    ticket = await service.update_ticket(actors["unscoped_admin"], 25, comment="Checked with plumber")

    assert ticket.status is TicketStatus.IN_PROGRESS
    assert ticket.assigned_to == users.unscoped_admin
    assert ticket.metadata.comments[-1].type is CommentType.INTERNAL_NOTE
    assert ticket.metadata.comments_visible_to(Role.STUDENT) == []
    fanout.comment_added.assert_awaited_once()
    fanout.status_changed.assert_not_awaited()


@pytest.mark.asyncio
async def test_student_comments_while_awaiting_response(service, actors, create_ticket):
    await create_ticket(ticket_id=26, status=TicketStatus.AWAITING_STUDENT_RESPONSE)

    ticket = await service.update_ticket(actors["student"], 26, comment="Room 101, second floor")

    assert ticket.status is TicketStatus.AWAITING_STUDENT_RESPONSE
    assert ticket.metadata.comments[-1].type is CommentType.STUDENT_VISIBLE

    with pytest.raises(AccessDeniedError):
        await service.update_ticket(actors["other_student"], 26, comment="Me too")


@pytest.mark.asyncio
async def test_notification_failures_do_not_fail_the_update(service, actors, create_ticket, fanout):
    await create_ticket(ticket_id=27, status=TicketStatus.IN_PROGRESS)
    fanout.status_changed.side_effect = RuntimeError("smtp down")

    ticket = await service.update_ticket(actors["admin"], 27, status="resolved")

    assert ticket.status is TicketStatus.RESOLVED


@pytest.mark.asyncio
async def test_resolving_last_open_ticket_archives_group(service, actors, container, create_ticket):
    group_id = await container.ticket_repository.create_group("Block A water")
    await create_ticket(ticket_id=28, group_id=group_id, status=TicketStatus.CLOSED)
    await create_ticket(ticket_id=29, group_id=group_id, status=TicketStatus.IN_PROGRESS)

    await service.update_ticket(actors["admin"], 29, status="resolved")

    assert await container.ticket_repository.is_group_archived(group_id)


@pytest.mark.asyncio
async def test_list_tickets_filters_by_visibility(service, actors, users, create_ticket):
    await create_ticket(ticket_id=50, created_by=users.student)
    await create_ticket(ticket_id=51, created_by=users.other_student, status=TicketStatus.RESOLVED)
    await create_ticket(ticket_id=52, created_by=users.other_student, category="Mess", location=None)
    await create_ticket(ticket_id=53, created_by=users.other_student, category="Mess", assigned_to=users.unscoped_admin)
    await service.add_tag(actors["admin"], 52, committee_id=users.committee)

    async def visible(name, **kwargs):
        return sorted(ticket.id for ticket in await service.list_tickets(actors[name], **kwargs))

    assert await visible("student") == [50]
    assert await visible("member") == [52]
    assert await visible("head") == [52]
    assert await visible("admin") == [50, 51]
    assert await visible("unscoped_admin") == [53]
    assert await visible("super_admin") == [50, 51, 52, 53]
    assert await visible("super_admin", status=TicketStatus.RESOLVED) == [51]


@pytest.mark.asyncio
async def test_create_ticket_sets_tat(service, actors):
    ticket = await service.create_ticket(
        actors["student"], title=" Leaking tap ", description="Bathroom tap leaks", category="Hostel", location="Block A"
    )

    assert ticket.status is TicketStatus.OPEN
    assert ticket.title == "Leaking tap"
    assert ticket.resolution_due_at == FIXED_NOW + timedelta(hours=48)
    assert ticket.metadata.tat.due_at == FIXED_NOW + timedelta(hours=48)
    assert ticket.metadata.tat.set_by == "system"


@pytest.mark.asyncio
async def test_committee_tickets_default_category(service, actors):
    ticket = await service.create_ticket(actors["member"], title="Event venue", description="Book hall", category=None)

    assert ticket.category == "Committee"
    assert await service.get_ticket(actors["member"], ticket.id) == ticket


@pytest.mark.asyncio
async def test_admins_cannot_create_tickets(service, actors):
    with pytest.raises(AccessDeniedError):
        await service.create_ticket(actors["admin"], title="x", description="y", category="Hostel")
    with pytest.raises(TicketValidationError):
        await service.create_ticket(actors["student"], title="x", description="y", category="  ")


@pytest.mark.asyncio
async def test_student_escalates_own_ticket(service, actors, users, container, create_ticket):
    await create_ticket(ticket_id=60, status=TicketStatus.IN_PROGRESS)

    ticket = await service.escalate_ticket(actors["student"], 60, reason="No response for a week")

    assert ticket.status is TicketStatus.ESCALATED
    assert ticket.escalation_level == 1
    assert ticket.last_escalation_at == FIXED_NOW
    assert ticket.metadata.comments[-1].type is CommentType.STUDENT_VISIBLE
    events = await container.outbox_repository.list_events(event_type=TICKET_ESCALATED)
    assert events[0].payload["escalation_level"] == 1

    await service.add_tag(actors["admin"], 60, committee_id=users.committee)
    with pytest.raises(AccessDeniedError, match="Committee members cannot escalate tickets"):
        await service.escalate_ticket(actors["head"], 60)


@pytest.mark.asyncio
async def test_committee_tag_management(service, actors, users, create_ticket):
    await create_ticket(ticket_id=70)

    with pytest.raises(AccessDeniedError):
        await service.list_tags(actors["student"], 70)
    with pytest.raises(AccessDeniedError):
        await service.add_tag(actors["member"], 70, committee_id=users.committee)

    tag = await service.add_tag(actors["admin"], 70, committee_id=users.committee, reason="Hostel matter")
    assert tag.committee.head_id == users.head
    assert [t.id for t in await service.list_tags(actors["member"], 70)] == [tag.id]

    with pytest.raises(DuplicateTagError):
        await service.add_tag(actors["admin"], 70, committee_id=users.committee)
    with pytest.raises(CommitteeNotFoundError):
        await service.add_tag(actors["admin"], 70, committee_id=999)
    with pytest.raises(TicketNotFoundError):
        await service.list_tags(actors["admin"], 999)

    with pytest.raises(TicketValidationError, match="tagId or committeeId is required"):
        await service.remove_tag(actors["admin"], 70)
    await service.remove_tag(actors["admin"], 70, committee_id=users.committee)
    with pytest.raises(TagNotFoundError):
        await service.remove_tag(actors["admin"], 70, tag_id=tag.id)


@pytest.mark.asyncio
async def test_status_change_writes_outbox_event(service, actors, container, create_ticket):
    await create_ticket(ticket_id=80, status=TicketStatus.IN_PROGRESS)

    await service.update_ticket(actors["admin"], 80, status="resolved")
    await service.update_ticket(actors["admin"], 80, status="resolved")
    await service.update_ticket(actors["admin"], 80, comment="Replaced the washer")

    [event] = await container.outbox_repository.list_events(event_type=TICKET_STATUS_UPDATED)
    assert event.payload["ticket_id"] == 80
    assert (event.payload["previous_status"], event.payload["status"]) == ("in_progress", "resolved")
    assert event.payload["changed_by"] == actors["admin"].user_id


@pytest.mark.asyncio
async def test_admin_sets_tat_and_takes_ticket(service, actors, container, create_ticket):
    await create_ticket(ticket_id=81)

    ticket = await service.set_tat(actors["admin"], 81, tat="2 days", mark_in_progress=True)

    assert ticket.status is TicketStatus.IN_PROGRESS
    assert ticket.assigned_to == actors["admin"].user_id
    assert ticket.resolution_due_at == FIXED_NOW + timedelta(days=2)
    assert ticket.metadata.tat.label == "2 days"
    [event] = await container.outbox_repository.list_events(event_type=TICKET_TAT_SET)
    assert event.payload["extended"] is False
    assert event.payload["in_progress"] is True
    assert event.payload["recipient_email"] == "student-1@example.edu"
    assert len(await container.outbox_repository.list_events(event_type=TICKET_STATUS_UPDATED)) == 1

    extended = await service.set_tat(actors["admin"], 81, tat="1 week")

    assert extended.resolution_due_at == FIXED_NOW + timedelta(weeks=1)
    assert [e.label for e in extended.metadata.tat.extensions] == ["1 week"]
    events = await container.outbox_repository.list_events(event_type=TICKET_TAT_SET)
    assert events[-1].payload["extended"] is True


@pytest.mark.asyncio
async def test_set_tat_validation_and_access(service, actors, create_ticket):
    await create_ticket(ticket_id=82)
    await create_ticket(ticket_id=83, status=TicketStatus.RESOLVED)

    with pytest.raises(TicketValidationError, match="Invalid TAT: whenever"):
        await service.set_tat(actors["admin"], 82, tat="whenever")
    with pytest.raises(AccessDeniedError, match="Only admins can set TAT"):
        await service.set_tat(actors["student"], 82, tat="1 day")
    with pytest.raises(AccessDeniedError, match="outside your assigned domain"):
        await service.set_tat(actors["unscoped_admin"], 82, tat="1 day")
    with pytest.raises(TicketValidationError, match="already resolved or closed"):
        await service.set_tat(actors["admin"], 83, tat="1 day")


@pytest.mark.asyncio
async def test_student_rates_resolved_ticket_once(service, actors, create_ticket):
    await create_ticket(ticket_id=84, status=TicketStatus.RESOLVED)

    ticket = await service.rate_ticket(actors["student"], 84, rating=4, feedback=" Quick fix ")

    assert ticket.metadata.rating == TicketRating(score=4, rated_at=FIXED_NOW, feedback="Quick fix")
    assert ticket.status is TicketStatus.RESOLVED
    with pytest.raises(TicketValidationError, match="already been rated"):
        await service.rate_ticket(actors["student"], 84, rating=5)


@pytest.mark.asyncio
async def test_rating_rules(service, actors, create_ticket):
    await create_ticket(ticket_id=85)
    await create_ticket(ticket_id=86, status=TicketStatus.CLOSED)

    with pytest.raises(TicketValidationError, match="between 1 and 5"):
        await service.rate_ticket(actors["student"], 86, rating=6)
    with pytest.raises(TicketValidationError, match="closed or resolved"):
        await service.rate_ticket(actors["student"], 85, rating=3)
    with pytest.raises(AccessDeniedError, match="only rate your own tickets"):
        await service.rate_ticket(actors["other_student"], 86, rating=3)


@pytest.mark.asyncio
async def test_reassign_checks_assignee_scope(service, actors, users, container, create_ticket):
    await create_ticket(ticket_id=87, assigned_to=users.admin)

    with pytest.raises(UserNotFoundError, match="Assignee not found"):
        await service.reassign_ticket(actors["admin"], 87, assignee_id=404)
    with pytest.raises(TicketValidationError, match="only be assigned to admins"):
        await service.reassign_ticket(actors["admin"], 87, assignee_id=users.student)
    with pytest.raises(TicketValidationError, match="does not have a domain assignment"):
        await service.reassign_ticket(actors["admin"], 87, assignee_id=users.unscoped_admin)

    await container.directory.add_admin_assignment(users.unscoped_admin, "Mess")
    with pytest.raises(TicketValidationError, match="not authorized for this ticket's domain"):
        await service.reassign_ticket(actors["admin"], 87, assignee_id=users.unscoped_admin)

    unchanged = await service.reassign_ticket(actors["admin"], 87, assignee_id=users.admin)
    assert unchanged.version == 1

    ticket = await service.reassign_ticket(actors["admin"], 87, assignee_id=users.super_admin)

    assert ticket.assigned_to == users.super_admin
    [event] = await container.outbox_repository.list_events(event_type=TICKET_REASSIGNED)
    assert event.payload["previous_assignee"] == users.admin
    assert event.payload["assignee_id"] == users.super_admin


@pytest.mark.asyncio
async def test_super_admin_may_unassign(service, actors, users, create_ticket):
    await create_ticket(ticket_id=88, assigned_to=users.admin)

    ticket = await service.reassign_ticket(actors["super_admin"], 88, assignee_id=None)

    assert ticket.assigned_to is None
    with pytest.raises(AccessDeniedError, match="Only admins can reassign tickets"):
        await service.reassign_ticket(actors["student"], 88, assignee_id=users.admin)


@pytest.mark.asyncio
async def test_auto_escalate_overdue_tickets(service, users, container, create_ticket, registry):
    overdue = FIXED_NOW - timedelta(hours=1)
    await create_ticket(ticket_id=90, resolution_due_at=overdue)
    await create_ticket(ticket_id=91)
    await create_ticket(ticket_id=92, status=TicketStatus.RESOLVED, resolution_due_at=overdue)
    paused = TicketMetadata(tat=TatState(due_at=overdue, pause_started_at=FIXED_NOW - timedelta(hours=2)))
    await create_ticket(
        ticket_id=93, status=TicketStatus.AWAITING_STUDENT_RESPONSE, resolution_due_at=overdue, metadata=paused
    )

    result = await service.auto_escalate()

    assert (result.escalated, result.errors) == ([90], [])
    ticket = await container.ticket_repository.get_ticket(90)
    assert ticket.status is TicketStatus.ESCALATED
    assert ticket.escalation_level == 1
    assert ticket.assigned_to == users.super_admin
    assert ticket.metadata.comments[-1].text == "Auto-escalated: SLA breach (resolution due date passed)"
    assert ticket.metadata.comments[-1].type is CommentType.INTERNAL_NOTE
    [event] = await container.outbox_repository.list_events(event_type=TICKET_ESCALATED)
    assert event.payload["automatic"] is True
    assert event.payload["rule"] == "overdue"
    assert registry.counter(AUTO_ESCALATIONS_TOTAL).value(labels={"rule": "overdue"}) == 1

    again = await service.auto_escalate()
    assert again.escalated == []


@pytest.mark.asyncio
async def test_auto_escalate_keeps_going_after_a_failure(service, create_ticket, container, monkeypatch):
    overdue = FIXED_NOW - timedelta(hours=1)
    await create_ticket(ticket_id=94, resolution_due_at=overdue)
    await create_ticket(ticket_id=95, resolution_due_at=overdue)
    save_changes = container.ticket_repository.save_changes

    async def flaky_save(ticket_id, *args, **kwargs):
        if ticket_id == 94:
            raise RuntimeError("database hiccup")
        return await save_changes(ticket_id, *args, **kwargs)

    monkeypatch.setattr(container.ticket_repository, "save_changes", flaky_save)

    result = await service.auto_escalate()

    assert (result.escalated, result.errors) == ([95], [94])


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "call",
    [
        lambda service: service.create_ticket(None, title="x", description="y", category="Hostel"),
        lambda service: service.delete_ticket(None, 10),
        lambda service: service.list_tags(None, 10),
        lambda service: service.add_tag(None, 10, committee_id=3),
        lambda service: service.remove_tag(None, 10, committee_id=3),
        lambda service: service.set_tat(None, 10, tat="1 day"),
        lambda service: service.rate_ticket(None, 10, rating=5),
        lambda service: service.reassign_ticket(None, 10, assignee_id=None),
    ],
)
async def test_anonymous_calls_are_unauthorized(service, users, create_ticket, call):
    await create_ticket(ticket_id=10)

    with pytest.raises(AccessDeniedError) as exc_info:
        await call(service)

    assert exc_info.value.status_code == 401
