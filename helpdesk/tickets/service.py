from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from opentelemetry import trace

from helpdesk.metrics import MetricsRegistry, metrics_registry, track_duration
from helpdesk.metrics.definitions import (
    ACCESS_DENIED_TOTAL,
    AUTO_ESCALATIONS_TOTAL,
    STATUS_CHANGES_TOTAL,
    TICKET_UPDATE_DURATION,
)
from helpdesk.security.roles import Actor, Role

from .access import AccessGate, Operation, is_committee_owner, matches_scope
from .directory import DirectoryRepository
from .errors import (
    AccessDeniedError,
    CommitteeNotFoundError,
    StaleTicketError,
    TagNotFoundError,
    TicketNotFoundError,
    TicketValidationError,
    UserNotFoundError,
)
from .escalation import EscalationPolicy, EscalationTrigger
from .metadata import Comment, CommentType, TatState, TicketMetadata, TicketRating, new_comment, parse_tat
from .models import (
    Committee,
    CommitteeTag,
    OutboxDraft,
    TagDraft,
    Ticket,
    TicketDraft,
    UserRecord,
)
from .notifications import CommentNotice, NotificationFanout, StatusChangeNotice
from .outbox import TICKET_ESCALATED, TICKET_FORWARDED, TICKET_REASSIGNED, TICKET_STATUS_UPDATED, TICKET_TAT_SET
from .repository import TicketRepository
from .state import TicketStatus, parse_status
from .transitions import TransitionOutcome, TransitionResolver

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(slots=True)
class ForwardResult:
    ticket: Ticket
    committee: Committee
    head: UserRecord


@dataclass(slots=True)
class AutoEscalationResult:
    escalated: list[int] = field(default_factory=list)
    errors: list[int] = field(default_factory=list)


@dataclass(slots=True)
class _Relationship:
    tagged: bool = False
    scope_match: bool = False


class TicketService:
    """High level orchestration for the ticket lifecycle.

    Every mutating operation follows the same order: authenticate, load the
    ticket, validate, authorise through :class:`AccessGate`, resolve the new
    state, commit it in a single write, then run best-effort follow-ups
    (notifications and group archiving) that never affect the result.
    """

    def __init__(
        self,
        repository: TicketRepository,
        directory: DirectoryRepository,
        *,
        fanout: NotificationFanout,
        resolver: TransitionResolver | None = None,
        gate: type[AccessGate] = AccessGate,
        registry: MetricsRegistry | None = None,
        resolution_tat: timedelta = timedelta(hours=48),
        escalation_policy: EscalationPolicy | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repository = repository
        self._directory = directory
        self._fanout = fanout
        self._resolver = resolver or TransitionResolver()
        self._gate = gate
        self._resolution_tat = resolution_tat
        self._escalation_policy = escalation_policy or EscalationPolicy()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        registry = registry or metrics_registry
        self._denied = registry.counter(ACCESS_DENIED_TOTAL, label_names=("operation",))
        self._status_changes = registry.counter(STATUS_CHANGES_TOTAL, label_names=("status",))
        self._duration = registry.distribution(TICKET_UPDATE_DURATION, label_names=("operation",))
        self._auto_escalations = registry.counter(AUTO_ESCALATIONS_TOTAL, label_names=("rule",))

    async def ensure_schema(self) -> None:
        await self._repository.ensure_schema()
        await self._repository.seed_statuses()

    def _authorize(
        self,
        actor: Actor,
        operation: Operation,
        ticket: Ticket | None = None,
        relationship: _Relationship | None = None,
        **kwargs: Any,
    ) -> None:
        relationship = relationship or _Relationship()
        decision = self._gate.check(
            actor,
            operation,
            ticket,
            tagged=relationship.tagged,
            scope_match=relationship.scope_match,
            **kwargs,
        )
        if not decision.allowed:
            self._denied.inc(labels={"operation": operation.value})
            logger.info(
                "Denied %s on ticket %s for user %s: %s",
                operation.value,
                ticket.id if ticket else "-",
                actor.user_id,
                decision.reason,
            )
            decision.raise_for_denial()

    @staticmethod
    def _require_actor(actor: Actor | None) -> Actor:
        if actor is None:
            raise AccessDeniedError("Unauthorized", unauthenticated=True)
        return actor

    async def _relationship(self, actor: Actor, ticket: Ticket) -> _Relationship:
        if actor.role is Role.COMMITTEE and not is_committee_owner(actor, ticket):
            return _Relationship(tagged=await self._repository.is_tagged_to_user(ticket.id, actor.user_id))
        if actor.role is Role.ADMIN and ticket.assigned_to != actor.user_id:
            assignments = await self._directory.list_admin_assignments(actor.user_id)
            return _Relationship(scope_match=matches_scope(assignments, ticket))
        return _Relationship()

    async def _load(self, ticket_id: int) -> Ticket:
        ticket = await self._repository.get_ticket(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(ticket_id)
        return ticket

    async def get_ticket(self, actor: Actor | None, ticket_id: int) -> Ticket:
        actor = self._require_actor(actor)
        ticket = await self._load(ticket_id)
        self._authorize(actor, Operation.VIEW, ticket, await self._relationship(actor, ticket))
        return ticket

    async def list_tickets(self, actor: Actor | None, *, status: TicketStatus | None = None) -> list[Ticket]:
        actor = self._require_actor(actor)
        return await self._repository.list_tickets(viewer=actor, status=status)

    async def create_ticket(
        self,
        actor: Actor | None,
        *,
        title: str,
        description: str,
        category: str | None,
        subcategory: str | None = None,
        location: str | None = None,
    ) -> Ticket:
        actor = self._require_actor(actor)
        self._authorize(actor, Operation.CREATE)
        if actor.role is Role.COMMITTEE and not category:
            category = "Committee"
        if not category or not category.strip():
            raise TicketValidationError("Missing required fields")
        now = self._clock()
        due_at = now + self._resolution_tat
        draft = TicketDraft(
            title=title.strip(),
            description=description,
            category=category.strip(),
            subcategory=subcategory,
            location=location,
            created_by=actor.user_id,
            resolution_due_at=due_at,
            metadata=TicketMetadata(tat=TatState(due_at=due_at, set_at=now, set_by="system")),
        )
        ticket = await self._repository.create_ticket(draft)
        logger.info("Ticket %s created by user %s in %s", ticket.id, actor.user_id, ticket.category)
        return ticket

    async def update_ticket(
        self,
        actor: Actor | None,
        ticket_id: int,
        *,
        status: str | None = None,
        comment: str | None = None,
        comment_type: str | None = None,
        expected_version: int | None = None,
    ) -> Ticket:
        """Apply a status change and/or append a comment.

        Setting the status a ticket already has writes nothing. A comment
        never changes the status and, on its own, never reassigns the ticket.
        """

        actor = self._require_actor(actor)
        comment_text = comment.strip() if comment else ""
        if status is None and not comment_text:
            raise TicketValidationError("Missing required fields")

        target: TicketStatus | None = None
        if status is not None:
            target = parse_status(status)
            if target is None:
                raise TicketValidationError(f"Invalid status: {status}")

        kind: CommentType | None = None
        if comment_text:
            kind = self._comment_type(actor, comment_type)

        with tracer.start_as_current_span("tickets.update") as span, track_duration(
            self._duration, labels={"operation": "update"}
        ):
            span.set_attribute("ticket.id", ticket_id)
            ticket = await self._load(ticket_id)
            if expected_version is not None and expected_version != ticket.version:
                raise StaleTicketError(ticket_id, expected_version, ticket.version)

            relationship = await self._relationship(actor, ticket)
            if target is not None:
                self._authorize(actor, Operation.SET_STATUS, ticket, relationship, target_status=target)
            if kind is not None:
                self._authorize(
                    actor, Operation.COMMENT, ticket, relationship, target_status=target, comment_type=kind
                )

            now = self._clock()
            if target is not None:
                outcome = self._resolver.apply(ticket, target, actor, now=now)
            else:
                outcome = TransitionOutcome.unchanged(ticket)

            metadata = outcome.metadata
            added = None
            if kind is not None:
                added = new_comment(
                    comment_text, author=actor.display_name, role=actor.role, comment_type=kind, now=now
                )
                metadata = metadata.with_comment(added)

            if not outcome.changed and added is None:
                logger.debug("Ticket %s already %s; nothing to write", ticket.id, ticket.status.value)
                return ticket

            events = [self._status_event(ticket, outcome, actor)] if outcome.changed else []
            updated = await self._repository.save_changes(
                ticket.id, outcome.to_changes(metadata), expected_version=expected_version, events=events
            )

        if outcome.changed:
            self._status_changes.inc(labels={"status": outcome.status.value})
            logger.info(
                "Ticket %s moved %s -> %s by user %s",
                updated.id,
                outcome.previous_status.value,
                outcome.status.value,
                actor.user_id,
            )
            await self._after_status_change(actor, updated, outcome.previous_status)
        if added is not None:
            await self._after_comment(actor, updated, added)
        return updated

    async def forward_ticket(
        self,
        actor: Actor | None,
        ticket_id: int,
        *,
        committee_id: int,
        reason: str | None = None,
    ) -> ForwardResult:
        actor = self._require_actor(actor)
        with tracer.start_as_current_span("tickets.forward") as span, track_duration(
            self._duration, labels={"operation": "forward"}
        ):
            span.set_attribute("ticket.id", ticket_id)
            ticket = await self._load(ticket_id)
            if ticket.is_final:
                raise TicketValidationError("Cannot forward a ticket that is already resolved or closed")
            self._authorize(actor, Operation.FORWARD, ticket, await self._relationship(actor, ticket))

            committee = await self._directory.get_committee(committee_id)
            if committee is None:
                raise CommitteeNotFoundError(committee_id)
            if committee.head_id is None:
                raise TicketValidationError("Committee has no head assigned")
            head = await self._directory.get_user(committee.head_id)
            if head is None:
                raise UserNotFoundError("Committee head not found")

            now = self._clock()
            outcome = self._resolver.forward(ticket, head_id=head.id, now=now)
            metadata = outcome.metadata
            note = f"Forwarded to {committee.name}"
            if reason:
                note += f": {reason}"
            metadata = metadata.with_comment(
                new_comment(note, author=actor.display_name, role=actor.role, comment_type=CommentType.INTERNAL_NOTE, now=now)
            )
            event = OutboxDraft(
                TICKET_FORWARDED,
                {
                    "ticket_id": ticket.id,
                    "title": ticket.title,
                    "category": ticket.category,
                    "committee_id": committee.id,
                    "committee_name": committee.name,
                    "head_id": head.id,
                    "head_email": head.email,
                    "forwarded_by": actor.user_id,
                    "reason": reason,
                    "forward_count": metadata.forward_count,
                    "chat_thread": metadata.chat_thread.to_dict() if metadata.chat_thread else None,
                },
            )
            updated = await self._repository.save_changes(
                ticket.id,
                outcome.to_changes(metadata),
                events=[event],
                tag=TagDraft(committee_id=committee.id, tagged_by=actor.user_id, reason=reason),
            )

        self._status_changes.inc(labels={"status": TicketStatus.FORWARDED.value})
        logger.info("Ticket %s forwarded to committee %s by user %s", updated.id, committee.id, actor.user_id)
        return ForwardResult(ticket=updated, committee=committee, head=head)

    async def escalate_ticket(self, actor: Actor | None, ticket_id: int, *, reason: str | None = None) -> Ticket:
        actor = self._require_actor(actor)
        with tracer.start_as_current_span("tickets.escalate") as span, track_duration(
            self._duration, labels={"operation": "escalate"}
        ):
            span.set_attribute("ticket.id", ticket_id)
            ticket = await self._load(ticket_id)
            if ticket.is_final:
                raise TicketValidationError("Cannot escalate a ticket that is already resolved or closed")
            self._authorize(actor, Operation.ESCALATE, ticket, await self._relationship(actor, ticket))

            now = self._clock()
            outcome = self._resolver.escalate(ticket, now=now)
            metadata = outcome.metadata
            if reason:
                kind = CommentType.STUDENT_VISIBLE if actor.role is Role.STUDENT else CommentType.INTERNAL_NOTE
                metadata = metadata.with_comment(
                    new_comment(f"Escalated: {reason}", author=actor.display_name, role=actor.role, comment_type=kind, now=now)
                )
            event = OutboxDraft(
                TICKET_ESCALATED,
                {
                    "ticket_id": ticket.id,
                    "title": ticket.title,
                    "category": ticket.category,
                    "escalation_level": outcome.escalation_level,
                    "escalated_by": actor.user_id,
                    "reason": reason,
                    "chat_thread": metadata.chat_thread.to_dict() if metadata.chat_thread else None,
                },
            )
            updated = await self._repository.save_changes(ticket.id, outcome.to_changes(metadata), events=[event])

        self._status_changes.inc(labels={"status": TicketStatus.ESCALATED.value})
        logger.info("Ticket %s escalated to level %s by user %s", updated.id, updated.escalation_level, actor.user_id)
        return updated

    async def auto_escalate(self) -> AutoEscalationResult:
        """Escalate every open ticket the escalation policy flags.

        Tickets are handled one by one; a failure is logged and
        does not stop the run.
        """

        now = self._clock()
        result = AutoEscalationResult()
        tickets = await self._repository.list_tickets(include_final=False)
        flagged = [
            (ticket, trigger)
            for ticket in tickets
            if (trigger := self._escalation_policy.evaluate(ticket, now)) is not None
        ]
        if not flagged:
            return result

        fallback = await self._directory.first_user_with_role(Role.SUPER_ADMIN)
        for ticket, trigger in flagged:
            try:
                await self._auto_escalate_one(ticket, trigger, fallback, now)
            except Exception:
                logger.exception("Auto-escalation failed for ticket %s", ticket.id)
                result.errors.append(ticket.id)
            else:
                result.escalated.append(ticket.id)
        logger.info("Auto-escalation run: %d escalated, %d failed", len(result.escalated), len(result.errors))
        return result

    async def _auto_escalate_one(
        self, ticket: Ticket, trigger: EscalationTrigger, fallback: UserRecord | None, now: datetime
    ) -> Ticket:
        with tracer.start_as_current_span("tickets.auto_escalate") as span:
            span.set_attribute("ticket.id", ticket.id)
            outcome = self._resolver.escalate(ticket, now=now, assign_to=fallback.id if fallback else None)
            metadata = outcome.metadata.with_comment(
                new_comment(
                    f"Auto-escalated: {trigger.reason}",
                    author="System",
                    role=Role.SUPER_ADMIN,
                    comment_type=CommentType.INTERNAL_NOTE,
                    now=now,
                )
            )
            event = OutboxDraft(
                TICKET_ESCALATED,
                {
                    "ticket_id": ticket.id,
                    "title": ticket.title,
                    "category": ticket.category,
                    "escalation_level": outcome.escalation_level,
                    "escalated_by": None,
                    "automatic": True,
                    "rule": trigger.rule,
                    "reason": trigger.reason,
                    "chat_thread": metadata.chat_thread.to_dict() if metadata.chat_thread else None,
                },
            )
            updated = await self._repository.save_changes(
                ticket.id, outcome.to_changes(metadata), expected_version=ticket.version, events=[event]
            )
        self._auto_escalations.inc(labels={"rule": trigger.rule})
        self._status_changes.inc(labels={"status": TicketStatus.ESCALATED.value})
        logger.info("Ticket %s auto-escalated to level %s: %s", ticket.id, updated.escalation_level, trigger.reason)
        return updated

    async def set_tat(
        self,
        actor: Actor | None,
        ticket_id: int,
        *,
        tat: str,
        mark_in_progress: bool = False,
    ) -> Ticket:
        """Commit or extend the turn-around time of a ticket.

        Setting a TAT again records an extension. The acting admin takes the
        ticket, and ``mark_in_progress`` also moves it to in progress.
        """

        actor = self._require_actor(actor)
        label = tat.strip()
        duration = parse_tat(label) if label else None
        if duration is None:
            raise TicketValidationError(f"Invalid TAT: {tat}")

        with tracer.start_as_current_span("tickets.set_tat") as span, track_duration(
            self._duration, labels={"operation": "set_tat"}
        ):
            span.set_attribute("ticket.id", ticket_id)
            ticket = await self._load(ticket_id)
            self._authorize(actor, Operation.SET_TAT, ticket, await self._relationship(actor, ticket))

            now = self._clock()
            outcome = self._resolver.commit_tat(
                ticket, actor, label=label, duration=duration, now=now, mark_in_progress=mark_in_progress
            )
            metadata = outcome.metadata
            event = OutboxDraft(
                TICKET_TAT_SET,
                {
                    "ticket_id": ticket.id,
                    "title": ticket.title,
                    "category": ticket.category,
                    "tat": label,
                    "due_at": outcome.resolution_due_at.isoformat() if outcome.resolution_due_at else None,
                    "extended": ticket.metadata.tat.label is not None,
                    "in_progress": outcome.status is TicketStatus.IN_PROGRESS,
                    "set_by": actor.user_id,
                    "recipient_email": await self._creator_email(ticket),
                    "chat_thread": metadata.chat_thread.to_dict() if metadata.chat_thread else None,
                    "email_thread": metadata.email_thread.to_dict() if metadata.email_thread else None,
                },
            )
            events = [event]
            if outcome.changed:
                events.append(self._status_event(ticket, outcome, actor))
            updated = await self._repository.save_changes(ticket.id, outcome.to_changes(), events=events)

        logger.info("TAT for ticket %s set to %r by user %s", updated.id, label, actor.user_id)
        if outcome.changed:
            self._status_changes.inc(labels={"status": outcome.status.value})
            await self._after_status_change(actor, updated, outcome.previous_status)
        return updated

    async def rate_ticket(
        self, actor: Actor | None, ticket_id: int, *, rating: int, feedback: str | None = None
    ) -> Ticket:
        actor = self._require_actor(actor)
        if not 1 <= rating <= 5:
            raise TicketValidationError("Rating must be between 1 and 5")
        ticket = await self._load(ticket_id)
        self._authorize(actor, Operation.RATE, ticket)
        if not ticket.is_final:
            raise TicketValidationError("You can only rate closed or resolved tickets")
        if ticket.metadata.rating is not None:
            raise TicketValidationError("This ticket has already been rated")

        feedback = feedback.strip() if feedback else None
        metadata = replace(
            ticket.metadata, rating=TicketRating(score=rating, rated_at=self._clock(), feedback=feedback or None)
        )
        updated = await self._repository.save_changes(
            ticket.id, TransitionOutcome.unchanged(ticket).to_changes(metadata), expected_version=ticket.version
        )
        logger.info("Ticket %s rated %d by user %s", ticket.id, rating, actor.user_id)
        return updated

    async def reassign_ticket(self, actor: Actor | None, ticket_id: int, *, assignee_id: int | None) -> Ticket:
        """Hand the ticket to another admin, or unassign it when ``assignee_id`` is ``None``.

        A plain admin assignee must hold an assignment covering the ticket's
        category and location.
        """

        actor = self._require_actor(actor)
        ticket = await self._load(ticket_id)
        self._authorize(actor, Operation.REASSIGN, ticket, await self._relationship(actor, ticket))

        assignee = None
        if assignee_id is not None:
            assignee = await self._directory.get_user(assignee_id)
            if assignee is None:
                raise UserNotFoundError("Assignee not found")
            if not assignee.role.is_admin_level:
                raise TicketValidationError("Tickets can only be assigned to admins")
            if assignee.role is Role.ADMIN:
                assignments = await self._directory.list_admin_assignments(assignee.id)
                if not assignments:
                    raise TicketValidationError("Selected admin does not have a domain assignment")
                if not matches_scope(assignments, ticket):
                    raise TicketValidationError("Selected admin is not authorized for this ticket's domain")
        if assignee_id == ticket.assigned_to:
            return ticket

        metadata = ticket.metadata
        event = OutboxDraft(
            TICKET_REASSIGNED,
            {
                "ticket_id": ticket.id,
                "title": ticket.title,
                "category": ticket.category,
                "previous_assignee": ticket.assigned_to,
                "assignee_id": assignee_id,
                "assignee_name": assignee.display_name if assignee else None,
                "reassigned_by": actor.user_id,
                "recipient_email": await self._creator_email(ticket),
                "chat_thread": metadata.chat_thread.to_dict() if metadata.chat_thread else None,
                "email_thread": metadata.email_thread.to_dict() if metadata.email_thread else None,
            },
        )
        outcome = replace(TransitionOutcome.unchanged(ticket), assigned_to=assignee_id)
        updated = await self._repository.save_changes(ticket.id, outcome.to_changes(), events=[event])
        logger.info("Ticket %s reassigned from %s to %s by user %s", ticket.id, ticket.assigned_to, assignee_id, actor.user_id)
        return updated

    async def delete_ticket(self, actor: Actor | None, ticket_id: int) -> None:
        actor = self._require_actor(actor)
        self._authorize(actor, Operation.DELETE)
        deleted = await self._repository.delete_ticket(ticket_id)
        if not deleted:
            raise TicketNotFoundError(ticket_id)
        logger.info("Ticket %s deleted by user %s", ticket_id, actor.user_id)

    async def list_tags(self, actor: Actor | None, ticket_id: int) -> list[CommitteeTag]:
        self._authorize(self._require_actor(actor), Operation.VIEW_TAGS)
        await self._load(ticket_id)
        return await self._repository.list_tags(ticket_id)

    async def add_tag(
        self, actor: Actor | None, ticket_id: int, *, committee_id: int, reason: str | None = None
    ) -> CommitteeTag:
        actor = self._require_actor(actor)
        self._authorize(actor, Operation.MANAGE_TAGS)
        await self._load(ticket_id)
        if await self._directory.get_committee(committee_id) is None:
            raise CommitteeNotFoundError(committee_id)
        tag = await self._repository.add_tag(
            ticket_id, TagDraft(committee_id=committee_id, tagged_by=actor.user_id, reason=reason)
        )
        logger.info("Committee %s tagged to ticket %s by user %s", committee_id, ticket_id, actor.user_id)
        return tag

    async def remove_tag(
        self,
        actor: Actor | None,
        ticket_id: int,
        *,
        tag_id: int | None = None,
        committee_id: int | None = None,
    ) -> None:
        actor = self._require_actor(actor)
        self._authorize(actor, Operation.MANAGE_TAGS)
        if tag_id is None and committee_id is None:
            raise TicketValidationError("tagId or committeeId is required")
        await self._load(ticket_id)
        removed = await self._repository.remove_tag(ticket_id, tag_id=tag_id, committee_id=committee_id)
        if not removed:
            raise TagNotFoundError()
        logger.info("Committee tag removed from ticket %s by user %s", ticket_id, actor.user_id)

    @staticmethod
    def _comment_type(actor: Actor, value: str | None) -> CommentType:
        if value is None or not value.strip():
            return CommentType.INTERNAL_NOTE if actor.is_admin_level else CommentType.STUDENT_VISIBLE
        parsed = CommentType.parse(value)
        if parsed is None:
            raise TicketValidationError(f"Invalid comment type: {value}")
        return parsed

    @staticmethod
    def _status_event(ticket: Ticket, outcome: TransitionOutcome, actor: Actor) -> OutboxDraft:
        metadata = outcome.metadata
        return OutboxDraft(
            TICKET_STATUS_UPDATED,
            {
                "ticket_id": ticket.id,
                "title": ticket.title,
                "category": ticket.category,
                "previous_status": outcome.previous_status.value,
                "status": outcome.status.value,
                "changed_by": actor.user_id,
                "chat_thread": metadata.chat_thread.to_dict() if metadata.chat_thread else None,
            },
        )

    async def _creator_email(self, ticket: Ticket) -> str | None:
        creator = await self._directory.get_user(ticket.created_by)
        return creator.email if creator else None

    async def _after_status_change(self, actor: Actor, ticket: Ticket, previous: TicketStatus) -> None:
        try:
            notice = StatusChangeNotice(
                ticket_id=ticket.id,
                title=ticket.title,
                category=ticket.category,
                subcategory=ticket.subcategory,
                previous_status=previous,
                new_status=ticket.status,
                actor_role=actor.role,
                recipient_email=await self._creator_email(ticket),
                chat_thread=ticket.metadata.chat_thread,
                email_thread=ticket.metadata.email_thread,
            )
            await self._fanout.status_changed(notice)
        except Exception:
            logger.exception("Status notifications failed for ticket %s", ticket.id)

        if ticket.is_final and ticket.group_id is not None:
            try:
                await self._repository.archive_group_if_complete(ticket.group_id)
            except Exception:
                logger.exception("Could not archive ticket group %s", ticket.group_id)

    async def _after_comment(self, actor: Actor, ticket: Ticket, comment: Comment) -> None:
        try:
            notice = CommentNotice(
                ticket_id=ticket.id,
                title=ticket.title,
                category=ticket.category,
                comment=comment,
                author_role=actor.role,
                recipient_email=await self._creator_email(ticket),
                chat_thread=ticket.metadata.chat_thread,
                email_thread=ticket.metadata.email_thread,
            )
            await self._fanout.comment_added(notice)
        except Exception:
            logger.exception("Comment notifications failed for ticket %s", ticket.id)
