"""Compute the persisted effects of status changes, forwards and escalations."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from helpdesk.security.roles import Actor

from .errors import TicketValidationError
from .metadata import TatState, TicketMetadata
from .models import Ticket, TicketChanges
from .state import TicketStatus


@dataclass(frozen=True, slots=True)
class TransitionOutcome:
    changed: bool
    previous_status: TicketStatus
    status: TicketStatus
    assigned_to: int | None
    metadata: TicketMetadata
    escalation_level: int
    last_escalation_at: datetime | None
    resolution_due_at: datetime | None

    @classmethod
    def unchanged(cls, ticket: Ticket) -> TransitionOutcome:
        return cls(
            changed=False,
            previous_status=ticket.status,
            status=ticket.status,
            assigned_to=ticket.assigned_to,
            metadata=ticket.metadata,
            escalation_level=ticket.escalation_level,
            last_escalation_at=ticket.last_escalation_at,
            resolution_due_at=ticket.resolution_due_at,
        )

    def to_changes(self, metadata: TicketMetadata | None = None) -> TicketChanges:
        return TicketChanges(
            status=self.status,
            assigned_to=self.assigned_to,
            metadata=metadata if metadata is not None else self.metadata,
            escalation_level=self.escalation_level,
            last_escalation_at=self.last_escalation_at,
            resolution_due_at=self.resolution_due_at,
        )


def _leave(tat: TatState, current: TicketStatus, target: TicketStatus, now: datetime) -> tuple[TatState, timedelta]:
    """Pause or resume the TAT clock; returns the new state and how far due dates move."""

    shift = timedelta()
    if current is TicketStatus.AWAITING_STUDENT_RESPONSE and target is not current:
        resumed = tat.resume(now)
        shift = timedelta(seconds=resumed.paused_seconds - tat.paused_seconds)
        tat = resumed
    if target is TicketStatus.AWAITING_STUDENT_RESPONSE:
        tat = tat.pause(now)
    return tat, shift


def _shifted(value: datetime | None, shift: timedelta) -> datetime | None:
    return value + shift if value is not None else None


class TransitionResolver:
    """Pure resolver for ticket status transitions.

    Authorisation happens before the resolver is called; it only decides what
    a permitted change writes.
    """

    def apply(self, ticket: Ticket, target: TicketStatus, actor: Actor, *, now: datetime) -> TransitionOutcome:
        if target is ticket.status:
            return TransitionOutcome.unchanged(ticket)

        metadata = ticket.metadata
        tat, shift = _leave(metadata.tat, ticket.status, target, now)
        resolution_due_at = _shifted(ticket.resolution_due_at, shift)

        if target is TicketStatus.REOPENED:
            metadata = replace(metadata, reopened_at=now, reopen_count=metadata.reopen_count + 1)
            tat = TatState()
            resolution_due_at = None
        elif target is TicketStatus.RESOLVED:
            metadata = replace(metadata, resolved_at=now)

        return TransitionOutcome(
            changed=True,
            previous_status=ticket.status,
            status=target,
            assigned_to=actor.user_id if actor.is_admin_level else ticket.assigned_to,
            metadata=replace(metadata, tat=tat),
            escalation_level=ticket.escalation_level,
            last_escalation_at=ticket.last_escalation_at,
            resolution_due_at=resolution_due_at,
        )

    def forward(self, ticket: Ticket, *, head_id: int, now: datetime) -> TransitionOutcome:
        if ticket.is_final:
            raise TicketValidationError("Cannot forward a ticket that is already resolved or closed")
        metadata = ticket.metadata
        tat, shift = _leave(metadata.tat, ticket.status, TicketStatus.FORWARDED, now)
        metadata = replace(metadata, forward_count=metadata.forward_count + 1, forwarded_at=now, tat=tat)
        return TransitionOutcome(
            changed=True,
            previous_status=ticket.status,
            status=TicketStatus.FORWARDED,
            assigned_to=head_id,
            metadata=metadata,
            escalation_level=ticket.escalation_level,
            last_escalation_at=ticket.last_escalation_at,
            resolution_due_at=_shifted(ticket.resolution_due_at, shift),
        )

    def escalate(self, ticket: Ticket, *, now: datetime, assign_to: int | None = None) -> TransitionOutcome:
        if ticket.is_final:
            raise TicketValidationError("Cannot escalate a ticket that is already resolved or closed")
        tat, shift = _leave(ticket.metadata.tat, ticket.status, TicketStatus.ESCALATED, now)
        return TransitionOutcome(
            changed=True,
            previous_status=ticket.status,
            status=TicketStatus.ESCALATED,
            assigned_to=assign_to if assign_to is not None else ticket.assigned_to,
            metadata=replace(ticket.metadata, tat=tat),
            escalation_level=ticket.escalation_level + 1,
            last_escalation_at=now,
            resolution_due_at=_shifted(ticket.resolution_due_at, shift),
        )

    def commit_tat(
        self,
        ticket: Ticket,
        actor: Actor,
        *,
        label: str,
        duration: timedelta,
        now: datetime,
        mark_in_progress: bool = False,
    ) -> TransitionOutcome:
        """Set or extend the committed turn-around time.

        The acting admin takes the ticket. With ``mark_in_progress`` the
        ticket also moves to in progress, resuming a paused clock first so the
        new due date is measured from ``now``.
        """

        if ticket.is_final:
            raise TicketValidationError("Cannot set TAT on a ticket that is already resolved or closed")
        if mark_in_progress:
            outcome = self.apply(ticket, TicketStatus.IN_PROGRESS, actor, now=now)
        else:
            outcome = TransitionOutcome.unchanged(ticket)

        due_at = now + duration
        tat = outcome.metadata.tat.commit(label, due_at, by=actor.display_name, now=now)
        return replace(
            outcome,
            assigned_to=actor.user_id,
            metadata=replace(outcome.metadata, tat=tat),
            resolution_due_at=due_at,
        )
