"""Rules deciding which open tickets the auto-escalation job picks up."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from .models import Ticket
from .state import TicketStatus


@dataclass(frozen=True, slots=True)
class EscalationTrigger:
    rule: str
    reason: str


@dataclass(frozen=True, slots=True)
class EscalationPolicy:
    """Pure evaluation of the auto-escalation rules for one ticket.

    Rules are checked in order and the first match wins. A ticket escalated
    less than ``cooldown`` ago is left alone, and a paused TAT clock (ticket
    awaiting the student) never counts as overdue.
    """

    cooldown: timedelta = timedelta(hours=48)
    stalled_after: timedelta = timedelta(hours=48)
    max_tat_extensions: int = 3
    max_reopens: int = 3
    max_forwards: int = 3

    def evaluate(self, ticket: Ticket, now: datetime) -> EscalationTrigger | None:
        if ticket.is_final:
            return None
        if ticket.last_escalation_at is not None and now - ticket.last_escalation_at < self.cooldown:
            return None

        metadata = ticket.metadata
        tat = metadata.tat
        if len(tat.extensions) >= self.max_tat_extensions:
            return EscalationTrigger("tat_extensions", f"TAT extension limit ({len(tat.extensions)} extensions)")

        due_at = ticket.resolution_due_at or tat.due_at
        if due_at is not None and due_at < now and not tat.is_paused:
            return EscalationTrigger("overdue", "SLA breach (resolution due date passed)")

        if metadata.reopen_count >= self.max_reopens:
            return EscalationTrigger("reopened", f"repeated reopening ({metadata.reopen_count} times)")

        if metadata.forward_count > self.max_forwards:
            return EscalationTrigger("forwarded", f"ping-pong forwarding ({metadata.forward_count} forwards)")

        if ticket.status is TicketStatus.IN_PROGRESS:
            last_activity = max(filter(None, (ticket.updated_at, metadata.last_activity_at())))
            if now - last_activity >= self.stalled_after:
                hours = int(self.stalled_after.total_seconds() // 3600)
                return EscalationTrigger("stalled", f"stalled in progress (no activity for {hours} hours)")
        return None
