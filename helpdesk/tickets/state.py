from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class TicketStatus(str, Enum):
    """Supported states for a ticket's lifecycle."""

    OPEN = "open"
    REOPENED = "reopened"
    IN_PROGRESS = "in_progress"
    AWAITING_STUDENT_RESPONSE = "awaiting_student_response"
    FORWARDED = "forwarded"
    ESCALATED = "escalated"
    RESOLVED = "resolved"
    CLOSED = "closed"

    @property
    def is_final(self) -> bool:
        return self in FINAL_STATUSES


FINAL_STATUSES: frozenset[TicketStatus] = frozenset({TicketStatus.RESOLVED, TicketStatus.CLOSED})

_ALIASES: dict[str, TicketStatus] = {
    "awaiting_student": TicketStatus.AWAITING_STUDENT_RESPONSE,
}


@dataclass(frozen=True, slots=True)
class StatusDefinition:
    """Row seeded into the ``ticket_statuses`` lookup table."""

    status: TicketStatus
    label: str
    badge_color: str
    display_order: int

    @property
    def is_final(self) -> bool:
        return self.status.is_final


STATUS_DEFINITIONS: tuple[StatusDefinition, ...] = (
    StatusDefinition(TicketStatus.OPEN, "Open", "default", 1),
    StatusDefinition(TicketStatus.REOPENED, "Reopened", "default", 2),
    StatusDefinition(TicketStatus.IN_PROGRESS, "In Progress", "outline", 3),
    StatusDefinition(TicketStatus.AWAITING_STUDENT_RESPONSE, "Awaiting Student Response", "outline", 4),
    StatusDefinition(TicketStatus.FORWARDED, "Forwarded", "secondary", 5),
    StatusDefinition(TicketStatus.ESCALATED, "Escalated", "destructive", 6),
    StatusDefinition(TicketStatus.RESOLVED, "Resolved", "success", 7),
    StatusDefinition(TicketStatus.CLOSED, "Closed", "secondary", 8),
)


def parse_status(value: str | None) -> TicketStatus | None:
    """Normalise user supplied status text.

    Matching is case-insensitive after trimming and accepts the legacy
    ``awaiting_student`` spelling. Unknown values return ``None``.
    """

    if value is None:
        return None
    normalised = value.strip().lower()
    if not normalised:
        return None
    if normalised in _ALIASES:
        return _ALIASES[normalised]
    try:
        return TicketStatus(normalised)
    except ValueError:
        return None
