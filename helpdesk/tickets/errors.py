from __future__ import annotations


class TicketServiceError(RuntimeError):
    """Base error for ticket service issues."""


class AccessDeniedError(TicketServiceError):
    """Raised when the access gate rejects an operation."""

    def __init__(self, reason: str, *, unauthenticated: bool = False) -> None:
        super().__init__(reason)
        self.reason = reason
        self.unauthenticated = unauthenticated

    @property
    def status_code(self) -> int:
        return 401 if self.unauthenticated else 403


class NotFoundError(TicketServiceError):
    """Raised when a referenced row does not exist."""


class TicketNotFoundError(NotFoundError):
    """Raised when a ticket could not be located."""

    def __init__(self, ticket_id: int) -> None:
        super().__init__("Ticket not found")
        self.ticket_id = ticket_id


class CommitteeNotFoundError(NotFoundError):
    """Raised when a committee could not be located."""

    def __init__(self, committee_id: int) -> None:
        super().__init__("Committee not found")
        self.committee_id = committee_id


class UserNotFoundError(NotFoundError):
    """Raised when a user row is missing."""

    def __init__(self, detail: str = "User not found") -> None:
        super().__init__(detail)


class TagNotFoundError(NotFoundError):
    """Raised when a committee tag does not exist."""

    def __init__(self) -> None:
        super().__init__("Tag not found")


class StatusLookupError(NotFoundError):
    """Raised when a status has no row in the lookup table."""

    def __init__(self, value: str) -> None:
        super().__init__(f"Status '{value}' is not configured")
        self.value = value


class TicketValidationError(TicketServiceError):
    """Raised for requests that are well formed but not acceptable."""


class DuplicateTagError(TicketServiceError):
    """Raised when tagging a committee that is already tagged."""

    def __init__(self) -> None:
        super().__init__("Committee is already tagged to this ticket")


class StaleTicketError(TicketServiceError):
    """Raised when the caller's expected version no longer matches."""

    def __init__(self, ticket_id: int, expected: int, actual: int) -> None:
        super().__init__(
            f"Ticket {ticket_id} was modified concurrently (expected version {expected}, found {actual})"
        )
        self.ticket_id = ticket_id
        self.expected = expected
        self.actual = actual
