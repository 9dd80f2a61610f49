from .access import AccessDecision, AccessGate, Operation
from .errors import (
    AccessDeniedError,
    DuplicateTagError,
    NotFoundError,
    StaleTicketError,
    TicketNotFoundError,
    TicketServiceError,
    TicketValidationError,
)
from .models import Committee, CommitteeTag, Ticket
from .service import ForwardResult, TicketService
from .state import TicketStatus
from .transitions import TransitionOutcome, TransitionResolver

__all__ = [
    "AccessDecision",
    "AccessDeniedError",
    "AccessGate",
    "Committee",
    "CommitteeTag",
    "DuplicateTagError",
    "ForwardResult",
    "NotFoundError",
    "Operation",
    "StaleTicketError",
    "Ticket",
    "TicketNotFoundError",
    "TicketService",
    "TicketServiceError",
    "TicketStatus",
    "TicketValidationError",
    "TransitionOutcome",
    "TransitionResolver",
]
