"""Ticket intake, lifecycle, SLA tracking and ledger."""

from .errors import (
    CloseReasonRequiredError,
    EditNotPermittedError,
    InvalidTicketTransitionError,
    LedgerWriteError,
    SchemaMissingError,
    StoreConnectionError,
    TicketNotFoundError,
    TicketServiceError,
    TicketValidationError,
)
from .lifecycle import PendingClose, TicketLifecycle
from .models import Attachment, Comment, HistoryEntry, Ticket, UserType
from .service import StatusChangeOutcome, TicketService
from .sla import SLACalculator, SLAPolicy, SLASnapshot, SLAStatus
from .state import TicketStateMachine, TicketStatus

__all__ = [
    "Attachment",
    "CloseReasonRequiredError",
    "Comment",
    "EditNotPermittedError",
    "HistoryEntry",
    "InvalidTicketTransitionError",
    "LedgerWriteError",
    "PendingClose",
    "SLACalculator",
    "SLAPolicy",
    "SLASnapshot",
    "SLAStatus",
    "SchemaMissingError",
    "StatusChangeOutcome",
    "StoreConnectionError",
    "Ticket",
    "TicketLifecycle",
    "TicketNotFoundError",
    "TicketService",
    "TicketServiceError",
    "TicketStateMachine",
    "TicketStatus",
    "TicketValidationError",
    "UserType",
]
