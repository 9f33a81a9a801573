from __future__ import annotations

from typing import Sequence


class TicketServiceError(RuntimeError):
    """Base error for ticket service issues."""


class TicketValidationError(TicketServiceError):
    """Raised when submitted ticket data fails validation."""


class CloseReasonRequiredError(TicketValidationError):
    """Raised when a close is committed without a reason."""


class EditNotPermittedError(TicketServiceError):
    """Raised when a viewer is not allowed to edit a ticket."""


class InvalidTicketTransitionError(TicketServiceError):
    """Raised when attempting to transition to an invalid state."""


class TicketNotFoundError(TicketServiceError):
    """Raised when a mutation targets a ticket that does not exist."""


class CommentNotFoundError(TicketNotFoundError):
    """Raised when a reply targets a comment that does not exist."""


class StoreError(TicketServiceError):
    """Base error for backing-store failures."""


class StoreConfigurationError(StoreError):
    """Raised when no connection string is configured."""


class StoreConnectionError(StoreError):
    """Raised when the backing store cannot be reached."""


class SchemaMissingError(StoreError):
    """Raised when required tables are absent from the backing store."""

    def __init__(self, missing_tables: Sequence[str]) -> None:
        self.missing_tables = list(missing_tables)
        super().__init__(f"Missing tables: {', '.join(self.missing_tables)}")


class DuplicateTicketIdError(StoreError):
    """Raised when a generated ticket identifier is already taken."""


class LedgerWriteError(StoreError):
    """Raised internally when a history row could not be appended."""
