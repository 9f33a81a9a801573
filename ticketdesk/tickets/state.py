from __future__ import annotations

from enum import Enum


class TicketStatus(str, Enum):
    """Supported states for a ticket's lifecycle."""

    OPEN = "open"
    RESOLVED = "resolved"
    CLOSED = "closed"
    WAITING_CUSTOMER_RESPONSE = "waiting-customer-response"

    @property
    def is_terminal(self) -> bool:
        return self in (TicketStatus.RESOLVED, TicketStatus.CLOSED)

    @property
    def phrase(self) -> str:
        """Human wording used in history entries."""

        if self is TicketStatus.WAITING_CUSTOMER_RESPONSE:
            return "waiting customer response"
        return self.value


class TicketStateMachine:
    """Validate ticket lifecycle transitions."""

    # Every status may follow every other; listed so the allowed moves are explicit.
    _TRANSITIONS: dict[TicketStatus, set[TicketStatus]] = {
        TicketStatus.OPEN: {
            TicketStatus.RESOLVED,
            TicketStatus.CLOSED,
            TicketStatus.WAITING_CUSTOMER_RESPONSE,
        },
        TicketStatus.RESOLVED: {
            TicketStatus.OPEN,
            TicketStatus.CLOSED,
            TicketStatus.WAITING_CUSTOMER_RESPONSE,
        },
        TicketStatus.CLOSED: {
            TicketStatus.OPEN,
            TicketStatus.RESOLVED,
            TicketStatus.WAITING_CUSTOMER_RESPONSE,
        },
        TicketStatus.WAITING_CUSTOMER_RESPONSE: {
            TicketStatus.OPEN,
            TicketStatus.RESOLVED,
            TicketStatus.CLOSED,
        },
    }

    # Entering these states is two-phase: a request, then a commit with a reason.
    _DEFERRED: frozenset[TicketStatus] = frozenset({TicketStatus.CLOSED})

    @classmethod
    def initial_state(cls) -> TicketStatus:
        return TicketStatus.OPEN

    @classmethod
    def can_transition(cls, current: TicketStatus, new: TicketStatus) -> bool:
        if current == new:
            return True
        return new in cls._TRANSITIONS.get(current, set())

    @classmethod
    def assert_transition(cls, current: TicketStatus, new: TicketStatus) -> None:
        if not cls.can_transition(current, new):
            raise ValueError(f"Invalid ticket status transition: {current!s} -> {new!s}")

    @classmethod
    def requires_reason(cls, current: TicketStatus, new: TicketStatus) -> bool:
        return new in cls._DEFERRED and current != new
