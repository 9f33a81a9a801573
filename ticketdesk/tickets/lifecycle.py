"""Pure lifecycle rules: status transitions, close requests, edits and first response.

Nothing in this module performs I/O. Every operation takes the current ticket
and an explicit ``now`` and returns a new ticket plus the history events the
caller must append to the ledger.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

from .errors import CloseReasonRequiredError, EditNotPermittedError, TicketValidationError
from .models import EDITABLE_FIELDS, Comment, Ticket, TicketEvent, UserType
from .state import TicketStateMachine, TicketStatus

_REQUIRED_FIELDS = ("reporter", "description")
_UNASSIGNED_FIELDS = ("assigned_team", "assigned_user")
_SNIPPET_LENGTH = 50


@dataclass(slots=True, frozen=True)
class PendingClose:
    """A requested close that takes effect only once a reason is supplied."""

    ticket_id: str
    from_status: TicketStatus
    requested_by: str
    requested_at: datetime


@dataclass(slots=True)
class TransitionResult:
    """Outcome of applying a lifecycle operation to a ticket."""

    ticket: Ticket
    events: list[TicketEvent] = field(default_factory=list)
    pending_close: PendingClose | None = None

    @property
    def applied(self) -> bool:
        return self.pending_close is None


def can_edit(viewer: UserType) -> bool:
    return viewer == UserType.INTERNAL


def _display(field_name: str, value: Any) -> str:
    if value is None or value == "" or value == ():
        return "Unassigned" if field_name in _UNASSIGNED_FIELDS else "-"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, tuple):
        return "/".join(_display(field_name, item) for item in value)
    return str(value)


def _snippet(text: str) -> str:
    if len(text) > _SNIPPET_LENGTH:
        return f"{text[:_SNIPPET_LENGTH]}..."
    return text


class TicketLifecycle:
    """Apply lifecycle rules to tickets."""

    def __init__(self, state_machine: type[TicketStateMachine] = TicketStateMachine) -> None:
        self._state_machine = state_machine

    def change_status(
        self,
        ticket: Ticket,
        new_status: TicketStatus,
        *,
        actor: str,
        now: datetime,
    ) -> TransitionResult:
        """Move ``ticket`` to ``new_status``.

        A move into ``closed`` is not applied: the result carries a
        :class:`PendingClose` and the ticket unchanged.
        """

        current = ticket.status
        self._state_machine.assert_transition(current, new_status)

        if self._state_machine.requires_reason(current, new_status):
            pending = self.request_close(ticket, actor=actor, now=now)
            return TransitionResult(ticket=ticket, pending_close=pending)

        changes: dict[str, Any] = {"status": new_status, "updated_at": now}
        if current is TicketStatus.CLOSED and new_status is not TicketStatus.CLOSED:
            # closed_at is only ever present while the ticket is closed
            changes.update(closed_at=None, close_reason=None)
        generic = TicketEvent("Status changed", f"Status changed from {current.value} to {new_status.phrase}")

        if new_status is TicketStatus.RESOLVED:
            if current is not TicketStatus.RESOLVED or ticket.resolved_at is None:
                changes["resolved_at"] = now
            event = generic
        elif new_status is TicketStatus.OPEN:
            changes.update(resolved_at=None, closed_at=None, close_reason=None)
            if current.is_terminal:
                changes["reopen_count"] = ticket.reopen_count + 1
                event = TicketEvent("Ticket reopened", f"Ticket reopened from {current.value} status")
            else:
                event = generic
        else:
            event = generic

        return TransitionResult(ticket=replace(ticket, **changes), events=[event])

    def request_close(self, ticket: Ticket, *, actor: str, now: datetime) -> PendingClose:
        return PendingClose(
            ticket_id=ticket.ticket_id,
            from_status=ticket.status,
            requested_by=actor,
            requested_at=now,
        )

    def commit_close(
        self,
        ticket: Ticket,
        pending: PendingClose,
        reason: str | None,
        *,
        now: datetime,
    ) -> TransitionResult:
        if pending.ticket_id != ticket.ticket_id:
            raise TicketValidationError(
                f"Close request for {pending.ticket_id} cannot be applied to {ticket.ticket_id}"
            )
        cleaned = (reason or "").strip()
        if not cleaned:
            raise CloseReasonRequiredError("A reason is required to close a ticket")

        closed = replace(
            ticket,
            status=TicketStatus.CLOSED,
            closed_at=now,
            updated_at=now,
            close_reason=cleaned,
        )
        return TransitionResult(
            ticket=closed,
            events=[TicketEvent("Ticket closed", f"Ticket closed with reason: {cleaned}")],
        )

    def edit_fields(
        self,
        ticket: Ticket,
        changes: Mapping[str, Any],
        *,
        viewer: UserType,
        now: datetime,
    ) -> TransitionResult:
        """Apply already-normalized field values and describe what changed."""

        if not can_edit(viewer):
            raise EditNotPermittedError("Only internal users can edit tickets")

        unknown = sorted(set(changes) - set(EDITABLE_FIELDS))
        if unknown:
            raise TicketValidationError(f"Fields cannot be edited: {', '.join(unknown)}")
        for name in _REQUIRED_FIELDS:
            if name in changes and not changes[name]:
                raise TicketValidationError(f"{EDITABLE_FIELDS[name]} cannot be empty")

        described: list[str] = []
        updates: dict[str, Any] = {"updated_at": now}
        for name, label in EDITABLE_FIELDS.items():
            if name not in changes:
                continue
            old = getattr(ticket, name)
            new = changes[name]
            if old == new:
                continue
            updates[name] = new
            described.append(f"{label}: {_display(name, old)} → {_display(name, new)}")

        events: list[TicketEvent] = []
        if described:
            events.append(TicketEvent("Ticket updated", f"Fields updated: {', '.join(described)}"))
        return TransitionResult(ticket=replace(ticket, **updates), events=events)

    def record_comment(self, ticket: Ticket, comment: Comment, *, now: datetime) -> TransitionResult:
        events: list[TicketEvent] = []
        updates: dict[str, Any] = {"updated_at": now}
        if ticket.first_response_at is None:
            updates["first_response_at"] = now
            events.append(TicketEvent("First response", "First response provided"))

        kind = "Reply" if comment.is_reply else "Comment"
        events.append(TicketEvent(f"{kind} added", f"{kind} added: {_snippet(comment.content)}"))
        return TransitionResult(ticket=replace(ticket, **updates), events=events)
