from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from itertools import count

import pytest

from ticketdesk.tickets.errors import DuplicateTicketIdError, TicketNotFoundError
from ticketdesk.tickets.models import Comment, HistoryEntry, Ticket
from ticketdesk.tickets.state import TicketStatus

FROZEN_NOW = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Deterministic clock that only moves when told to."""

    def __init__(self, start: datetime = FROZEN_NOW) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class InMemoryTicketRepository:
    """Repository double keeping rows in dictionaries, mirroring the SQL semantics."""

    def __init__(self) -> None:
        self.tickets: dict[str, Ticket] = {}
        self.comments: list[Comment] = []
        self.history: list[HistoryEntry] = []
        self.saves = 0
        self._ids = count(1)

    async def ensure_schema(self) -> None:
        return None

    async def create_ticket(self, ticket: Ticket) -> Ticket:
        if ticket.ticket_id in self.tickets:
            raise DuplicateTicketIdError(f"Ticket id {ticket.ticket_id} already exists")
        stored = replace(ticket, id=next(self._ids))
        self.tickets[ticket.ticket_id] = stored
        return stored

    async def save_ticket(self, ticket: Ticket) -> Ticket | None:
        current = self.tickets.get(ticket.ticket_id)
        if current is None:
            return None
        stored = replace(ticket, id=current.id, created_at=current.created_at)
        self.tickets[ticket.ticket_id] = stored
        self.saves += 1
        return stored

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        return self.tickets.get(ticket_id)

    async def add_comment(self, comment: Comment) -> Comment:
        if comment.ticket_id not in self.tickets:
            raise TicketNotFoundError(f"Ticket {comment.ticket_id} not found")
        stored = replace(comment, id=next(self._ids), replies=[])
        self.comments.append(stored)
        return stored

    async def get_comment(self, comment_id: int) -> Comment | None:
        for comment in self.comments:
            if comment.id == comment_id:
                return comment
        return None

    async def list_comments(self, ticket_id: str) -> list[Comment]:
        return [comment for comment in self.comments if comment.ticket_id == ticket_id]

    async def add_history(
        self,
        ticket_id: str,
        *,
        action: str,
        details: str,
        user: str,
        created_at: datetime,
    ) -> HistoryEntry | None:
        if ticket_id not in self.tickets:
            return None
        entry = HistoryEntry(
            id=next(self._ids),
            ticket_id=ticket_id,
            action=action,
            details=details,
            user=user,
            created_at=created_at,
        )
        self.history.append(entry)
        return entry

    async def list_history(self, ticket_id: str) -> list[HistoryEntry]:
        entries = [entry for entry in self.history if entry.ticket_id == ticket_id]
        return sorted(entries, key=lambda entry: (entry.created_at, entry.id), reverse=True)

    def history_for(self, ticket_id: str) -> list[HistoryEntry]:
        return [entry for entry in self.history if entry.ticket_id == ticket_id]


def build_ticket(**overrides) -> Ticket:
    values = {
        "ticket_id": "TKT-000001",
        "reporter": "Dana",
        "description": "Payroll export fails",
        "status": TicketStatus.OPEN,
        "created_at": FROZEN_NOW,
        "updated_at": FROZEN_NOW,
    }
    values.update(overrides)
    return Ticket(**values)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def repository() -> InMemoryTicketRepository:
    return InMemoryTicketRepository()


@pytest.fixture
def make_ticket():
    return build_ticket
