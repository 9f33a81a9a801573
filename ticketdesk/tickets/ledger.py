from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Protocol

from .errors import LedgerWriteError, StoreError
from .models import HistoryEntry, TicketEvent

logger = logging.getLogger(__name__)


class HistoryWriter(Protocol):
    async def add_history(
        self,
        ticket_id: str,
        *,
        action: str,
        details: str,
        user: str,
        created_at: datetime,
    ) -> HistoryEntry | None:
        ...


class TicketLedger:
    """Best-effort writer for the ticket history log.

    A failed append is logged and reported as ``None``; it never aborts the
    ticket mutation that produced it.
    """

    def __init__(self, writer: HistoryWriter) -> None:
        self._writer = writer

    async def add_history_entry(
        self,
        ticket_id: str,
        action: str,
        details: str,
        user: str,
        *,
        now: datetime,
    ) -> HistoryEntry | None:
        try:
            entry = await self._writer.add_history(
                ticket_id,
                action=action,
                details=details,
                user=user,
                created_at=now,
            )
        except (StoreError, OSError) as exc:
            error = LedgerWriteError(f"Could not append history '{action}' to {ticket_id}: {exc}")
            logger.warning("%s", error, exc_info=exc)
            return None
        if entry is None:
            logger.warning("History '%s' not recorded: ticket %s no longer exists", action, ticket_id)
        return entry

    async def record(
        self,
        ticket_id: str,
        events: Iterable[TicketEvent],
        *,
        user: str,
        now: datetime,
    ) -> list[HistoryEntry]:
        recorded: list[HistoryEntry] = []
        for event in events:
            entry = await self.add_history_entry(ticket_id, event.action, event.details, user, now=now)
            if entry is not None:
                recorded.append(entry)
        return recorded
