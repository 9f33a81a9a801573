from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping, Protocol, Sequence

from .comments import build_comment, thread_comments, visible_comments
from .errors import (
    CommentNotFoundError,
    DuplicateTicketIdError,
    EditNotPermittedError,
    InvalidTicketTransitionError,
    SchemaMissingError,
    StoreConnectionError,
    TicketNotFoundError,
)
from .ledger import TicketLedger
from .lifecycle import PendingClose, TicketLifecycle
from .models import Attachment, Comment, HistoryEntry, Ticket, UserType
from .pipeline import TicketIntakePipeline
from .repository import TicketRepository
from .sla import SLACalculator, SLASnapshot
from .state import TicketStatus

logger = logging.getLogger(__name__)


class TableCheckResult(Protocol):
    success: bool
    missing_tables: list[str]
    message: str


SchemaCheck = Callable[[Sequence[str]], Awaitable[TableCheckResult]]

DEFAULT_REQUIRED_TABLES: tuple[str, ...] = ("tickets", "comments", "ticket_history", "users", "teams")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class StatusChangeOutcome:
    """Ticket after a status request; ``pending_close`` is set when a reason is still needed."""

    ticket: Ticket
    pending_close: PendingClose | None = None


class TicketService:
    """High level orchestration for ticket lifecycle operations."""

    def __init__(
        self,
        repository: TicketRepository,
        *,
        ledger: TicketLedger | None = None,
        pipeline: TicketIntakePipeline | None = None,
        lifecycle: TicketLifecycle | None = None,
        sla: SLACalculator | None = None,
        schema_check: SchemaCheck | None = None,
        required_tables: Sequence[str] = DEFAULT_REQUIRED_TABLES,
        clock: Callable[[], datetime] = utcnow,
        max_id_attempts: int = 3,
    ) -> None:
        self._repository = repository
        self._ledger = ledger or TicketLedger(repository)
        self._pipeline = pipeline or TicketIntakePipeline()
        self._lifecycle = lifecycle or TicketLifecycle()
        self._sla = sla or SLACalculator()
        self._schema_check = schema_check
        self._required_tables = tuple(required_tables)
        self._clock = clock
        self._max_id_attempts = max(1, max_id_attempts)

    async def ensure_schema(self) -> None:
        await self._repository.ensure_schema()

    async def create_ticket(self, form_data: Mapping[str, Any]) -> Ticket:
        now = self._clock()
        ticket = self._pipeline.run(form_data, now=now)
        await self._ensure_tables()

        attempt = 1
        while True:
            try:
                created = await self._repository.create_ticket(ticket)
                break
            except DuplicateTicketIdError:
                if attempt >= self._max_id_attempts:
                    raise
                retry_id = self._pipeline.new_ticket_id(now)
                logger.warning("Ticket id %s already taken, retrying as %s", ticket.ticket_id, retry_id)
                ticket = replace(ticket, ticket_id=retry_id)
                attempt += 1

        logger.info("Created ticket %s for %s", created.ticket_id, created.reporter)
        await self._ledger.add_history_entry(
            created.ticket_id,
            "Ticket created",
            f"Ticket {created.ticket_id} was created",
            created.reporter,
            now=now,
        )
        return created

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        return await self._repository.get_ticket(ticket_id)

    async def change_status(self, ticket_id: str, *, new_status: TicketStatus, actor: str) -> StatusChangeOutcome:
        ticket = await self._require_ticket(ticket_id)
        now = self._clock()
        result = self._lifecycle.change_status(ticket, new_status, actor=actor, now=now)

        if not result.applied:
            logger.info("Close requested for %s by %s; awaiting reason", ticket_id, actor)
            return StatusChangeOutcome(ticket=ticket, pending_close=result.pending_close)

        saved = await self._persist(result.ticket)
        await self._ledger.record(ticket_id, result.events, user=actor, now=now)
        return StatusChangeOutcome(ticket=saved)

    async def close_ticket(
        self,
        ticket_id: str,
        *,
        reason: str | None,
        actor: str,
        pending: PendingClose | None = None,
    ) -> Ticket:
        ticket = await self._require_ticket(ticket_id)
        if ticket.status is TicketStatus.CLOSED:
            raise InvalidTicketTransitionError(f"Ticket {ticket_id} is already closed")

        now = self._clock()
        request = pending or self._lifecycle.request_close(ticket, actor=actor, now=now)
        result = self._lifecycle.commit_close(ticket, request, reason, now=now)
        saved = await self._persist(result.ticket)
        await self._ledger.record(ticket_id, result.events, user=actor, now=now)
        return saved

    async def update_fields(
        self,
        ticket_id: str,
        changes: Mapping[str, Any],
        *,
        actor: str,
        viewer: UserType,
    ) -> Ticket:
        normalized = self._pipeline.normalize_changes(changes)
        ticket = await self._require_ticket(ticket_id)
        now = self._clock()
        result = self._lifecycle.edit_fields(ticket, normalized, viewer=viewer, now=now)
        saved = await self._persist(result.ticket)
        await self._ledger.record(ticket_id, result.events, user=actor, now=now)
        return saved

    async def add_comment(
        self,
        ticket_id: str,
        *,
        author: str,
        content: str,
        user_type: UserType,
        parent_id: int | None = None,
        attachments: Sequence[Attachment] = (),
        viewer: UserType | None = None,
    ) -> Comment:
        if viewer == UserType.EXTERNAL and user_type != UserType.EXTERNAL:
            raise EditNotPermittedError("External users can only post external comments")
        ticket = await self._require_ticket(ticket_id)
        parent: Comment | None = None
        if parent_id is not None:
            parent = await self._repository.get_comment(parent_id)
            if parent is None:
                raise CommentNotFoundError(f"Comment {parent_id} not found on ticket {ticket_id}")

        now = self._clock()
        draft = build_comment(
            ticket_id=ticket_id,
            author=author,
            content=content,
            user_type=user_type,
            now=now,
            parent=parent,
            attachments=attachments,
        )
        comment = await self._repository.add_comment(draft)
        result = self._lifecycle.record_comment(ticket, comment, now=now)
        await self._persist(result.ticket)
        await self._ledger.record(ticket_id, result.events, user=comment.author, now=now)
        return comment

    async def list_comments(self, ticket_id: str, *, viewer: UserType) -> list[Comment]:
        comments = await self._repository.list_comments(ticket_id)
        return visible_comments(thread_comments(comments), viewer)

    async def list_history(self, ticket_id: str) -> list[HistoryEntry]:
        return await self._repository.list_history(ticket_id)

    async def get_sla(self, ticket_id: str) -> SLASnapshot | None:
        ticket = await self._repository.get_ticket(ticket_id)
        if ticket is None:
            return None
        return self._sla.compute(ticket, now=self._clock())

    async def _ensure_tables(self) -> None:
        if self._schema_check is None:
            return
        check = await self._schema_check(self._required_tables)
        if check.success:
            return
        if check.missing_tables:
            raise SchemaMissingError(check.missing_tables)
        raise StoreConnectionError(check.message)

    async def _require_ticket(self, ticket_id: str) -> Ticket:
        ticket = await self._repository.get_ticket(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    async def _persist(self, ticket: Ticket) -> Ticket:
        saved = await self._repository.save_ticket(ticket)
        if saved is None:
            raise TicketNotFoundError(f"Ticket {ticket.ticket_id} not found")
        return saved
