from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Mapping, Protocol, Sequence

from asyncpg import exceptions as pg_exceptions

from .errors import DuplicateTicketIdError, TicketNotFoundError
from .models import Attachment, Comment, HistoryEntry, Product, Ticket, TicketSource, UserType
from .state import TicketStatus

_TICKET_COLUMNS = """
    id, ticket_id, reporter, description, priority, issue_category, provider_name_id, source, products,
    case_origin, reporter_notes, contact_emails, vertical, error_code, channel_id, channel_type, script_name,
    issue_impact, attachments, status, assigned_team, assigned_user, close_reason, reopen_count,
    created_at, updated_at, resolved_at, closed_at, first_response_at
"""


class ConnectionSource(Protocol):
    def connection(self) -> Any:
        ...


class TicketRepository:
    """Data access layer for tickets, comments and history rows."""

    _CREATE_TICKETS_SQL = """
    CREATE TABLE IF NOT EXISTS tickets (
        id BIGSERIAL PRIMARY KEY,
        ticket_id TEXT NOT NULL UNIQUE,
        reporter TEXT NOT NULL,
        description TEXT NOT NULL,
        priority TEXT NULL,
        issue_category TEXT NULL,
        provider_name_id TEXT NULL,
        source TEXT NULL,
        products TEXT[] NOT NULL DEFAULT '{}',
        case_origin TEXT NULL,
        reporter_notes TEXT NULL,
        contact_emails TEXT NULL,
        vertical TEXT NULL,
        error_code TEXT NULL,
        channel_id TEXT NULL,
        channel_type TEXT NULL,
        script_name TEXT NULL,
        issue_impact TEXT NULL,
        attachments JSONB NOT NULL DEFAULT '[]'::jsonb,
        status TEXT NOT NULL DEFAULT 'open',
        assigned_team TEXT NULL,
        assigned_user TEXT NULL,
        close_reason TEXT NULL,
        reopen_count INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
        resolved_at TIMESTAMPTZ NULL,
        closed_at TIMESTAMPTZ NULL,
        first_response_at TIMESTAMPTZ NULL
    )
    """

    _CREATE_COMMENTS_SQL = """
    CREATE TABLE IF NOT EXISTS comments (
        id BIGSERIAL PRIMARY KEY,
        ticket_id BIGINT NOT NULL REFERENCES tickets(id) ON DELETE CASCADE,
        parent_comment_id BIGINT NULL REFERENCES comments(id) ON DELETE CASCADE,
        author_name TEXT NOT NULL,
        content TEXT NOT NULL,
        user_type TEXT NOT NULL CHECK (user_type IN ('internal', 'external')),
        attachments JSONB NOT NULL DEFAULT '[]'::jsonb,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """

    _CREATE_HISTORY_SQL = """
    CREATE TABLE IF NOT EXISTS ticket_history (
        id BIGSERIAL PRIMARY KEY,
        ticket_id BIGINT NOT NULL REFERENCES tickets(id) ON DELETE CASCADE,
        action TEXT NOT NULL,
        details TEXT NOT NULL,
        user_name TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """

    _CREATE_TEAMS_SQL = """
    CREATE TABLE IF NOT EXISTS teams (
        id BIGSERIAL PRIMARY KEY,
        name TEXT NOT NULL UNIQUE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """

    _CREATE_USERS_SQL = """
    CREATE TABLE IF NOT EXISTS users (
        id BIGSERIAL PRIMARY KEY,
        name TEXT NOT NULL,
        email TEXT NULL UNIQUE,
        user_type TEXT NOT NULL DEFAULT 'internal',
        team_id BIGINT NULL REFERENCES teams(id) ON DELETE SET NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """

    _INSERT_TICKET_SQL = f"""
    INSERT INTO tickets (
        ticket_id, reporter, description, priority, issue_category, provider_name_id, source, products,
        case_origin, reporter_notes, contact_emails, vertical, error_code, channel_id, channel_type,
        script_name, issue_impact, attachments, status, assigned_team, assigned_user, close_reason,
        reopen_count, created_at, updated_at, resolved_at, closed_at, first_response_at
    )
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16, $17, $18::jsonb,
            $19, $20, $21, $22, $23, $24, $25, $26, $27, $28)
    RETURNING {_TICKET_COLUMNS}
    """

    _UPDATE_TICKET_SQL = f"""
    UPDATE tickets
    SET reporter = $2,
        description = $3,
        priority = $4,
        issue_category = $5,
        provider_name_id = $6,
        source = $7,
        products = $8,
        case_origin = $9,
        reporter_notes = $10,
        contact_emails = $11,
        vertical = $12,
        error_code = $13,
        channel_id = $14,
        channel_type = $15,
        script_name = $16,
        issue_impact = $17,
        attachments = $18::jsonb,
        status = $19,
        assigned_team = $20,
        assigned_user = $21,
        close_reason = $22,
        reopen_count = $23,
        updated_at = $24,
        resolved_at = $25,
        closed_at = $26,
        first_response_at = $27
    WHERE ticket_id = $1
    RETURNING {_TICKET_COLUMNS}
    """

    _SELECT_TICKET_SQL = f"""
    SELECT {_TICKET_COLUMNS}
    FROM tickets
    WHERE ticket_id = $1
    """

    _INSERT_COMMENT_SQL = """
    INSERT INTO comments (ticket_id, parent_comment_id, author_name, content, user_type, attachments, created_at)
    SELECT t.id, $2::bigint, $3::text, $4::text, $5::text, $6::jsonb, $7::timestamptz
    FROM tickets t
    WHERE t.ticket_id = $1
    RETURNING id, $1::text AS ticket_id, parent_comment_id, author_name, content, user_type, attachments, created_at
    """

    _SELECT_COMMENT_SQL = """
    SELECT c.id, t.ticket_id, c.parent_comment_id, c.author_name, c.content, c.user_type, c.attachments, c.created_at
    FROM comments c
    JOIN tickets t ON t.id = c.ticket_id
    WHERE c.id = $1
    """

    _SELECT_COMMENTS_SQL = """
    SELECT c.id, t.ticket_id, c.parent_comment_id, c.author_name, c.content, c.user_type, c.attachments, c.created_at
    FROM comments c
    JOIN tickets t ON t.id = c.ticket_id
    WHERE t.ticket_id = $1
    ORDER BY c.created_at ASC, c.id ASC
    """

    _INSERT_HISTORY_SQL = """
    INSERT INTO ticket_history (ticket_id, action, details, user_name, created_at)
    SELECT t.id, $2::text, $3::text, $4::text, $5::timestamptz
    FROM tickets t
    WHERE t.ticket_id = $1
    RETURNING id, $1::text AS ticket_id, action, details, user_name, created_at
    """

    _SELECT_HISTORY_SQL = """
    SELECT h.id, t.ticket_id, h.action, h.details, h.user_name, h.created_at
    FROM ticket_history h
    JOIN tickets t ON t.id = h.ticket_id
    WHERE t.ticket_id = $1
    ORDER BY h.created_at DESC, h.id DESC
    """

    def __init__(self, store: ConnectionSource) -> None:
        self._store = store

    async def ensure_schema(self) -> None:
        async with self._store.connection() as connection:
            await connection.execute(self._CREATE_TICKETS_SQL)
            await connection.execute(self._CREATE_COMMENTS_SQL)
            await connection.execute(self._CREATE_HISTORY_SQL)
            await connection.execute(self._CREATE_TEAMS_SQL)
            await connection.execute(self._CREATE_USERS_SQL)

    async def create_ticket(self, ticket: Ticket) -> Ticket:
        async with self._store.connection() as connection:
            try:
                row = await connection.fetchrow(self._INSERT_TICKET_SQL, *_ticket_params(ticket))
            except pg_exceptions.UniqueViolationError as exc:
                raise DuplicateTicketIdError(f"Ticket id {ticket.ticket_id} already exists") from exc
        if row is None:
            raise RuntimeError("Failed to insert ticket")
        return self._row_to_ticket(row)

    async def save_ticket(self, ticket: Ticket) -> Ticket | None:
        """Write every mutable column; concurrent writers overwrite each other."""

        async with self._store.connection() as connection:
            params = _ticket_params(ticket)
            row = await connection.fetchrow(self._UPDATE_TICKET_SQL, *params[:23], *params[24:])
        if row is None:
            return None
        return self._row_to_ticket(row)

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        async with self._store.connection() as connection:
            row = await connection.fetchrow(self._SELECT_TICKET_SQL, ticket_id)
        if row is None:
            return None
        return self._row_to_ticket(row)

    async def add_comment(self, comment: Comment) -> Comment:
        async with self._store.connection() as connection:
            row = await connection.fetchrow(
                self._INSERT_COMMENT_SQL,
                comment.ticket_id,
                comment.parent_id,
                comment.author,
                comment.content,
                comment.user_type.value,
                _dump_attachments(comment.attachments),
                comment.created_at,
            )
        if row is None:
            raise TicketNotFoundError(f"Ticket {comment.ticket_id} not found")
        return self._row_to_comment(row)

    async def get_comment(self, comment_id: int) -> Comment | None:
        async with self._store.connection() as connection:
            row = await connection.fetchrow(self._SELECT_COMMENT_SQL, comment_id)
        if row is None:
            return None
        return self._row_to_comment(row)

    async def list_comments(self, ticket_id: str) -> list[Comment]:
        async with self._store.connection() as connection:
            rows = await connection.fetch(self._SELECT_COMMENTS_SQL, ticket_id)
        return [self._row_to_comment(row) for row in rows]

    async def add_history(
        self,
        ticket_id: str,
        *,
        action: str,
        details: str,
        user: str,
        created_at: datetime,
    ) -> HistoryEntry | None:
        async with self._store.connection() as connection:
            row = await connection.fetchrow(self._INSERT_HISTORY_SQL, ticket_id, action, details, user, created_at)
        if row is None:
            return None
        return self._row_to_history(row)

    async def list_history(self, ticket_id: str) -> list[HistoryEntry]:
        async with self._store.connection() as connection:
            rows = await connection.fetch(self._SELECT_HISTORY_SQL, ticket_id)
        return [self._row_to_history(row) for row in rows]

    @staticmethod
    def _row_to_ticket(row: Mapping[str, Any]) -> Ticket:
        source = row["source"]
        return Ticket(
            id=int(row["id"]),
            ticket_id=str(row["ticket_id"]),
            reporter=str(row["reporter"]),
            description=str(row["description"]),
            priority=row["priority"],
            issue_category=row["issue_category"],
            provider_name_id=row["provider_name_id"],
            source=TicketSource(str(source)) if source else None,
            products=tuple(Product(str(value)) for value in (row["products"] or [])),
            case_origin=row["case_origin"],
            reporter_notes=row["reporter_notes"],
            contact_emails=row["contact_emails"],
            vertical=row["vertical"],
            error_code=row["error_code"],
            channel_id=row["channel_id"],
            channel_type=row["channel_type"],
            script_name=row["script_name"],
            issue_impact=row["issue_impact"],
            attachments=_load_attachments(row["attachments"]),
            status=TicketStatus(str(row["status"])),
            assigned_team=row["assigned_team"],
            assigned_user=row["assigned_user"],
            close_reason=row["close_reason"],
            reopen_count=int(row["reopen_count"] or 0),
            created_at=_ensure_datetime(row["created_at"]),
            updated_at=_ensure_datetime(row["updated_at"]),
            resolved_at=_optional_datetime(row["resolved_at"]),
            closed_at=_optional_datetime(row["closed_at"]),
            first_response_at=_optional_datetime(row["first_response_at"]),
        )

    @staticmethod
    def _row_to_comment(row: Mapping[str, Any]) -> Comment:
        parent_id = row["parent_comment_id"]
        return Comment(
            id=int(row["id"]),
            ticket_id=str(row["ticket_id"]),
            parent_id=int(parent_id) if parent_id is not None else None,
            author=str(row["author_name"]),
            content=str(row["content"]),
            user_type=UserType(str(row["user_type"])),
            attachments=_load_attachments(row["attachments"]),
            created_at=_ensure_datetime(row["created_at"]),
        )

    @staticmethod
    def _row_to_history(row: Mapping[str, Any]) -> HistoryEntry:
        return HistoryEntry(
            id=int(row["id"]),
            ticket_id=str(row["ticket_id"]),
            action=str(row["action"]),
            details=str(row["details"]),
            user=str(row["user_name"]),
            created_at=_ensure_datetime(row["created_at"]),
        )


def _ticket_params(ticket: Ticket) -> tuple[Any, ...]:
    return (
        ticket.ticket_id,
        ticket.reporter,
        ticket.description,
        ticket.priority,
        ticket.issue_category,
        ticket.provider_name_id,
        ticket.source.value if ticket.source else None,
        [product.value for product in ticket.products],
        ticket.case_origin,
        ticket.reporter_notes,
        ticket.contact_emails,
        ticket.vertical,
        ticket.error_code,
        ticket.channel_id,
        ticket.channel_type,
        ticket.script_name,
        ticket.issue_impact,
        _dump_attachments(ticket.attachments),
        ticket.status.value,
        ticket.assigned_team,
        ticket.assigned_user,
        ticket.close_reason,
        ticket.reopen_count,
        ticket.created_at,
        ticket.updated_at,
        ticket.resolved_at,
        ticket.closed_at,
        ticket.first_response_at,
    )


def _dump_attachments(attachments: Sequence[Attachment]) -> str:
    return json.dumps([{"id": item.id, "filename": item.filename, "size": item.size} for item in attachments])


def _load_attachments(value: Any) -> tuple[Attachment, ...]:
    if value is None:
        return ()
    if isinstance(value, (str, bytes)):
        value = json.loads(value)
    return tuple(
        Attachment(id=str(item["id"]), filename=str(item["filename"]), size=item.get("size")) for item in value
    )


def _ensure_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    return datetime.fromisoformat(str(value))


def _optional_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    return _ensure_datetime(value)
