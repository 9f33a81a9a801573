from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Sequence

import asyncpg
from asyncpg import exceptions as pg_exceptions

from ticketdesk.tickets.errors import (
    SchemaMissingError,
    StoreConfigurationError,
    StoreConnectionError,
    StoreError,
)

logger = logging.getLogger(__name__)

_GARBLED_RESPONSE_MESSAGE = (
    "Invalid response from database - your DATABASE_URL is probably wrong "
    "(check the host, database name and driver scheme)."
)

_LIST_TABLES_SQL = """
SELECT table_name
FROM information_schema.tables
WHERE table_schema = 'public'
ORDER BY table_name
"""

_EXISTING_TABLES_SQL = """
SELECT table_name
FROM information_schema.tables
WHERE table_schema = 'public'
AND table_name = ANY($1::text[])
"""


@dataclass(slots=True)
class ProbeResult:
    success: bool
    message: str


@dataclass(slots=True)
class TableListing:
    success: bool
    tables: list[str]
    message: str


@dataclass(slots=True)
class TableCheck:
    success: bool
    missing_tables: list[str]
    message: str


def _is_garbled_response(exc: BaseException) -> bool:
    if isinstance(exc, (json.JSONDecodeError, pg_exceptions.ProtocolViolationError)):
        return True
    return str(exc).startswith("Unexpected token")


def describe_store_error(exc: BaseException) -> str:
    """Turn a driver failure into an operator-facing message."""

    if isinstance(exc, StoreError):
        return str(exc)
    if _is_garbled_response(exc):
        return _GARBLED_RESPONSE_MESSAGE
    return f"Database connection failed - {exc}"


@dataclass(slots=True)
class PostgresStore:
    """Lazily created asyncpg pool plus connectivity and schema probes."""

    dsn: str | None
    min_size: int = 1
    max_size: int = 5
    command_timeout: float | None = 10.0
    _pool: asyncpg.Pool | None = None

    async def get_pool(self) -> asyncpg.Pool:
        if self._pool is not None:
            return self._pool
        if not self.dsn:
            raise StoreConfigurationError(
                "DATABASE_URL environment variable is not set - add it to the environment or .env file"
            )
        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=self.command_timeout,
            )
        except (OSError, asyncio.TimeoutError, pg_exceptions.PostgresError, pg_exceptions.InterfaceError) as exc:
            raise StoreConnectionError(describe_store_error(exc)) from exc
        logger.info("Created PostgreSQL pool (min=%s, max=%s)", self.min_size, self.max_size)
        return self._pool

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[Any]:
        """Acquire a pooled connection, translating driver errors at the boundary."""

        pool = await self.get_pool()
        try:
            async with pool.acquire() as connection:
                yield connection
        except pg_exceptions.UndefinedTableError as exc:
            raise SchemaMissingError(_missing_from_message(str(exc))) from exc
        except (OSError, asyncio.TimeoutError, pg_exceptions.InterfaceError, json.JSONDecodeError) as exc:
            raise StoreConnectionError(describe_store_error(exc)) from exc
        except pg_exceptions.PostgresError as exc:
            if _is_garbled_response(exc):
                raise StoreConnectionError(_GARBLED_RESPONSE_MESSAGE) from exc
            raise StoreError(f"Database error - {exc}") from exc

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def test_connection(self) -> ProbeResult:
        """Run ``SELECT 1``; never raises."""

        try:
            async with self.connection() as connection:
                value = await connection.fetchval("SELECT 1 AS ok")
        except Exception as exc:
            logger.error("test_connection(): driver failure: %s", exc)
            return ProbeResult(success=False, message=describe_store_error(exc))
        return ProbeResult(success=True, message=f"Database OK - returned: {value if value is not None else 'unknown'}")

    async def get_table_info(self) -> TableListing:
        try:
            async with self.connection() as connection:
                rows = await connection.fetch(_LIST_TABLES_SQL)
        except Exception as exc:
            logger.error("get_table_info() error: %s", exc)
            return TableListing(success=False, tables=[], message=str(exc))
        names = [str(row["table_name"]) for row in rows]
        return TableListing(success=True, tables=names, message=f"Found {len(names)} tables")

    async def check_tables_exist(self, table_names: Sequence[str]) -> TableCheck:
        try:
            async with self.connection() as connection:
                rows = await connection.fetch(_EXISTING_TABLES_SQL, list(table_names))
        except Exception as exc:
            logger.error("check_tables_exist() error: %s", exc)
            return TableCheck(success=False, missing_tables=[], message=str(exc))
        existing = {str(row["table_name"]) for row in rows}
        missing = [name for name in table_names if name not in existing]
        if missing:
            return TableCheck(success=False, missing_tables=missing, message=f"Missing tables: {', '.join(missing)}")
        return TableCheck(success=True, missing_tables=[], message="All tables exist")


def _missing_from_message(message: str) -> list[str]:
    # asyncpg reports: relation "tickets" does not exist
    start = message.find('"')
    end = message.find('"', start + 1)
    if start == -1 or end == -1:
        return [message]
    return [message[start + 1 : end]]
