from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from ticketdesk.core.config import get_settings
from ticketdesk.dependencies.tickets import StoreDep
from ticketdesk.services.postgres import describe_store_error

logger = logging.getLogger(__name__)

router = APIRouter(tags=["diagnostics"])


@router.get("/db-test", summary="Database connectivity and schema probe")
async def db_test(store: StoreDep) -> Any:
    """Report connectivity, the public tables, and which required tables are missing."""

    settings = get_settings()
    try:
        connection = await store.test_connection()
        tables = await store.get_table_info()
        table_check = await store.check_tables_exist(settings.required_tables)
    except Exception as exc:
        logger.exception("Database diagnostics failed")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "message": describe_store_error(exc)},
        )

    return {
        "connection": {"success": connection.success, "message": connection.message},
        "tables": {"success": tables.success, "tables": tables.tables, "message": tables.message},
        "tableCheck": {
            "success": table_check.success,
            "missingTables": table_check.missing_tables,
            "message": table_check.message,
        },
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
