from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request

from ticketdesk.services.postgres import PostgresStore
from ticketdesk.tickets.models import UserType
from ticketdesk.tickets.service import TicketService


async def get_ticket_service(request: Request) -> TicketService:
    service = getattr(request.app.state, "ticket_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Ticket service is not configured")
    return service


async def get_store(request: Request) -> PostgresStore:
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise HTTPException(status_code=503, detail="Database store is not configured")
    return store


async def get_viewer_type(
    x_user_type: Annotated[str | None, Header(description="internal or external")] = None,
) -> UserType:
    """Viewer classification supplied by the caller; not an authentication check."""

    if not x_user_type:
        return UserType.INTERNAL
    try:
        return UserType(x_user_type.strip().lower())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="X-User-Type must be 'internal' or 'external'") from exc


TicketServiceDep = Annotated[TicketService, Depends(get_ticket_service)]
StoreDep = Annotated[PostgresStore, Depends(get_store)]
ViewerType = Annotated[UserType, Depends(get_viewer_type)]
