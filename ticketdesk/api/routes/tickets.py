from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Body, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ticketdesk.dependencies.tickets import TicketServiceDep, ViewerType
from ticketdesk.tickets.errors import (
    EditNotPermittedError,
    InvalidTicketTransitionError,
    SchemaMissingError,
    StoreError,
    TicketNotFoundError,
    TicketServiceError,
    TicketValidationError,
)
from ticketdesk.tickets.lifecycle import PendingClose
from ticketdesk.tickets.models import Attachment, Comment, HistoryEntry, Product, Ticket, TicketSource, UserType
from ticketdesk.tickets.pipeline import AttachmentModel
from ticketdesk.tickets.sla import SLASnapshot, SLAStatus
from ticketdesk.tickets.state import TicketStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tickets", tags=["tickets"])

DEFAULT_ACTOR = "Current User"


class _CamelModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True, alias_generator=to_camel)


class AttachmentResponse(_CamelModel):
    id: str
    filename: str
    size: int | None = None


class TicketResponse(_CamelModel):
    ticket_id: str
    reporter: str
    description: str
    priority: str | None
    issue_category: str | None
    provider_name_id: str | None
    source: TicketSource | None
    products: list[Product]
    case_origin: str | None
    reporter_notes: str | None
    contact_emails: str | None
    vertical: str | None
    error_code: str | None
    channel_id: str | None
    channel_type: str | None
    script_name: str | None
    issue_impact: str | None
    attachments: list[AttachmentResponse]
    status: TicketStatus
    assigned_team: str | None
    assigned_user: str | None
    close_reason: str | None
    reopen_count: int
    created_at: datetime
    updated_at: datetime
    resolved_at: datetime | None
    closed_at: datetime | None
    first_response_at: datetime | None


class CommentResponse(_CamelModel):
    id: int
    ticket_id: str
    parent_id: int | None
    author: str
    content: str
    user_type: UserType
    attachments: list[AttachmentResponse]
    created_at: datetime
    replies: list[CommentResponse] = Field(default_factory=list)


class HistoryEntryResponse(_CamelModel):
    id: int
    ticket_id: str
    action: str
    details: str
    user: str
    created_at: datetime


class SLATimerResponse(_CamelModel):
    target: float
    elapsed: float
    status: SLAStatus


class SLAResponse(_CamelModel):
    tta: SLATimerResponse
    ttt: SLATimerResponse
    ttr: SLATimerResponse
    ttl: SLATimerResponse
    reopen_count: int
    computed_at: datetime


class PendingCloseResponse(_CamelModel):
    ticket_id: str
    from_status: TicketStatus
    requested_by: str
    requested_at: datetime


class TicketEnvelope(_CamelModel):
    success: bool = True
    ticket_id: str
    ticket: TicketResponse
    message: str | None = None


class PendingCloseEnvelope(_CamelModel):
    success: bool = True
    pending_close: PendingCloseResponse
    message: str


class CommentEnvelope(_CamelModel):
    success: bool = True
    comment: CommentResponse


class CommentListEnvelope(_CamelModel):
    success: bool = True
    comments: list[CommentResponse]


class HistoryEnvelope(_CamelModel):
    success: bool = True
    history: list[HistoryEntryResponse]


class SLAEnvelope(_CamelModel):
    success: bool = True
    ticket_id: str
    sla: SLAResponse


class StatusChangeRequest(_CamelModel):
    status: TicketStatus
    user: str = Field(default=DEFAULT_ACTOR, min_length=1)


class CloseTicketRequest(_CamelModel):
    reason: str | None = Field(default=None, max_length=2000)
    user: str = Field(default=DEFAULT_ACTOR, min_length=1)


class CommentCreateRequest(_CamelModel):
    author: str = Field(default=DEFAULT_ACTOR, min_length=1)
    content: str = Field(default="")
    user_type: UserType | None = None
    parent_id: int | None = None
    attachments: list[AttachmentModel] = Field(default_factory=list)


def _failure(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


def _error_response(exc: TicketServiceError) -> JSONResponse:
    if isinstance(exc, TicketValidationError):
        return _failure(status.HTTP_400_BAD_REQUEST, str(exc))
    if isinstance(exc, EditNotPermittedError):
        return _failure(status.HTTP_403_FORBIDDEN, str(exc))
    if isinstance(exc, TicketNotFoundError):
        return _failure(status.HTTP_404_NOT_FOUND, str(exc))
    if isinstance(exc, InvalidTicketTransitionError):
        return _failure(status.HTTP_409_CONFLICT, str(exc))
    if isinstance(exc, SchemaMissingError):
        return _failure(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            f"Database setup incomplete. {exc}. Please run the SQL setup scripts.",
        )
    logger.error("Ticket store failure: %s", exc)
    return _failure(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))


def _ticket_envelope(ticket: Ticket, message: str | None = None) -> TicketEnvelope:
    return TicketEnvelope(ticket_id=ticket.ticket_id, ticket=TicketResponse.model_validate(ticket), message=message)


def _to_comment(comment: Comment) -> CommentResponse:
    return CommentResponse.model_validate(comment)


def _to_history(entry: HistoryEntry) -> HistoryEntryResponse:
    return HistoryEntryResponse.model_validate(entry)


def _to_pending(pending: PendingClose) -> PendingCloseResponse:
    return PendingCloseResponse.model_validate(pending)


def _to_sla(snapshot: SLASnapshot) -> SLAResponse:
    return SLAResponse.model_validate(snapshot)


@router.post("", response_model=TicketEnvelope, status_code=status.HTTP_201_CREATED)
async def create_ticket(service: TicketServiceDep, payload: dict[str, Any] = Body(...)) -> Any:
    try:
        ticket = await service.create_ticket(payload)
    except TicketServiceError as exc:
        return _error_response(exc)
    except Exception:
        logger.exception("Unexpected failure while creating a ticket")
        return _failure(status.HTTP_500_INTERNAL_SERVER_ERROR, "Unknown error occurred")
    return _ticket_envelope(ticket, message="Ticket created successfully")


@router.get("/{ticket_id}", response_model=TicketEnvelope)
async def get_ticket(ticket_id: str, service: TicketServiceDep) -> Any:
    try:
        ticket = await service.get_ticket(ticket_id)
    except StoreError as exc:
        return _error_response(exc)
    if ticket is None:
        return _failure(status.HTTP_404_NOT_FOUND, f"Ticket {ticket_id} not found")
    return _ticket_envelope(ticket)


@router.patch("/{ticket_id}", response_model=TicketEnvelope)
async def update_ticket(
    ticket_id: str,
    service: TicketServiceDep,
    viewer: ViewerType,
    payload: dict[str, Any] = Body(...),
) -> Any:
    changes = dict(payload)
    actor = str(changes.pop("user", None) or DEFAULT_ACTOR)
    try:
        ticket = await service.update_fields(ticket_id, changes, actor=actor, viewer=viewer)
    except TicketServiceError as exc:
        return _error_response(exc)
    return _ticket_envelope(ticket, message="Ticket updated")


@router.post(
    "/{ticket_id}/status",
    response_model=TicketEnvelope,
    responses={status.HTTP_202_ACCEPTED: {"model": PendingCloseEnvelope}},
)
async def change_ticket_status(ticket_id: str, payload: StatusChangeRequest, service: TicketServiceDep) -> Any:
    try:
        outcome = await service.change_status(ticket_id, new_status=payload.status, actor=payload.user)
    except TicketServiceError as exc:
        return _error_response(exc)

    if outcome.pending_close is not None:
        envelope = PendingCloseEnvelope(
            pending_close=_to_pending(outcome.pending_close),
            message="A close reason is required to close this ticket",
        )
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content=envelope.model_dump(mode="json", by_alias=True),
        )
    return _ticket_envelope(outcome.ticket)


@router.post("/{ticket_id}/close", response_model=TicketEnvelope)
async def close_ticket(ticket_id: str, payload: CloseTicketRequest, service: TicketServiceDep) -> Any:
    try:
        ticket = await service.close_ticket(ticket_id, reason=payload.reason, actor=payload.user)
    except TicketServiceError as exc:
        return _error_response(exc)
    return _ticket_envelope(ticket, message="Ticket closed")


@router.post("/{ticket_id}/comments", response_model=CommentEnvelope, status_code=status.HTTP_201_CREATED)
async def add_comment(
    ticket_id: str,
    payload: CommentCreateRequest,
    service: TicketServiceDep,
    viewer: ViewerType,
) -> Any:
    attachments = [Attachment(id=item.id, filename=item.filename, size=item.size) for item in payload.attachments]
    try:
        comment = await service.add_comment(
            ticket_id,
            author=payload.author,
            content=payload.content,
            user_type=payload.user_type or viewer,
            parent_id=payload.parent_id,
            attachments=attachments,
            viewer=viewer,
        )
    except TicketServiceError as exc:
        return _error_response(exc)
    return CommentEnvelope(comment=_to_comment(comment))


@router.get("/{ticket_id}/comments", response_model=CommentListEnvelope)
async def list_comments(ticket_id: str, service: TicketServiceDep, viewer: ViewerType) -> Any:
    try:
        comments = await service.list_comments(ticket_id, viewer=viewer)
    except StoreError as exc:
        return _error_response(exc)
    return CommentListEnvelope(comments=[_to_comment(comment) for comment in comments])


@router.get("/{ticket_id}/history", response_model=HistoryEnvelope)
async def list_history(ticket_id: str, service: TicketServiceDep) -> Any:
    try:
        entries = await service.list_history(ticket_id)
    except StoreError as exc:
        return _error_response(exc)
    return HistoryEnvelope(history=[_to_history(entry) for entry in entries])


@router.get("/{ticket_id}/sla", response_model=SLAEnvelope)
async def get_ticket_sla(ticket_id: str, service: TicketServiceDep) -> Any:
    try:
        snapshot = await service.get_sla(ticket_id)
    except StoreError as exc:
        return _error_response(exc)
    if snapshot is None:
        return _failure(status.HTTP_404_NOT_FOUND, f"Ticket {ticket_id} not found")
    return SLAEnvelope(ticket_id=ticket_id, sla=_to_sla(snapshot))
