from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from .state import TicketStatus


class UserType(str, Enum):
    """Audience a comment is written for, and the kind of viewer reading it."""

    INTERNAL = "internal"
    EXTERNAL = "external"


class TicketSource(str, Enum):
    PARTNER = "partner"
    TAX = "tax"
    PS = "ps"
    OTHER = "other"


class Product(str, Enum):
    QB = "QB"
    TT = "TT"
    CK = "CK"
    QUICKEN = "Quicken"


@dataclass(slots=True, frozen=True)
class Attachment:
    """Reference to a file held by an external blob store."""

    id: str
    filename: str
    size: int | None = None


@dataclass(slots=True)
class Ticket:
    """Aggregate representing a support ticket entry."""

    ticket_id: str
    reporter: str
    description: str
    status: TicketStatus
    created_at: datetime
    updated_at: datetime
    priority: str | None = None
    issue_category: str | None = None
    provider_name_id: str | None = None
    source: TicketSource | None = None
    products: tuple[Product, ...] = ()
    case_origin: str | None = None
    reporter_notes: str | None = None
    contact_emails: str | None = None
    vertical: str | None = None
    error_code: str | None = None
    channel_id: str | None = None
    channel_type: str | None = None
    script_name: str | None = None
    issue_impact: str | None = None
    attachments: tuple[Attachment, ...] = ()
    assigned_team: str | None = None
    assigned_user: str | None = None
    close_reason: str | None = None
    reopen_count: int = 0
    resolved_at: datetime | None = None
    closed_at: datetime | None = None
    first_response_at: datetime | None = None
    id: int | None = None


@dataclass(slots=True)
class Comment:
    """Comment or single-level reply attached to a ticket."""

    ticket_id: str
    author: str
    content: str
    user_type: UserType
    created_at: datetime
    parent_id: int | None = None
    attachments: tuple[Attachment, ...] = ()
    id: int | None = None
    replies: list[Comment] = field(default_factory=list)

    @property
    def is_reply(self) -> bool:
        return self.parent_id is not None


@dataclass(slots=True)
class HistoryEntry:
    """Append-only audit record describing one ticket mutation."""

    id: int
    ticket_id: str
    action: str
    details: str
    user: str
    created_at: datetime


@dataclass(slots=True, frozen=True)
class TicketEvent:
    """History entry produced by the lifecycle engine, not yet persisted."""

    action: str
    details: str


# Fields a caller may edit after intake, with the labels used in history entries.
EDITABLE_FIELDS: dict[str, str] = {
    "reporter": "Reporter",
    "description": "Description",
    "priority": "Priority",
    "issue_category": "Issue Category",
    "provider_name_id": "Provider Name/ID",
    "source": "Source",
    "products": "Products",
    "case_origin": "Case Origin",
    "reporter_notes": "Reporter Notes",
    "contact_emails": "Contact Emails",
    "vertical": "Vertical",
    "error_code": "Error Code",
    "channel_id": "Channel ID",
    "channel_type": "Channel Type",
    "script_name": "Script Name",
    "issue_impact": "Issue Impact",
    "assigned_team": "Team",
    "assigned_user": "Assignee",
}
