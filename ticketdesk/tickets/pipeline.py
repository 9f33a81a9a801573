from __future__ import annotations

import threading
from collections import deque
from datetime import datetime
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from .errors import TicketValidationError
from .models import Attachment, Product, Ticket, TicketSource
from .state import TicketStateMachine

_TICKET_ID_MODULUS = 1_000_000
_RECENT_ID_WINDOW = 4096


class AttachmentModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    id: str = Field(..., min_length=1)
    filename: str = Field(..., min_length=1)
    size: int | None = Field(default=None, ge=0)


class TicketForm(BaseModel):
    """Loosely typed form submission; accepts camelCase or snake_case keys."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, extra="ignore")

    reporter: str | None = None
    description: str | None = None
    priority: str | None = None
    issue_category: str | None = None
    provider_name_id: str | None = None
    source: TicketSource | None = None
    products: list[Product] = Field(default_factory=list)
    case_origin: str | None = None
    reporter_notes: str | None = None
    contact_emails: str | None = None
    vertical: str | None = None
    error_code: str | None = None
    channel_id: str | None = None
    channel_type: str | None = None
    script_name: str | None = None
    issue_impact: str | None = None
    attachments: list[AttachmentModel] = Field(default_factory=list)
    assigned_team: str | None = None
    assigned_user: str | None = None

    @field_validator("*", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip() or None
        return value

    @field_validator("products", "attachments", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return [] if value is None else value


def normalize_contact_emails(value: str | None) -> str | None:
    """Trim and de-duplicate a comma separated address list."""

    if not value:
        return None
    seen: set[str] = set()
    addresses: list[str] = []
    for item in value.split(","):
        address = item.strip()
        if not address or address.lower() in seen:
            continue
        seen.add(address.lower())
        addresses.append(address)
    return ", ".join(addresses) or None


def _field_values(form: TicketForm, names: set[str] | None = None) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for name in TicketForm.model_fields:
        if name == "attachments" or (names is not None and name not in names):
            continue
        value = getattr(form, name)
        if name == "products":
            value = tuple(dict.fromkeys(value))
        elif name == "contact_emails":
            value = normalize_contact_emails(value)
        values[name] = value
    return values


# Snake and camel spellings of the form fields an edit may carry.
_EDITABLE_KEYS: frozenset[str] = frozenset(
    key
    for name in TicketForm.model_fields
    if name != "attachments"
    for key in (name, to_camel(name))
)


class TicketIdGenerator:
    """Produce ``TKT-######`` identifiers from the last six digits of epoch milliseconds.

    The six-digit space is small; identifiers issued by this process are
    kept unique by stepping past recently issued values. Collisions across
    processes are left to the store's unique constraint.
    """

    def __init__(self) -> None:
        self._recent: deque[int] = deque(maxlen=_RECENT_ID_WINDOW)
        self._lock = threading.Lock()

    def next_id(self, now: datetime) -> str:
        value = int(now.timestamp() * 1000) % _TICKET_ID_MODULUS
        with self._lock:
            while value in self._recent:
                value = (value + 1) % _TICKET_ID_MODULUS
            self._recent.append(value)
        return f"TKT-{value:06d}"


class TicketIntakePipeline:
    """Validate form submissions and turn them into new tickets."""

    def __init__(self, id_generator: TicketIdGenerator | None = None) -> None:
        self._id_generator = id_generator or TicketIdGenerator()

    def new_ticket_id(self, now: datetime) -> str:
        return self._id_generator.next_id(now)

    def parse(self, payload: Mapping[str, Any]) -> TicketForm:
        try:
            return TicketForm.model_validate(dict(payload))
        except ValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
            )
            raise TicketValidationError(f"Invalid ticket data - {problems}") from exc

    def run(self, payload: Mapping[str, Any], *, now: datetime) -> Ticket:
        form = self.parse(payload)
        if not form.reporter or not form.description:
            raise TicketValidationError("Reporter and description are required fields")

        values = _field_values(form)
        attachments = tuple(
            Attachment(id=item.id, filename=item.filename, size=item.size) for item in form.attachments
        )
        return Ticket(
            ticket_id=self.new_ticket_id(now),
            status=TicketStateMachine.initial_state(),
            created_at=now,
            updated_at=now,
            attachments=attachments,
            **values,
        )

    def normalize_changes(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        """Normalize a partial edit, keeping only the fields that were sent.

        Keys that are not editable ticket fields are passed through untouched
        so the lifecycle engine can reject them.
        """

        form = self.parse(payload)
        changes = _field_values(form, names=set(form.model_fields_set))
        for key, value in payload.items():
            if key not in _EDITABLE_KEYS:
                changes[key] = value
        return changes
