import re
from datetime import datetime, timedelta, timezone

import pytest

from ticketdesk.tickets.errors import TicketValidationError
from ticketdesk.tickets.models import Product, TicketSource
from ticketdesk.tickets.pipeline import (
    TicketIdGenerator,
    TicketIntakePipeline,
    normalize_contact_emails,
)
from ticketdesk.tickets.state import TicketStatus

NOW = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def test_run_builds_open_ticket_from_camel_case_form():
    pipeline = TicketIntakePipeline()

    ticket = pipeline.run(
        {
            "reporter": "  Dana ",
            "description": "Payroll export fails",
            "issueCategory": "Export",
            "providerNameId": "",
            "source": "partner",
            "products": ["QB", "TT", "QB"],
            "contactEmails": "a@x.com, A@x.com ,b@x.com",
            "attachments": [{"id": "blob-1", "filename": "log.txt", "size": 12}],
        },
        now=NOW,
    )

    assert re.fullmatch(r"TKT-\d{6}", ticket.ticket_id)
    assert ticket.status is TicketStatus.OPEN
    assert ticket.reporter == "Dana"
    assert ticket.issue_category == "Export"
    assert ticket.provider_name_id is None
    assert ticket.source is TicketSource.PARTNER
    assert ticket.products == (Product.QB, Product.TT)
    assert ticket.contact_emails == "a@x.com, b@x.com"
    assert ticket.attachments[0].filename == "log.txt"
    assert ticket.created_at == ticket.updated_at == NOW
    assert ticket.resolved_at is None and ticket.closed_at is None


@pytest.mark.parametrize(
    "payload",
    [
        {"description": "missing reporter"},
        {"reporter": "Dana"},
        {"reporter": "   ", "description": "blank reporter"},
    ],
)
def test_run_rejects_missing_required_fields(payload):
    with pytest.raises(TicketValidationError, match="Reporter and description are required fields"):
        TicketIntakePipeline().run(payload, now=NOW)


def test_run_rejects_unknown_product():
    with pytest.raises(TicketValidationError, match="Invalid ticket data"):
        TicketIntakePipeline().run(
            {"reporter": "Dana", "description": "x", "products": ["Excel"]},
            now=NOW,
        )


def test_normalize_changes_keeps_only_sent_fields():
    changes = TicketIntakePipeline().normalize_changes({"priority": " High ", "assignedTeam": ""})

    assert changes == {"priority": "High", "assigned_team": None}


def test_id_generator_uses_epoch_millis_suffix():
    generator = TicketIdGenerator()
    expected = int(NOW.timestamp() * 1000) % 1_000_000

    assert generator.next_id(NOW) == f"TKT-{expected:06d}"


def test_id_generator_never_repeats_within_process():
    generator = TicketIdGenerator()

    issued = {generator.next_id(NOW) for _ in range(50)}
    issued.add(generator.next_id(NOW + timedelta(milliseconds=3)))

    assert len(issued) == 51
    assert all(re.fullmatch(r"TKT-\d{6}", value) for value in issued)


def test_normalize_contact_emails_handles_empty_values():
    assert normalize_contact_emails(None) is None
    assert normalize_contact_emails(" , ") is None


def test_run_preserves_non_ascii_text():
    ticket = TicketIntakePipeline().run(
        {"reporter": "a@x.com", "description": "  Error x² on ﬁle ＡＢＣ  "},
        now=NOW,
    )

    assert ticket.description == "Error x² on ﬁle ＡＢＣ"


def test_normalize_changes_passes_non_editable_keys_through():
    changes = TicketIntakePipeline().normalize_changes(
        {"priority": "Low", "status": "closed", "attachments": []}
    )

    assert changes == {"priority": "Low", "status": "closed", "attachments": []}
