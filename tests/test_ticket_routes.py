from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from ticketdesk.dependencies import tickets as ticket_deps
from ticketdesk.main import create_app
from ticketdesk.services.postgres import ProbeResult, TableCheck, TableListing
from ticketdesk.tickets.errors import (
    CloseReasonRequiredError,
    EditNotPermittedError,
    SchemaMissingError,
    StoreConnectionError,
    TicketNotFoundError,
    TicketValidationError,
)
from ticketdesk.tickets.lifecycle import PendingClose
from ticketdesk.tickets.models import Comment, HistoryEntry, UserType
from ticketdesk.tickets.service import StatusChangeOutcome
from ticketdesk.tickets.sla import SLACalculator
from ticketdesk.tickets.state import TicketStatus

from conftest import FROZEN_NOW, build_ticket


@pytest.fixture
def ticket_client():
    app = create_app()
    service = AsyncMock()
    store = AsyncMock()

    async def override_service():
        return service

    async def override_store():
        return store

    app.dependency_overrides[ticket_deps.get_ticket_service] = override_service
    app.dependency_overrides[ticket_deps.get_store] = override_store

    client = TestClient(app)
    try:
        yield client, service, store
    finally:
        app.dependency_overrides.clear()


def test_ping(ticket_client):
    client, _, _ = ticket_client

    assert client.get("/ping").json() == {"status": "ok"}


def test_create_ticket_returns_created_envelope(ticket_client):
    client, service, _ = ticket_client
    service.create_ticket = AsyncMock(return_value=build_ticket(priority="High"))

    response = client.post("/tickets", json={"reporter": "Dana", "description": "Payroll export fails"})

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["ticketId"] == "TKT-000001"
    assert body["message"] == "Ticket created successfully"
    assert body["ticket"]["status"] == "open"
    assert body["ticket"]["issueCategory"] is None
    service.create_ticket.assert_awaited_with({"reporter": "Dana", "description": "Payroll export fails"})


def test_create_ticket_validation_failure_is_400(ticket_client):
    client, service, _ = ticket_client
    service.create_ticket = AsyncMock(
        side_effect=TicketValidationError("Reporter and description are required fields")
    )

    response = client.post("/tickets", json={"reporter": "Dana"})

    assert response.status_code == 400
    assert response.json() == {"success": False, "message": "Reporter and description are required fields"}


def test_create_ticket_missing_tables_is_500_with_setup_hint(ticket_client):
    client, service, _ = ticket_client
    service.create_ticket = AsyncMock(side_effect=SchemaMissingError(["comments", "teams"]))

    response = client.post("/tickets", json={"reporter": "Dana", "description": "x"})

    assert response.status_code == 500
    assert response.json()["message"] == (
        "Database setup incomplete. Missing tables: comments, teams. Please run the SQL setup scripts."
    )


def test_create_ticket_unexpected_failure_is_500(ticket_client):
    client, service, _ = ticket_client
    service.create_ticket = AsyncMock(side_effect=KeyError("boom"))

    response = client.post("/tickets", json={"reporter": "Dana", "description": "x"})

    assert response.status_code == 500
    assert response.json()["success"] is False


def test_get_ticket_not_found(ticket_client):
    client, service, _ = ticket_client
    service.get_ticket = AsyncMock(return_value=None)

    response = client.get("/tickets/TKT-404404")

    assert response.status_code == 404
    assert response.json()["success"] is False


def test_get_ticket_store_failure_is_500(ticket_client):
    client, service, _ = ticket_client
    service.get_ticket = AsyncMock(side_effect=StoreConnectionError("Database connection failed - refused"))

    response = client.get("/tickets/TKT-000001")

    assert response.status_code == 500
    assert response.json()["message"] == "Database connection failed - refused"


def test_status_change_to_closed_returns_pending_close(ticket_client):
    client, service, _ = ticket_client
    ticket = build_ticket()
    pending = PendingClose(
        ticket_id=ticket.ticket_id,
        from_status=TicketStatus.OPEN,
        requested_by="Agent",
        requested_at=FROZEN_NOW,
    )
    service.change_status = AsyncMock(return_value=StatusChangeOutcome(ticket=ticket, pending_close=pending))

    response = client.post(f"/tickets/{ticket.ticket_id}/status", json={"status": "closed", "user": "Agent"})

    assert response.status_code == 202
    body = response.json()
    assert body["pendingClose"]["ticketId"] == ticket.ticket_id
    assert body["pendingClose"]["fromStatus"] == "open"
    service.change_status.assert_awaited_with(ticket.ticket_id, new_status=TicketStatus.CLOSED, actor="Agent")


def test_status_change_applies(ticket_client):
    client, service, _ = ticket_client
    resolved = build_ticket(status=TicketStatus.RESOLVED, resolved_at=FROZEN_NOW)
    service.change_status = AsyncMock(return_value=StatusChangeOutcome(ticket=resolved))

    response = client.post("/tickets/TKT-000001/status", json={"status": "resolved"})

    assert response.status_code == 200
    assert response.json()["ticket"]["status"] == "resolved"
    assert service.change_status.await_args.kwargs["actor"] == "Current User"


def test_status_change_rejects_unknown_status(ticket_client):
    client, _, _ = ticket_client

    response = client.post("/tickets/TKT-000001/status", json={"status": "pending"})

    assert response.status_code == 422


def test_close_without_reason_is_400(ticket_client):
    client, service, _ = ticket_client
    service.close_ticket = AsyncMock(side_effect=CloseReasonRequiredError("A reason is required to close a ticket"))

    response = client.post("/tickets/TKT-000001/close", json={"reason": ""})

    assert response.status_code == 400


def test_close_ticket(ticket_client):
    client, service, _ = ticket_client
    closed = build_ticket(status=TicketStatus.CLOSED, closed_at=FROZEN_NOW, close_reason="Duplicate")
    service.close_ticket = AsyncMock(return_value=closed)

    response = client.post("/tickets/TKT-000001/close", json={"reason": "Duplicate", "user": "Agent"})

    assert response.status_code == 200
    assert response.json()["ticket"]["closeReason"] == "Duplicate"
    service.close_ticket.assert_awaited_with("TKT-000001", reason="Duplicate", actor="Agent")


def test_patch_passes_viewer_and_actor(ticket_client):
    client, service, _ = ticket_client
    service.update_fields = AsyncMock(return_value=build_ticket(priority="Low"))

    response = client.patch("/tickets/TKT-000001", json={"priority": "Low", "user": "Agent"})

    assert response.status_code == 200
    service.update_fields.assert_awaited_with(
        "TKT-000001", {"priority": "Low"}, actor="Agent", viewer=UserType.INTERNAL
    )


def test_patch_by_external_viewer_is_403(ticket_client):
    client, service, _ = ticket_client
    service.update_fields = AsyncMock(side_effect=EditNotPermittedError("Only internal users can edit tickets"))

    response = client.patch("/tickets/TKT-000001", json={"priority": "Low"}, headers={"X-User-Type": "external"})

    assert response.status_code == 403
    assert service.update_fields.await_args.kwargs["viewer"] is UserType.EXTERNAL


def test_invalid_viewer_header_is_400(ticket_client):
    client, _, _ = ticket_client

    response = client.get("/tickets/TKT-000001/comments", headers={"X-User-Type": "admin"})

    assert response.status_code == 400


def test_add_comment_defaults_user_type_to_viewer(ticket_client):
    client, service, _ = ticket_client
    comment = Comment(
        id=3,
        ticket_id="TKT-000001",
        author="Dana",
        content="Still failing",
        user_type=UserType.EXTERNAL,
        created_at=FROZEN_NOW,
    )
    service.add_comment = AsyncMock(return_value=comment)

    response = client.post(
        "/tickets/TKT-000001/comments",
        json={"author": "Dana", "content": "Still failing"},
        headers={"X-User-Type": "external"},
    )

    assert response.status_code == 201
    assert response.json()["comment"]["userType"] == "external"
    kwargs = service.add_comment.await_args.kwargs
    assert kwargs["user_type"] is UserType.EXTERNAL
    assert kwargs["viewer"] is UserType.EXTERNAL


def test_add_comment_to_missing_ticket_is_404(ticket_client):
    client, service, _ = ticket_client
    service.add_comment = AsyncMock(side_effect=TicketNotFoundError("Ticket TKT-404404 not found"))

    response = client.post("/tickets/TKT-404404/comments", json={"author": "Agent", "content": "hi"})

    assert response.status_code == 404


def test_list_comments_returns_threads(ticket_client):
    client, service, _ = ticket_client
    reply = Comment(
        id=2, ticket_id="TKT-000001", author="Agent", content="reply", user_type=UserType.INTERNAL,
        created_at=FROZEN_NOW + timedelta(minutes=1), parent_id=1,
    )
    top = Comment(
        id=1, ticket_id="TKT-000001", author="Dana", content="top", user_type=UserType.EXTERNAL,
        created_at=FROZEN_NOW, replies=[reply],
    )
    service.list_comments = AsyncMock(return_value=[top])

    response = client.get("/tickets/TKT-000001/comments")

    assert response.status_code == 200
    comments = response.json()["comments"]
    assert comments[0]["replies"][0]["parentId"] == 1
    service.list_comments.assert_awaited_with("TKT-000001", viewer=UserType.INTERNAL)


def test_history_endpoint(ticket_client):
    client, service, _ = ticket_client
    entry = HistoryEntry(
        id=1,
        ticket_id="TKT-000001",
        action="Ticket created",
        details="Ticket TKT-000001 was created",
        user="Dana",
        created_at=FROZEN_NOW,
    )
    service.list_history = AsyncMock(return_value=[entry])

    response = client.get("/tickets/TKT-000001/history")

    assert response.status_code == 200
    assert response.json()["history"][0]["user"] == "Dana"


def test_sla_endpoint(ticket_client):
    client, service, _ = ticket_client
    snapshot = SLACalculator().compute(build_ticket(), now=FROZEN_NOW + timedelta(hours=5))
    service.get_sla = AsyncMock(return_value=snapshot)

    response = client.get("/tickets/TKT-000001/sla")

    assert response.status_code == 200
    sla = response.json()["sla"]
    assert sla["tta"]["status"] == "Breached"
    assert sla["ttr"]["status"] == "OK"
    assert sla["reopenCount"] == 0


def test_sla_endpoint_not_found(ticket_client):
    client, service, _ = ticket_client
    service.get_sla = AsyncMock(return_value=None)

    assert client.get("/tickets/TKT-404404/sla").status_code == 404


def test_db_test_reports_probes(ticket_client):
    client, _, store = ticket_client
    store.test_connection = AsyncMock(return_value=ProbeResult(True, "Database OK - returned: 1"))
    store.get_table_info = AsyncMock(return_value=TableListing(True, ["tickets"], "Found 1 tables"))
    store.check_tables_exist = AsyncMock(
        return_value=TableCheck(False, ["comments"], "Missing tables: comments")
    )

    response = client.get("/db-test")

    assert response.status_code == 200
    body = response.json()
    assert body["connection"]["success"] is True
    assert body["tables"]["tables"] == ["tickets"]
    assert body["tableCheck"]["missingTables"] == ["comments"]
    assert "timestamp" in body
