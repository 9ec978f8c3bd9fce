from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from apps.api.dependencies import tickets as ticket_deps
from apps.api.dependencies.auth import ROLE_PERMISSIONS, TOKEN_ACTOR_MAP, Action, Module
from apps.api.main import create_app
from apps.api.tickets.errors import (
    ConflictError,
    EmptyCommentError,
    InvalidStateError,
    TicketNotFoundError,
    TicketStorageError,
)
from apps.api.tickets.models import (
    ActorKind,
    CategoryCount,
    Comment,
    EmployeeHistory,
    EmployeeStats,
    EventKind,
    Feedback,
    Interaction,
    StaffMember,
    StaffRole,
    StatusCounts,
    Ticket,
    TicketDetail,
    TicketEvent,
    TicketPage,
    TicketSummary,
)
from apps.api.tickets.state import TicketStatus

STUDENT_HEADERS = {"Authorization": "Bearer student-token"}
ADMIN_HEADERS = {"Authorization": "Bearer admin-token"}
MANAGER_HEADERS = {"Authorization": "Bearer manager-token"}
WORKER_HEADERS = {"Authorization": "Bearer worker-token"}


def _make_ticket(*, status: TicketStatus = TicketStatus.PENDING) -> Ticket:
    now = datetime.now(timezone.utc)
    return Ticket(
        id="t-1",
        ticket_number="TCK-0001",
        category_id=1,
        sub_category_id=None,
        title="Leaking pipe",
        description="Water on the floor",
        photo_ref=None,
        status=status,
        student_id="student-1",
        created_at=now,
        updated_at=now,
    )


def _make_event(*, to_status: TicketStatus = TicketStatus.PENDING) -> TicketEvent:
    return TicketEvent(
        ticket_id="t-1",
        kind=EventKind.STATUS_CHANGED,
        actor_id="student-1",
        created_at=datetime.now(timezone.utc),
        to_status=to_status,
        payload={"reason": "created", "notes": None},
        seq=1,
    )


def _make_detail(*, status: TicketStatus = TicketStatus.PENDING) -> TicketDetail:
    return TicketDetail(
        ticket=_make_ticket(status=status),
        assignments=[],
        comments=[],
        feedback=None,
        history=[_make_event()],
    )


@pytest.fixture
def api_client():
    app = create_app()
    engine = AsyncMock()
    stats = AsyncMock()

    async def override_engine():
        return engine

    async def override_stats():
        return stats

    app.dependency_overrides[ticket_deps.get_lifecycle_engine] = override_engine
    app.dependency_overrides[ticket_deps.get_stats_aggregator] = override_stats

    client = TestClient(app)
    try:
        yield client, engine, stats
    finally:
        app.dependency_overrides.clear()


def test_create_ticket_endpoint_returns_created(api_client):
    client, engine, _ = api_client
    engine.create_ticket = AsyncMock(return_value=_make_detail())

    response = client.post(
        "/tickets",
        json={"category_id": 1, "title": "Leaking pipe", "description": "Water on the floor"},
        headers=STUDENT_HEADERS,
    )

    assert response.status_code == 201
    body = response.json()
    assert body["ticket_number"] == "TCK-0001"
    assert body["status"] == "pending"
    assert body["step"] == 0
    assert body["history"][0]["payload"]["reason"] == "created"
    args = engine.create_ticket.await_args
    assert args.args[0] == TOKEN_ACTOR_MAP["student-token"]
    assert args.kwargs["title"] == "Leaking pipe"


def test_staff_cannot_create_tickets(api_client):
    client, engine, _ = api_client

    response = client.post(
        "/tickets",
        json={"category_id": 1, "title": "Leaking pipe", "description": "Water"},
        headers=ADMIN_HEADERS,
    )

    assert response.status_code == 403
    assert response.json()["kind"] == "forbidden"
    engine.create_ticket.assert_not_awaited()


def test_missing_token_is_unauthorized(api_client):
    client, _, _ = api_client

    response = client.get("/tickets/t-1")

    assert response.status_code == 401


def test_unknown_token_is_rejected_by_middleware(api_client):
    client, _, _ = api_client

    response = client.get("/tickets/t-1", headers={"Authorization": "Bearer forged"})

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid authentication credentials"


def test_list_tickets_passes_filters(api_client):
    client, engine, _ = api_client
    page = TicketPage(
        items=[TicketSummary(ticket=_make_ticket(status=TicketStatus.RESOLVING), assignee_ids=["wrk-1"])],
        total=1,
        page=1,
        limit=20,
    )
    engine.list_tickets = AsyncMock(return_value=page)

    response = client.get(
        "/tickets",
        params={"status": "resolving", "assigned_to": "wrk-1", "search": "pipe", "limit": 20},
        headers=WORKER_HEADERS,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 1
    assert body["pages"] == 1
    assert body["items"][0]["assignee_ids"] == ["wrk-1"]
    filters = engine.list_tickets.await_args.args[0]
    assert filters.status is TicketStatus.RESOLVING
    assert filters.assigned_to == "wrk-1"
    assert filters.search == "pipe"
    assert filters.limit == 20


def test_list_tickets_rejects_oversized_pages(api_client):
    client, _, _ = api_client

    response = client.get("/tickets", params={"limit": 500}, headers=ADMIN_HEADERS)

    assert response.status_code == 422


def test_students_cannot_list_all_tickets(api_client):
    client, _, _ = api_client

    response = client.get("/tickets", headers=STUDENT_HEADERS)

    assert response.status_code == 403


def test_my_tickets_for_student(api_client):
    client, engine, _ = api_client
    engine.list_student_tickets = AsyncMock(
        return_value=TicketPage(items=[TicketSummary(ticket=_make_ticket())], total=1, page=1, limit=50)
    )

    response = client.get("/tickets/mine", headers=STUDENT_HEADERS)

    assert response.status_code == 200
    assert response.json()["items"][0]["id"] == "t-1"


def test_get_ticket_not_found(api_client):
    client, engine, _ = api_client
    engine.get_ticket = AsyncMock(side_effect=TicketNotFoundError("Ticket missing not found"))

    response = client.get("/tickets/missing", headers=ADMIN_HEADERS)

    assert response.status_code == 404
    assert response.json() == {"kind": "not_found", "message": "Ticket missing not found"}


def test_assign_endpoint_forwards_assignees(api_client):
    client, engine, _ = api_client
    engine.assign = AsyncMock(return_value=_make_detail())

    response = client.post(
        "/tickets/t-1/assign",
        json={"assigned_to": ["wrk-1", "wrk-2"], "notes": "Urgent"},
        headers=MANAGER_HEADERS,
    )

    assert response.status_code == 200
    engine.assign.assert_awaited_once_with(
        "t-1", TOKEN_ACTOR_MAP["manager-token"], ["wrk-1", "wrk-2"], notes="Urgent"
    )


def test_staff_status_change_conflict(api_client):
    client, engine, _ = api_client
    engine.change_status = AsyncMock(side_effect=InvalidStateError("Cannot move ticket"))

    response = client.put("/tickets/t-1/status", json={"status": "pending"}, headers=ADMIN_HEADERS)

    assert response.status_code == 409
    assert response.json()["kind"] == "invalid_state"


def test_student_status_pending_reopens(api_client):
    client, engine, _ = api_client
    engine.reopen = AsyncMock(return_value=_make_detail())

    response = client.put(
        "/tickets/t-1/status",
        json={"status": "pending", "notes": "not satisfied"},
        headers=STUDENT_HEADERS,
    )

    assert response.status_code == 200
    engine.reopen.assert_awaited_once_with("t-1", TOKEN_ACTOR_MAP["student-token"], "not satisfied")
    engine.change_status.assert_not_awaited()


def test_student_cannot_set_other_statuses(api_client):
    client, engine, _ = api_client

    response = client.put("/tickets/t-1/status", json={"status": "closed"}, headers=STUDENT_HEADERS)

    assert response.status_code == 403
    engine.reopen.assert_not_awaited()


def test_add_comment_returns_created(api_client):
    client, engine, _ = api_client
    engine.add_comment = AsyncMock(
        return_value=Comment(
            id="c-1",
            ticket_id="t-1",
            author_id="worker-1",
            author_kind=ActorKind.STAFF,
            text="On my way",
            is_internal=True,
            created_at=datetime.now(timezone.utc),
        )
    )

    response = client.post(
        "/tickets/t-1/comments",
        json={"comment_text": "On my way", "is_internal": True},
        headers=WORKER_HEADERS,
    )

    assert response.status_code == 201
    assert response.json()["is_internal"] is True


def test_blank_comment_is_bad_request(api_client):
    client, engine, _ = api_client
    engine.add_comment = AsyncMock(side_effect=EmptyCommentError("Comment text is required"))

    response = client.post("/tickets/t-1/comments", json={"comment_text": " "}, headers=STUDENT_HEADERS)

    assert response.status_code == 400
    assert response.json()["kind"] == "empty_comment"


def test_comment_endpoint_forwards_comment_text(api_client):
    client, engine, _ = api_client
    engine.add_comment = AsyncMock(
        return_value=Comment(
            id="c-2",
            ticket_id="t-1",
            author_id="student-1",
            author_kind=ActorKind.STUDENT,
            text="Water is back",
            is_internal=False,
            created_at=datetime.now(timezone.utc),
        )
    )

    response = client.post("/tickets/t-1/comments", json={"comment_text": "Water is back"}, headers=STUDENT_HEADERS)

    assert response.status_code == 201
    engine.add_comment.assert_awaited_once_with(
        "t-1", TOKEN_ACTOR_MAP["student-token"], "Water is back", is_internal=False
    )


def test_comment_without_comment_text_is_rejected(api_client):
    client, engine, _ = api_client

    response = client.post("/tickets/t-1/comments", json={"text": "Water is back"}, headers=STUDENT_HEADERS)

    assert response.status_code == 422
    engine.add_comment.assert_not_awaited()


@pytest.mark.parametrize(
    ("actions", "expected"),
    [
        (frozenset({Action.READ, Action.WRITE}), 200),
        (frozenset({Action.READ, Action.UPDATE}), 403),
    ],
)
def test_assign_and_status_change_require_write(api_client, monkeypatch, actions, expected):
    client, engine, _ = api_client
    engine.assign = AsyncMock(return_value=_make_detail())
    engine.change_status = AsyncMock(return_value=_make_detail(status=TicketStatus.RESOLVING))
    monkeypatch.setitem(ROLE_PERMISSIONS, StaffRole.WORKER, {Module.TICKET_MANAGEMENT: actions})

    assign = client.post("/tickets/t-1/assign", json={"assigned_to": ["wrk-2"]}, headers=WORKER_HEADERS)
    change = client.put("/tickets/t-1/status", json={"status": "resolving"}, headers=WORKER_HEADERS)

    assert assign.status_code == expected
    assert change.status_code == expected


def test_feedback_endpoint(api_client):
    client, engine, _ = api_client
    engine.submit_feedback = AsyncMock(
        return_value=Feedback(
            id="f-1",
            ticket_id="t-1",
            student_id="student-1",
            rating=4,
            feedback_text="Thanks",
            created_at=datetime.now(timezone.utc),
        )
    )

    response = client.post(
        "/tickets/t-1/feedback", json={"rating": 4, "feedback_text": "Thanks"}, headers=STUDENT_HEADERS
    )

    assert response.status_code == 201
    assert response.json()["rating"] == 4


def test_duplicate_feedback_is_conflict(api_client):
    client, engine, _ = api_client
    engine.submit_feedback = AsyncMock(side_effect=ConflictError("Feedback already submitted for this ticket"))

    response = client.post("/tickets/t-1/feedback", json={"rating": 2}, headers=STUDENT_HEADERS)

    assert response.status_code == 409
    assert response.json()["kind"] == "conflict"


def test_storage_errors_hide_details(api_client):
    client, engine, _ = api_client
    engine.get_ticket = AsyncMock(side_effect=TicketStorageError())

    response = client.get("/tickets/t-1", headers=ADMIN_HEADERS)

    assert response.status_code == 500
    assert response.json() == {"kind": "internal", "message": "Internal storage error"}


def test_stats_endpoint(api_client):
    client, _, stats = api_client
    counts = {status: 0 for status in TicketStatus}
    counts[TicketStatus.PENDING] = 2
    stats.status_counts = AsyncMock(return_value=StatusCounts(counts=counts, total=2))
    stats.category_counts = AsyncMock(
        return_value=[CategoryCount(category_id=1, category_name="Hostel", count=2)]
    )

    response = client.get("/tickets/stats", headers=ADMIN_HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body["status_counts"]["pending"] == 2
    assert body["status_counts"]["closed"] == 0
    assert body["total"] == 2
    assert body["top_categories"][0]["category_name"] == "Hostel"


def test_employee_history_endpoint(api_client):
    client, _, stats = api_client
    stats.employee_history = AsyncMock(
        return_value=EmployeeHistory(
            employee=StaffMember(id="wrk-1", name="Wen", role=StaffRole.WORKER),
            stats=EmployeeStats(total_assigned=3, completed=1, in_progress=1, critical_pending=1),
            interactions=[
                Interaction(
                    event=_make_event(to_status=TicketStatus.APPROACHING),
                    ticket_number="TCK-0001",
                    ticket_title="Leaking pipe",
                    ticket_status=TicketStatus.APPROACHING,
                )
            ],
        )
    )

    response = client.get("/employees/wrk-1/history", headers=MANAGER_HEADERS)

    assert response.status_code == 200
    body = response.json()
    assert body["stats"]["total_assigned"] == 3
    assert body["interactions"][0]["ticket_number"] == "TCK-0001"


def test_employee_history_requires_employee_permission(api_client):
    client, _, stats = api_client

    response = client.get("/employees/wrk-1/history", headers=WORKER_HEADERS)

    assert response.status_code == 403
    stats.employee_history.assert_not_awaited()


def test_ping_and_readiness_without_database(api_client):
    client, _, _ = api_client

    assert client.get("/ping").json() == {"status": "ok"}
    ready = client.get("/ping/ready")
    assert ready.status_code == 503


def test_metrics_endpoint_exposes_ticket_metrics(api_client):
    client, _, _ = api_client

    response = client.get("/metrics")

    assert response.status_code == 200
    assert "# TYPE ticket_actions_total counter" in response.text
