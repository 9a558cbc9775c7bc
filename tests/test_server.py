"""
Tests for the JSON API in board_server.
"""
import json

import pytest

from conftest import make_ticket
from board_server import build_app, create_app, validate_ticket
from ticketboard.board import BoardStore
from ticketboard.config import BoardConfig
from ticketboard.schema import Board, TicketStatus
from ticketboard.storage import BOARD_KEY


@pytest.fixture
def store(clock, persistence):
    store = BoardStore(clock=clock, board_factory=Board)
    store.initialize(persistence)
    persistence.attach(store)
    return store


@pytest.fixture
def client(store, persistence):
    app = create_app(store, persistence)
    app.config["TESTING"] = True
    return app.test_client()


def create(client, **fields):
    payload = {"title": "Fix login bug"}
    payload.update(fields)
    return client.post("/api/tickets", json=payload)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Validation
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_validate_ticket_requires_title_on_create():
    assert "title" in validate_ticket({})
    assert "title" in validate_ticket({"title": "ab"})
    assert "title" in validate_ticket({"title": "x" * 101})
    assert validate_ticket({"title": "Fix login bug"}) == {}


def test_validate_ticket_partial_skips_missing_title():
    assert validate_ticket({"priority": "high"}, partial=True) == {}


def test_validate_ticket_field_rules():
    errors = validate_ticket({
        "title": "Valid",
        "description": "d" * 1001,
        "status": "archived",
        "priority": "critical",
        "dueDate": "tomorrow",
        "estimatedHours": 1001,
        "tags": "not-a-list",
    })
    assert set(errors) == {"description", "status", "priority", "dueDate", "estimatedHours", "tags"}
    assert "non-negative" in validate_ticket({"title": "Valid", "estimatedHours": -1})["estimatedHours"]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Tickets
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_create_ticket(client, store):
    res = create(client, priority="high", assignee="Alice")
    assert res.status_code == 201
    data = res.get_json()
    assert data["ticket"]["priority"] == "high"
    assert store.board.tickets[0].id == data["id"]


def test_create_ticket_validation_error(client, store):
    res = create(client, title="no")
    assert res.status_code == 400
    assert "title" in res.get_json()["fields"]
    assert store.board.tickets == ()


def test_board_snapshot_shape(client):
    create(client)
    data = client.get("/api/board").get_json()
    assert set(data) == {"board", "filteredTickets", "filters", "isLoading", "error"}
    assert len(data["filteredTickets"]) == 1
    assert data["isLoading"] is False


def test_update_and_delete(client, store):
    ticket_id = create(client).get_json()["id"]
    res = client.put(f"/api/tickets/{ticket_id}", json={"assignee": "Bob"})
    assert res.status_code == 200
    assert res.get_json()["ticket"]["assignee"] == "Bob"

    res = client.delete(f"/api/tickets/{ticket_id}")
    assert res.get_json() == {"deleted": ticket_id}
    assert store.get_ticket(ticket_id) is None


def test_unknown_ticket_is_404(client):
    assert client.put("/api/tickets/nope", json={"title": "Valid"}).status_code == 404
    assert client.delete("/api/tickets/nope").status_code == 404
    assert client.post("/api/tickets/nope/move", json={"status": "done"}).status_code == 404


def test_sorted_ticket_listing(client):
    create(client, title="Low one", priority="low")
    create(client, title="Urgent one", priority="urgent")
    res = client.get("/api/tickets?sort=priority")
    assert [t["title"] for t in res.get_json()["tickets"]] == ["Urgent one", "Low one"]
    assert client.get("/api/tickets?sort=title").status_code == 400


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Moves
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_move_ticket_to_done(client):
    ticket_id = create(client).get_json()["id"]
    res = client.post(f"/api/tickets/{ticket_id}/move", json={"status": "done"})
    assert res.status_code == 200
    assert res.get_json()["ticket"]["completedAt"]


def test_move_to_same_column_conflicts(client):
    ticket_id = create(client).get_json()["id"]
    res = client.post(f"/api/tickets/{ticket_id}/move", json={"status": "todo"})
    assert res.status_code == 409
    assert "already" in res.get_json()["error"]


def test_move_into_full_column_conflicts(client, store):
    store.load_board(Board(tickets=tuple(
        make_ticket(f"R-{i}", status=TicketStatus.IN_REVIEW) for i in range(3)
    ) + (make_ticket("T-1"),)))
    res = client.post("/api/tickets/T-1/move", json={"status": "in-review"})
    assert res.status_code == 409
    assert res.get_json()["error"] == "Column limit reached (3)"


def test_move_with_bad_status(client):
    ticket_id = create(client).get_json()["id"]
    assert client.post(f"/api/tickets/{ticket_id}/move", json={"status": "nope"}).status_code == 400


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Filters, stats, theme
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_filters_round_trip(client):
    create(client, title="Fix login bug")
    create(client, title="Write docs")
    data = client.put("/api/filters", json={"search": "login"}).get_json()
    assert [t["title"] for t in data["filteredTickets"]] == ["Fix login bug"]
    assert client.get("/api/filters").get_json()["search"] == "login"

    data = client.delete("/api/filters").get_json()
    assert len(data["filteredTickets"]) == 2


def test_loosely_typed_filters_are_accepted(client):
    """A scalar set value and a string flag do not cause a server error"""
    create(client, title="Fix login bug")
    resp = client.put("/api/filters", json={"priorities": 5, "overdue": "false"})
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["filters"]["priorities"] == ["5"]
    assert data["filters"]["overdue"] is False
    assert data["filteredTickets"] == []


def test_stats_and_filter_options(client):
    create(client, assignee="Alice", tags=["bug"], status="done")
    stats = client.get("/api/stats").get_json()
    assert stats["total"] == 1
    assert stats["completed"] == 1
    options = client.get("/api/filter-options").get_json()
    assert options["assignees"] == ["Alice"]
    assert options["tags"] == ["bug"]


def test_theme(client):
    assert client.get("/api/theme").get_json() == {"theme": None}
    assert client.put("/api/theme", json={"theme": "dark"}).status_code == 200
    assert client.get("/api/theme").get_json() == {"theme": "dark"}
    assert client.put("/api/theme", json={}).status_code == 400


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Backup and export
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_backup_download_and_restore(client, store, kv):
    ticket_id = create(client).get_json()["id"]
    res = client.get("/api/backup")
    assert res.status_code == 200
    assert "kanban-backup-" in res.headers["Content-Disposition"]
    document = res.get_data(as_text=True)

    client.delete(f"/api/tickets/{ticket_id}")
    assert store.get_ticket(ticket_id) is None

    res = client.post("/api/backup", data=document, content_type="application/json")
    assert res.status_code == 200
    assert store.get_ticket(ticket_id) is not None


def test_invalid_backup_is_rejected(client, kv):
    before = kv.get(BOARD_KEY)
    res = client.post("/api/backup", data=json.dumps({"only": "this"}),
                      content_type="application/json")
    assert res.status_code == 422
    assert kv.get(BOARD_KEY) == before


def test_csv_export(client):
    create(client)
    res = client.get("/api/export.csv")
    assert res.mimetype == "text/csv"
    text = res.get_data(as_text=True)
    assert text.startswith("\ufeffID,Title")
    assert "Fix login bug" in text


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Auth
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_api_key_required_for_writes_when_configured(store, persistence):
    client = create_app(store, persistence, api_secret="s3cret").test_client()
    assert client.post("/api/tickets", json={"title": "Blocked"}).status_code == 401
    assert client.post("/api/tickets", json={"title": "Blocked"},
                       headers={"X-API-Key": "wrong"}).status_code == 403
    assert client.post("/api/tickets", json={"title": "Allowed"},
                       headers={"X-API-Key": "s3cret"}).status_code == 201
    assert client.get("/api/board").status_code == 200


def test_health(client):
    data = client.get("/health").get_json()
    assert data["status"] == "ok"
    assert data["tickets"] == 0


def test_build_app_uses_configured_board(tmp_path, monkeypatch):
    """First start generates a demo board named from config"""
    monkeypatch.delenv("TICKETBOARD_API_SECRET", raising=False)
    cfg = BoardConfig(db_path=str(tmp_path / "board.db"), board_name="Team Board",
                      column_limits={"in-review": 1})
    data = build_app(cfg).test_client().get("/api/board").get_json()
    assert data["board"]["name"] == "Team Board"
    assert len(data["board"]["tickets"]) == 10
    review = [c for c in data["board"]["columns"] if c["status"] == "in-review"]
    assert review[0]["limit"] == 1
