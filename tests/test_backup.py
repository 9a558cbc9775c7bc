"""
Tests for backup documents and the CSV export.
"""
import csv
import io
import json
from datetime import date, timedelta

import pytest

from conftest import EPOCH, make_ticket
from ticketboard.backup import (
    CSV_HEADER, UTF8_BOM, BackupFormatError,
    backup_filename, csv_filename, export_all, export_tickets_csv, import_all, validate_document,
)
from ticketboard.board import BoardStore
from ticketboard.schema import Board, Priority, TicketStatus
from ticketboard.storage import BOARD_KEY, FILTERS_KEY, THEME_KEY, BoardPersistence, KeyValueStore


@pytest.fixture
def populated(clock, kv, persistence):
    """A store wired to persistence with a couple of tickets and a filter."""
    store = BoardStore(clock=clock, board_factory=Board)
    persistence.attach(store)
    store.create_ticket({"title": "Fix login bug", "description": "Session expires",
                         "assignee": "Alice", "priority": "high", "tags": ["bug", "auth"]})
    store.create_ticket({"title": "Write docs", "status": "in-progress"})
    store.set_filters({"priorities": ["high"]})
    persistence.save_theme("dark")
    return store


def valid_document(**overrides):
    values = {
        BOARD_KEY: json.dumps(Board(tickets=(make_ticket("T-1"),)).to_dict()),
        FILTERS_KEY: json.dumps({"search": ""}),
    }
    values.update(overrides)
    return json.dumps(values)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Export / import
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_export_contains_every_key(populated, kv):
    document = json.loads(export_all(kv))
    assert set(document) == {BOARD_KEY, FILTERS_KEY, THEME_KEY}
    assert all(isinstance(v, str) for v in document.values())


def test_export_then_import_restores_equivalent_board(populated, kv, tmp_path, clock):
    document = export_all(kv)
    fresh = KeyValueStore(str(tmp_path / "fresh.db"))
    assert import_all(fresh, document)

    restored = BoardStore(clock=clock, board_factory=Board)
    restored.initialize(BoardPersistence(fresh))
    assert restored.board == populated.board
    assert restored.filters == populated.filters
    assert BoardPersistence(fresh).load_theme() == "dark"


def test_untitled_ticket_survives_export_and_import(clock, kv, persistence, tmp_path):
    store = BoardStore(clock=clock, board_factory=Board)
    persistence.attach(store)
    ticket = store.create_ticket({"description": "no title given"})

    fresh = KeyValueStore(str(tmp_path / "fresh.db"))
    assert import_all(fresh, export_all(kv))
    assert BoardPersistence(fresh).load_board().tickets == (ticket,)


def test_import_keeps_unknown_keys(kv):
    assert import_all(kv, valid_document(**{"kanban-extra": "kept"}))
    assert kv.get("kanban-extra") == "kept"


def test_import_missing_required_key_leaves_storage_untouched(populated, kv):
    before = kv.items()
    document = json.dumps({BOARD_KEY: json.loads(valid_document())[BOARD_KEY]})
    assert import_all(kv, document) is False
    assert kv.items() == before


def test_import_rejects_garbage(kv):
    assert import_all(kv, "not json at all") is False
    assert import_all(kv, "[1, 2]") is False
    assert kv.keys() == []


@pytest.mark.parametrize("document, message", [
    (json.dumps({BOARD_KEY: {"id": "b"}, FILTERS_KEY: "{}"}), "not a string"),
    (valid_document(**{BOARD_KEY: "{oops"}), "not valid JSON"),
    (valid_document(**{BOARD_KEY: json.dumps({"id": "b", "name": "B", "columns": []})}), "tickets"),
    (valid_document(**{BOARD_KEY: json.dumps({
        "id": "b", "name": "B", "columns": [],
        "tickets": [{"id": "T-1", "title": "x", "status": "archived", "createdAt": EPOCH.isoformat()}],
    })}), "unknown status"),
    (valid_document(**{BOARD_KEY: json.dumps({
        "id": "b", "name": "B", "columns": [],
        "tickets": [{"id": "T-1", "title": "x", "status": "todo"}],
    })}), "createdAt"),
    (valid_document(**{BOARD_KEY: json.dumps({
        "id": "b", "name": "B", "columns": [],
        "tickets": [{"title": "x", "status": "todo", "createdAt": EPOCH.isoformat()}],
    })}), "lacks an id"),
    (valid_document(**{FILTERS_KEY: "[]"}), "not a JSON object"),
    (valid_document(**{THEME_KEY: "  "}), "theme"),
])
def test_validate_document_rejections(document, message):
    with pytest.raises(BackupFormatError, match=message):
        validate_document(document)


def test_filenames_carry_the_date():
    day = date(2025, 3, 7)
    assert backup_filename(day) == "kanban-backup-2025-03-07.json"
    assert csv_filename(day) == "kanban-tickets-2025-03-07.csv"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# CSV export
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_csv_starts_with_bom_and_header():
    text = export_tickets_csv([])
    assert text.startswith(UTF8_BOM)
    rows = list(csv.reader(io.StringIO(text[len(UTF8_BOM):])))
    assert rows == [CSV_HEADER]


def test_csv_row_per_ticket_with_quoting():
    ticket = make_ticket(
        "T-1",
        title='Say "hi", please',
        description="line one\nline two",
        status=TicketStatus.DONE,
        priority=Priority.URGENT,
        due_date=EPOCH + timedelta(days=1),
        estimated_hours=2.5,
        tags=("a", "b"),
    )
    text = export_tickets_csv([ticket, make_ticket("T-2")])
    rows = list(csv.reader(io.StringIO(text[len(UTF8_BOM):])))
    assert len(rows) == 3

    row = dict(zip(CSV_HEADER, rows[1]))
    assert row["Title"] == 'Say "hi", please'
    assert row["Description"] == "line one\nline two"
    assert row["Status"] == "done"
    assert row["Priority"] == "urgent"
    assert row["Estimated Hours"] == "2.5"
    assert row["Tags"] == "a; b"
    assert row["Due Date"] == (EPOCH + timedelta(days=1)).isoformat()

    blank = dict(zip(CSV_HEADER, rows[2]))
    assert blank["Due Date"] == ""
    assert blank["Completed At"] == ""
    assert blank["Estimated Hours"] == ""
