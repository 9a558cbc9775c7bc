"""
Backup documents and spreadsheet export.

A backup document is one JSON object mapping every stored key to its string
value. Import validates the whole document first and then writes every key in
a single transaction, so a rejected document leaves storage untouched.

The CSV export is one row per ticket and is never imported back.
"""
import csv
import io
import json
import logging
from datetime import date
from typing import Any, Dict, Iterable, Optional

from .schema import Ticket, TicketStatus, format_timestamp, parse_timestamp
from .storage import BOARD_KEY, FILTERS_KEY, THEME_KEY, KeyValueStore

logger = logging.getLogger(__name__)

REQUIRED_KEYS = (BOARD_KEY, FILTERS_KEY)

CSV_HEADER = [
    "ID", "Title", "Description", "Status", "Priority", "Assignee",
    "Created At", "Updated At", "Due Date", "Completed At",
    "Estimated Hours", "Tags",
]
TAG_SEPARATOR = "; "
UTF8_BOM = "\ufeff"


class BackupFormatError(Exception):
    """Raised when a backup document fails validation."""
    pass


def backup_filename(day: Optional[date] = None) -> str:
    return f"kanban-backup-{(day or date.today()).isoformat()}.json"


def csv_filename(day: Optional[date] = None) -> str:
    return f"kanban-tickets-{(day or date.today()).isoformat()}.csv"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Backup documents
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def export_all(kv: KeyValueStore) -> Optional[str]:
    """Every stored key as one JSON document, or None if storage is unreadable."""
    try:
        return json.dumps(dict(kv.items()), indent=2)
    except Exception as e:
        logger.error(f"Failed to export data: {e}")
        return None


def import_all(kv: KeyValueStore, document: str) -> bool:
    """Restore a backup document. Returns False and writes nothing if it is invalid."""
    try:
        values = validate_document(document)
    except BackupFormatError as e:
        logger.warning(f"Rejected backup document: {e}")
        return False
    try:
        kv.set_many(values)
    except Exception as e:
        logger.error(f"Failed to import data: {e}")
        return False
    logger.info(f"Imported {len(values)} keys from backup")
    return True


def validate_document(document: str) -> Dict[str, str]:
    """Parse and check a backup document. Raises BackupFormatError."""
    try:
        data = json.loads(document)
    except (TypeError, ValueError) as e:
        raise BackupFormatError(f"not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise BackupFormatError("document is not a JSON object")

    for key, value in data.items():
        if not isinstance(value, str):
            raise BackupFormatError(f"value of {key!r} is not a string")
    missing = [k for k in REQUIRED_KEYS if k not in data]
    if missing:
        raise BackupFormatError(f"missing required keys: {', '.join(missing)}")

    _validate_board(_decode(data, BOARD_KEY))
    _decode(data, FILTERS_KEY)
    if THEME_KEY in data and not data[THEME_KEY].strip():
        raise BackupFormatError("theme preference is empty")
    return data


def _decode(data: Dict[str, str], key: str) -> Dict[str, Any]:
    try:
        value = json.loads(data[key])
    except ValueError as e:
        raise BackupFormatError(f"{key} is not valid JSON: {e}") from e
    if not isinstance(value, dict):
        raise BackupFormatError(f"{key} is not a JSON object")
    return value


def _validate_board(board: Dict[str, Any]) -> None:
    for key in ("id", "name"):
        if not isinstance(board.get(key), str):
            raise BackupFormatError(f"board {key} is missing")
    if not isinstance(board.get("columns"), list):
        raise BackupFormatError("board columns are missing")
    if not isinstance(board.get("tickets"), list):
        raise BackupFormatError("board tickets are missing")

    for column in board["columns"]:
        if not isinstance(column, dict) or TicketStatus.from_str(column.get("status")) is None:
            raise BackupFormatError(f"invalid column: {column!r}")

    for ticket in board["tickets"]:
        if not isinstance(ticket, dict):
            raise BackupFormatError("ticket entry is not an object")
        label = ticket.get("id")
        if not label:
            raise BackupFormatError("ticket entry lacks an id")
        if not isinstance(ticket.get("title", ""), str):
            raise BackupFormatError(f"ticket {label} has a non-text title")
        if TicketStatus.from_str(ticket.get("status")) is None:
            raise BackupFormatError(f"ticket {label} has unknown status {ticket.get('status')!r}")
        if parse_timestamp(ticket.get("createdAt")) is None:
            raise BackupFormatError(f"ticket {label} has no valid createdAt")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Spreadsheet export
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def ticket_row(ticket: Ticket) -> list:
    hours = ticket.estimated_hours
    return [
        ticket.id,
        ticket.title,
        ticket.description,
        ticket.status.value,
        ticket.priority.value,
        ticket.assignee,
        format_timestamp(ticket.created_at),
        format_timestamp(ticket.updated_at),
        format_timestamp(ticket.due_date) or "",
        format_timestamp(ticket.completed_at) or "",
        "" if hours is None else hours,
        TAG_SEPARATOR.join(ticket.tags),
    ]


def export_tickets_csv(tickets: Iterable[Ticket]) -> str:
    """Tickets as CSV text with a leading byte-order mark."""
    buf = io.StringIO()
    buf.write(UTF8_BOM)
    writer = csv.writer(buf, quoting=csv.QUOTE_MINIMAL)
    writer.writerow(CSV_HEADER)
    for ticket in tickets:
        writer.writerow(ticket_row(ticket))
    return buf.getvalue()
