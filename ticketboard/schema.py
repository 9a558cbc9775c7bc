"""
Ticket board schema.

Board layout:
  To Do → In Progress → In Review → Done

Any status is reachable from any other; column limits gate moves into a column
(see can_accept). Records are frozen: every mutation builds a new object, so a
snapshot handed to a reader never changes underneath it.

Wire format keeps the camelCase field names of the persisted JSON documents
(createdAt, dueDate, estimatedHours, ...). Timestamps travel as ISO-8601 strings
and are revived to timezone-aware datetimes on load.
"""
import logging
import time
import uuid
from enum import Enum
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional, Tuple, Dict, Any, Iterable

logger = logging.getLogger(__name__)

DEFAULT_BOARD_ID = "main-board"
DEFAULT_BOARD_NAME = "Project Board"


class TicketStatus(Enum):
    """Board columns a ticket can sit in."""
    TODO = "todo"
    IN_PROGRESS = "in-progress"
    IN_REVIEW = "in-review"
    DONE = "done"

    @classmethod
    def from_str(cls, value: Any, default: Optional["TicketStatus"] = None) -> Optional["TicketStatus"]:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return default


class Priority(Enum):
    """Ticket priority, lowest to highest."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @classmethod
    def from_str(cls, value: Any, default: Optional["Priority"] = None) -> Optional["Priority"]:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return default

    @property
    def rank(self) -> int:
        """Sort rank, urgent first."""
        return {
            Priority.URGENT: 0,
            Priority.HIGH: 1,
            Priority.MEDIUM: 2,
            Priority.LOW: 3,
        }[self]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Utilities
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Revive a stored timestamp. Naive values are taken as UTC; junk gives None."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def make_ticket_id(existing: Iterable[str] = ()) -> str:
    """Generate a ticket ID (ms timestamp + random hex) not present in `existing`."""
    taken = set(existing)
    while True:
        ticket_id = f"TICKET-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"
        if ticket_id not in taken:
            return ticket_id


def normalize_tags(tags: Any) -> Tuple[str, ...]:
    """Tags as an ordered tuple of distinct non-empty strings."""
    if not tags:
        return ()
    if isinstance(tags, str):
        tags = [tags]
    seen = []
    for tag in tags:
        text = str(tag).strip()
        if text and text not in seen:
            seen.append(text)
    return tuple(seen)


def normalize_hours(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return None
    if not isinstance(value, (int, float)) or value < 0:
        return None
    return value


def _pick(data: Dict[str, Any], camel: str, snake: str, default: Any = None) -> Any:
    """Read a field by its wire name, falling back to the snake_case name."""
    if camel in data:
        return data[camel]
    return data.get(snake, default)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Records
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@dataclass(frozen=True)
class Ticket:
    """A unit of work on the board."""

    id: str
    title: str
    description: str = ""

    status: TicketStatus = TicketStatus.TODO
    priority: Priority = Priority.MEDIUM
    assignee: str = ""

    # Scheduling
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    due_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None   # set on every move into DONE, never cleared
    estimated_hours: Optional[float] = None

    tags: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "priority": self.priority.value,
            "assignee": self.assignee,
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
            "tags": list(self.tags),
        }
        # Optional fields are omitted when absent
        if self.due_date:
            data["dueDate"] = format_timestamp(self.due_date)
        if self.estimated_hours is not None:
            data["estimatedHours"] = self.estimated_hours
        if self.completed_at:
            data["completedAt"] = format_timestamp(self.completed_at)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Ticket":
        """Deserialize from dict. Raises ValueError when id is missing."""
        ticket_id = data.get("id")
        if not ticket_id:
            raise ValueError("ticket has no id")

        created_at = parse_timestamp(_pick(data, "createdAt", "created_at")) or utc_now()
        updated_at = parse_timestamp(_pick(data, "updatedAt", "updated_at")) or created_at
        if updated_at < created_at:
            updated_at = created_at

        return cls(
            id=str(ticket_id),
            title=str(data.get("title") or ""),
            description=str(data.get("description") or ""),
            status=TicketStatus.from_str(data.get("status"), TicketStatus.TODO),
            priority=Priority.from_str(data.get("priority"), Priority.MEDIUM),
            assignee=str(data.get("assignee") or ""),
            created_at=created_at,
            updated_at=updated_at,
            due_date=parse_timestamp(_pick(data, "dueDate", "due_date")),
            completed_at=parse_timestamp(_pick(data, "completedAt", "completed_at")),
            estimated_hours=normalize_hours(_pick(data, "estimatedHours", "estimated_hours")),
            tags=normalize_tags(data.get("tags")),
        )


@dataclass(frozen=True)
class Column:
    """A status-bound bucket with an optional ticket-count limit."""

    id: str
    title: str
    status: TicketStatus
    color: str = "#64748b"
    limit: Optional[int] = None   # None = unlimited

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "title": self.title,
            "status": self.status.value,
            "color": self.color,
        }
        if self.limit is not None:
            data["limit"] = self.limit
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Column":
        status = TicketStatus.from_str(data.get("status"))
        if status is None:
            raise ValueError(f"column {data.get('id')!r} has unknown status {data.get('status')!r}")
        limit = data.get("limit")
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 0:
            limit = None
        return cls(
            id=str(data.get("id") or status.value),
            title=str(data.get("title") or status.value),
            status=status,
            color=str(data.get("color") or "#64748b"),
            limit=limit,
        )


DEFAULT_COLUMNS: Tuple[Column, ...] = (
    Column(id="todo", title="To Do", status=TicketStatus.TODO, color="#64748b"),
    Column(id="in-progress", title="In Progress", status=TicketStatus.IN_PROGRESS, color="#3b82f6", limit=5),
    Column(id="in-review", title="In Review", status=TicketStatus.IN_REVIEW, color="#f59e0b", limit=3),
    Column(id="done", title="Done", status=TicketStatus.DONE, color="#10b981"),
)


def can_accept(column: Column, current_count: int, source_status: TicketStatus) -> bool:
    """Whether a ticket coming from `source_status` may be dropped into `column`.

    Same-column drops are never a status change, so they are refused.
    """
    if source_status == column.status:
        return False
    return column.limit is None or current_count < column.limit


def columns_are_complete(columns: Iterable[Column]) -> bool:
    """Exactly one column per status."""
    statuses = [c.status for c in columns]
    return len(statuses) == len(TicketStatus) and set(statuses) == set(TicketStatus)


@dataclass(frozen=True)
class Board:
    """Columns plus every ticket on the board, newest first."""

    id: str = DEFAULT_BOARD_ID
    name: str = DEFAULT_BOARD_NAME
    columns: Tuple[Column, ...] = DEFAULT_COLUMNS
    tickets: Tuple[Ticket, ...] = ()

    def get_ticket(self, ticket_id: str) -> Optional[Ticket]:
        for ticket in self.tickets:
            if ticket.id == ticket_id:
                return ticket
        return None

    def column_for(self, status: TicketStatus) -> Optional[Column]:
        for column in self.columns:
            if column.status == status:
                return column
        return None

    def count_in(self, status: TicketStatus) -> int:
        return sum(1 for t in self.tickets if t.status == status)

    def with_tickets(self, tickets: Iterable[Ticket]) -> "Board":
        return replace(self, tickets=tuple(tickets))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "columns": [c.to_dict() for c in self.columns],
            "tickets": [t.to_dict() for t in self.tickets],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Board":
        """Deserialize from dict, tolerating partially-shaped legacy data.

        Broken columns fall back to the defaults; unreadable tickets are skipped.
        """
        columns: Tuple[Column, ...] = DEFAULT_COLUMNS
        raw_columns = data.get("columns")
        if raw_columns:
            try:
                parsed = tuple(Column.from_dict(c) for c in raw_columns)
            except (ValueError, TypeError, AttributeError) as e:
                logger.warning(f"Invalid column layout, using defaults: {e}")
            else:
                if columns_are_complete(parsed):
                    columns = parsed
                else:
                    logger.warning("Column layout does not cover every status, using defaults")

        tickets = []
        seen = set()
        for raw in data.get("tickets") or []:
            try:
                ticket = Ticket.from_dict(raw)
            except (ValueError, TypeError, AttributeError) as e:
                logger.warning(f"Skipping unreadable ticket: {e}")
                continue
            if ticket.id in seen:
                logger.warning(f"Skipping duplicate ticket {ticket.id}")
                continue
            seen.add(ticket.id)
            tickets.append(ticket)

        return cls(
            id=str(data.get("id") or DEFAULT_BOARD_ID),
            name=str(data.get("name") or DEFAULT_BOARD_NAME),
            columns=columns,
            tickets=tuple(tickets),
        )


@dataclass(frozen=True)
class FilterCriteria:
    """Accepted values per axis. An empty axis accepts everything."""

    search: str = ""
    priorities: Tuple[str, ...] = ()
    assignees: Tuple[str, ...] = ()
    statuses: Tuple[str, ...] = ()
    tags: Tuple[str, ...] = ()
    overdue: bool = False

    SET_FIELDS = ("priorities", "assignees", "statuses", "tags")

    def is_empty(self) -> bool:
        return self == FilterCriteria()

    def merge(self, partial: Dict[str, Any]) -> "FilterCriteria":
        """Return a copy with the given fields replaced. Unknown keys are ignored."""
        changes: Dict[str, Any] = {}
        if "search" in partial:
            changes["search"] = str(partial["search"] or "")
        for name in self.SET_FIELDS:
            if name in partial:
                changes[name] = _criteria_values(partial[name])
        if "overdue" in partial:
            changes["overdue"] = _parse_flag(partial["overdue"])
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "search": self.search,
            "priorities": list(self.priorities),
            "assignees": list(self.assignees),
            "statuses": list(self.statuses),
            "tags": list(self.tags),
            "overdue": self.overdue,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FilterCriteria":
        return cls().merge(data)


def _criteria_values(values: Any) -> Tuple[str, ...]:
    if values is None or values == "":
        return ()
    if not isinstance(values, (list, tuple, set, frozenset)):
        values = [values]
    out = []
    for value in values:
        text = value.value if isinstance(value, Enum) else str(value)
        if text not in out:
            out.append(text)
    return tuple(out)


def _parse_flag(value: Any) -> bool:
    """JSON booleans as-is; the usual string spellings of true; anything else is False."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    if isinstance(value, int):
        return value == 1
    return False
