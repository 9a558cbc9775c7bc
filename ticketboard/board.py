"""
BoardStore: the single mutation authority for a board.

Every operation runs to completion synchronously: it builds a new Board,
recomputes the visible tickets against the active FilterCriteria, and then
notifies subscribers. Readers only ever see whole snapshots.

Intents are serialized by a re-entrant lock so concurrent callers (the
threaded HTTP server) never build from the same stale board.

Status moves are unrestricted (any status to any other). move_ticket does not
check column limits; callers check can_accept first, or use try_move_ticket.
Unknown ticket ids are silent no-ops.
"""
import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

from .demo import generate_demo_board
from .filters import compute_visible
from .schema import (
    Board, Column, FilterCriteria, Priority, Ticket, TicketStatus,
    can_accept, make_ticket_id, normalize_hours, normalize_tags, parse_timestamp, utc_now,
)

logger = logging.getLogger(__name__)

BOARD_CHANGED = "board_changed"
FILTERS_CHANGED = "filters_changed"

# Wire name -> Ticket attribute for fields callers may set
EDITABLE_FIELDS = {
    "title": "title",
    "description": "description",
    "status": "status",
    "priority": "priority",
    "assignee": "assignee",
    "dueDate": "due_date",
    "due_date": "due_date",
    "tags": "tags",
    "estimatedHours": "estimated_hours",
    "estimated_hours": "estimated_hours",
    "completedAt": "completed_at",
    "completed_at": "completed_at",
}


@dataclass(frozen=True)
class BoardSnapshot:
    """What consumers render: the board, the visible tickets, and load state."""
    board: Board
    filtered_tickets: Tuple[Ticket, ...]
    filters: FilterCriteria
    is_loading: bool = False
    error: Optional[str] = None


def ticket_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    """Coerce a partial wire-format dict into Ticket keyword arguments.

    Unknown keys and unknown enum values are dropped.
    """
    fields: Dict[str, Any] = {}
    for key, value in data.items():
        attr = EDITABLE_FIELDS.get(key)
        if attr is None:
            continue
        if attr == "status":
            value = TicketStatus.from_str(value)
            if value is None:
                continue
        elif attr == "priority":
            value = Priority.from_str(value)
            if value is None:
                continue
        elif attr in ("due_date", "completed_at"):
            value = parse_timestamp(value)
        elif attr == "tags":
            value = normalize_tags(value)
        elif attr == "estimated_hours":
            value = normalize_hours(value)
        else:
            value = "" if value is None else str(value)
        fields[attr] = value
    return fields


class BoardStore:
    """Holds the canonical Board, the active filters, and the visible tickets."""

    def __init__(
        self,
        columns: Optional[Sequence[Column]] = None,
        clock: Optional[Callable[[], datetime]] = None,
        board_factory: Optional[Callable[[], Board]] = None,
    ):
        self._columns = tuple(columns) if columns else None
        self._clock = clock or utc_now
        self._board_factory = board_factory or self._default_board_factory

        board = Board(columns=self._columns) if self._columns else Board()
        self._board = board
        self._filters = FilterCriteria()
        self._filtered = compute_visible(board.tickets, self._filters, self._clock())
        self._is_loading = False
        self._error: Optional[str] = None
        self.subscribers: Dict[str, list] = {}  # event_type -> list of callbacks
        self._lock = threading.RLock()

    def _default_board_factory(self) -> Board:
        if self._columns:
            return generate_demo_board(self._columns)
        return generate_demo_board()

    # ──────────────────────────────────────────
    # Reads
    # ──────────────────────────────────────────

    @property
    def board(self) -> Board:
        return self._board

    @property
    def filters(self) -> FilterCriteria:
        return self._filters

    @property
    def filtered_tickets(self) -> Tuple[Ticket, ...]:
        return self._filtered

    def snapshot(self) -> BoardSnapshot:
        with self._lock:
            return BoardSnapshot(
                board=self._board,
                filtered_tickets=self._filtered,
                filters=self._filters,
                is_loading=self._is_loading,
                error=self._error,
            )

    def get_ticket(self, ticket_id: str) -> Optional[Ticket]:
        return self._board.get_ticket(ticket_id)

    def column_count(self, status: TicketStatus) -> int:
        """Tickets currently in a column, regardless of filters."""
        return self._board.count_in(status)

    def can_accept(self, ticket_id: str, new_status: Any) -> bool:
        """Capacity check for dropping a ticket into the column for `new_status`."""
        with self._lock:
            ticket = self._board.get_ticket(ticket_id)
            status = TicketStatus.from_str(new_status)
            if ticket is None or status is None:
                return False
            column = self._board.column_for(status)
            if column is None:
                return False
            return can_accept(column, self.column_count(status), ticket.status)

    # ──────────────────────────────────────────
    # Notification
    # ──────────────────────────────────────────

    def subscribe(self, event_type: str, callback: Callable) -> None:
        """Register a callback for an event type. Callbacks get snapshot=..."""
        if event_type not in self.subscribers:
            self.subscribers[event_type] = []
        self.subscribers[event_type].append(callback)

    def _emit(self, event_type: str) -> None:
        snapshot = self.snapshot()
        for callback in self.subscribers.get(event_type, []):
            try:
                callback(snapshot=snapshot)
            except Exception as e:
                logger.error(f"Error in {event_type} callback: {e}")

    def _commit(self, board: Optional[Board] = None, filters: Optional[FilterCriteria] = None) -> None:
        if board is not None:
            self._board = board
        if filters is not None:
            self._filters = filters
        self._filtered = compute_visible(self._board.tickets, self._filters, self._clock())
        if board is not None:
            self._emit(BOARD_CHANGED)
        if filters is not None:
            self._emit(FILTERS_CHANGED)

    def _replace_ticket(self, updated: Ticket) -> None:
        tickets = [updated if t.id == updated.id else t for t in self._board.tickets]
        self._commit(board=self._board.with_tickets(tickets))

    def _bump(self, ticket: Ticket) -> datetime:
        now = self._clock()
        return now if now >= ticket.created_at else ticket.created_at

    # ──────────────────────────────────────────
    # Intents
    # ──────────────────────────────────────────

    def create_ticket(self, data: Dict[str, Any]) -> Ticket:
        """Add a ticket at the head of the board and return it.

        Column limits are not checked here; new tickets go to the
        unlimited entry column by convention.
        """
        fields = ticket_fields(data)
        fields.setdefault("title", "")
        with self._lock:
            now = self._clock()
            if fields.get("status") == TicketStatus.DONE and not fields.get("completed_at"):
                fields["completed_at"] = now
            ticket = Ticket(
                id=make_ticket_id(t.id for t in self._board.tickets),
                created_at=now,
                updated_at=now,
                **fields,
            )
            self._commit(board=self._board.with_tickets((ticket,) + self._board.tickets))
        logger.debug(f"Created {ticket.id}")
        return ticket

    def update_ticket(self, ticket_id: str, updates: Dict[str, Any]) -> None:
        """Merge partial fields into a ticket. Does not touch completedAt unless given."""
        fields = ticket_fields(updates)
        with self._lock:
            ticket = self._board.get_ticket(ticket_id)
            if ticket is None:
                return
            self._replace_ticket(replace(ticket, updated_at=self._bump(ticket), **fields))
        logger.debug(f"Updated {ticket_id}: {sorted(fields)}")

    def delete_ticket(self, ticket_id: str) -> None:
        with self._lock:
            if self._board.get_ticket(ticket_id) is None:
                return
            tickets = [t for t in self._board.tickets if t.id != ticket_id]
            self._commit(board=self._board.with_tickets(tickets))
        logger.debug(f"Deleted {ticket_id}")

    def move_ticket(self, ticket_id: str, new_status: Any) -> None:
        """Set status unconditionally and bump updatedAt.

        Moving into DONE stamps completedAt; moving out of DONE keeps it.
        """
        status = TicketStatus.from_str(new_status)
        with self._lock:
            ticket = self._board.get_ticket(ticket_id)
            if ticket is None:
                return
            if status is None:
                logger.warning(f"Ignoring move of {ticket_id} to unknown status {new_status!r}")
                return
            now = self._bump(ticket)
            completed_at = now if status == TicketStatus.DONE else ticket.completed_at
            self._replace_ticket(replace(ticket, status=status, updated_at=now, completed_at=completed_at))
        logger.debug(f"Moved {ticket_id}: {ticket.status.value} → {status.value}")

    def try_move_ticket(self, ticket_id: str, new_status: Any) -> bool:
        """Move only if the destination column accepts the ticket."""
        with self._lock:
            if not self.can_accept(ticket_id, new_status):
                return False
            self.move_ticket(ticket_id, new_status)
            return True

    def set_filters(self, partial: Dict[str, Any]) -> None:
        with self._lock:
            self._commit(filters=self._filters.merge(partial))

    def clear_filters(self) -> None:
        with self._lock:
            self._commit(filters=FilterCriteria())

    def load_board(self, board: Board) -> None:
        """Replace the whole board (configured columns win over stored ones)."""
        if self._columns:
            board = replace(board, columns=self._columns)
        with self._lock:
            self._commit(board=board)

    def refresh_board(self) -> None:
        """Regenerate the board from scratch. Nothing from the old board is kept."""
        self.load_board(self._board_factory())

    def initialize(self, persistence=None) -> None:
        """Load board and filters from persistence, else start from a fresh board."""
        with self._lock:
            self._is_loading = True
            self._error = None
            board = persistence.load_board() if persistence else None
            if board is None:
                if persistence is not None and persistence.last_error:
                    self._error = "Failed to load board data"
                board = self._board_factory()
            filters = persistence.load_filters() if persistence else None
            self._is_loading = False
            if self._columns:
                board = replace(board, columns=self._columns)
            self._commit(board=board, filters=filters or FilterCriteria())
