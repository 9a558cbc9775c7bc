"""Shared test fixtures for the ticket board tests."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Ensure the project root is importable
sys.path.insert(0, str(Path(__file__).parent.parent))

from ticketboard.board import BoardStore
from ticketboard.schema import Board, Priority, Ticket, TicketStatus
from ticketboard.storage import BoardPersistence, KeyValueStore

EPOCH = datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Returns a strictly increasing time, one minute per call."""

    def __init__(self, start: datetime = EPOCH):
        self.current = start

    def __call__(self) -> datetime:
        now = self.current
        self.current += timedelta(minutes=1)
        return now


def make_ticket(ticket_id="T-1", **overrides) -> Ticket:
    fields = dict(
        id=ticket_id,
        title=f"Ticket {ticket_id}",
        description="",
        status=TicketStatus.TODO,
        priority=Priority.MEDIUM,
        assignee="",
        created_at=EPOCH,
        updated_at=EPOCH,
    )
    fields.update(overrides)
    return Ticket(**fields)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def kv(tmp_path):
    return KeyValueStore(str(tmp_path / "board.db"))


@pytest.fixture
def persistence(kv):
    return BoardPersistence(kv)


@pytest.fixture
def empty_store(clock):
    """Store whose board starts (and refreshes) empty."""
    return BoardStore(clock=clock, board_factory=Board)
