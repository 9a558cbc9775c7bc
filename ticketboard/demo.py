"""
Demo board generator.

Used on first start (nothing stored yet) and by BoardStore.refresh_board().
Pass a seeded random.Random for reproducible boards.
"""
import random
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from .schema import (
    Board, Column, Priority, Ticket, TicketStatus,
    DEFAULT_BOARD_ID, DEFAULT_BOARD_NAME, DEFAULT_COLUMNS, utc_now,
)

DEMO_ASSIGNEES = [
    "Alice Johnson",
    "Bob Smith",
    "Carol Davis",
    "David Wilson",
    "Emma Brown",
    "Frank Miller",
    "Grace Lee",
    "Henry Taylor",
]

DEMO_TEMPLATES = [
    ("Implement user authentication system",
     "Create a secure authentication system with JWT tokens, password hashing, and session management.",
     ["backend", "security", "api"]),
    ("Design responsive navigation component",
     "Build a mobile-first navigation component that adapts to different screen sizes and includes accessibility features.",
     ["frontend", "design"]),
    ("Fix memory leak in data processing",
     "Investigate and resolve memory leak occurring during large dataset processing operations.",
     ["bug", "performance", "backend"]),
    ("Add dark mode theme support",
     "Implement dark mode theme with proper color contrast and user preference persistence.",
     ["frontend", "feature", "design"]),
    ("Optimize database query performance",
     "Review and optimize slow database queries, add proper indexing, and implement query caching.",
     ["database", "performance", "backend"]),
    ("Create API documentation",
     "Write comprehensive API documentation with examples, error codes, and integration guides.",
     ["documentation", "api"]),
    ("Implement real-time notifications",
     "Add WebSocket-based real-time notifications for user actions and system events.",
     ["feature", "backend", "api"]),
    ("Add unit tests for payment module",
     "Write comprehensive unit tests for the payment processing module to ensure reliability.",
     ["testing", "backend"]),
    ("Update user profile interface",
     "Redesign the user profile page with improved UX and additional customization options.",
     ["frontend", "design", "feature"]),
    ("Security audit and vulnerability fixes",
     "Conduct security audit and fix identified vulnerabilities in authentication and data handling.",
     ["security", "urgent", "backend"]),
]

# Tickets generated per status
STATUS_DISTRIBUTION = (
    (TicketStatus.TODO, 3),
    (TicketStatus.IN_PROGRESS, 3),
    (TicketStatus.IN_REVIEW, 2),
    (TicketStatus.DONE, 2),
)


def _between(rng: random.Random, start: datetime, end: datetime) -> datetime:
    return start + (end - start) * rng.random()


def generate_demo_ticket(ticket_id: str, status: TicketStatus, rng: random.Random, now: datetime) -> Ticket:
    title, description, tags = rng.choice(DEMO_TEMPLATES)
    created_at = _between(rng, now - timedelta(days=30), now)
    updated_at = _between(rng, created_at, now)

    # 70% have a due date; a fifth of those are already overdue
    due_date = None
    if rng.random() > 0.3:
        due_date = _between(rng, now, now + timedelta(days=30))
        if rng.random() > 0.8:
            due_date = _between(rng, now - timedelta(days=7), now)

    estimated_hours = rng.randint(1, 40) if rng.random() > 0.4 else None
    completed_at = _between(rng, updated_at, now) if status == TicketStatus.DONE else None

    return Ticket(
        id=ticket_id,
        title=title,
        description=description,
        status=status,
        priority=rng.choice(list(Priority)),
        assignee=rng.choice(DEMO_ASSIGNEES),
        created_at=created_at,
        updated_at=updated_at,
        due_date=due_date,
        completed_at=completed_at,
        estimated_hours=estimated_hours,
        tags=tuple(rng.sample(tags, rng.randint(1, len(tags)))),
    )


def generate_demo_tickets(rng: Optional[random.Random] = None, now: Optional[datetime] = None) -> List[Ticket]:
    """Ten tickets spread over the columns, newest first."""
    rng = rng or random.Random()
    now = now or utc_now()
    tickets = []
    number = 1
    for status, count in STATUS_DISTRIBUTION:
        for _ in range(count):
            tickets.append(generate_demo_ticket(f"TICKET-{number:03d}", status, rng, now))
            number += 1
    tickets.sort(key=lambda t: t.created_at, reverse=True)
    return tickets


def generate_demo_board(
    columns: Sequence[Column] = DEFAULT_COLUMNS,
    rng: Optional[random.Random] = None,
    now: Optional[datetime] = None,
    board_id: str = DEFAULT_BOARD_ID,
    name: str = DEFAULT_BOARD_NAME,
) -> Board:
    return Board(
        id=board_id,
        name=name,
        columns=tuple(columns),
        tickets=tuple(generate_demo_tickets(rng, now)),
    )
