"""
Predicate engine: derive the visible ticket set from FilterCriteria.

All functions here are pure. compute_visible keeps the input order and never
raises; criteria values that match no ticket (unknown statuses, typos) simply
exclude everything on that axis.

Overdue filtering is additive only: overdue=True keeps overdue tickets,
overdue=False applies no restriction at all.
"""
import math
from datetime import datetime
from typing import Dict, Any, Iterable, List, Optional, Sequence, Tuple

from .schema import FilterCriteria, Priority, Ticket, TicketStatus, parse_timestamp, utc_now

SORT_KEYS = ("priority", "due_date", "created", "updated")


def is_overdue(ticket: Ticket, now: Optional[datetime] = None) -> bool:
    """Due date strictly in the past and not done. Naive datetimes are taken as UTC."""
    if ticket.status == TicketStatus.DONE:
        return False
    due = parse_timestamp(ticket.due_date)
    if due is None:
        return False
    return due < parse_timestamp(now or utc_now())


def matches_search(ticket: Ticket, search: str) -> bool:
    """Case-insensitive substring match on title, description, assignee, or any tag."""
    if not search:
        return True
    needle = search.lower()
    if needle in ticket.title.lower():
        return True
    if needle in ticket.description.lower():
        return True
    if needle in ticket.assignee.lower():
        return True
    return any(needle in tag.lower() for tag in ticket.tags)


def matches(ticket: Ticket, criteria: FilterCriteria, now: Optional[datetime] = None) -> bool:
    if not matches_search(ticket, criteria.search):
        return False
    if criteria.priorities and ticket.priority.value not in criteria.priorities:
        return False
    if criteria.assignees and ticket.assignee not in criteria.assignees:
        return False
    if criteria.statuses and ticket.status.value not in criteria.statuses:
        return False
    if criteria.tags and not any(tag in criteria.tags for tag in ticket.tags):
        return False
    if criteria.overdue and not is_overdue(ticket, now):
        return False
    return True


def compute_visible(
    tickets: Iterable[Ticket],
    criteria: FilterCriteria,
    now: Optional[datetime] = None,
) -> Tuple[Ticket, ...]:
    """Tickets passing every criterion, in their original order."""
    now = now or utc_now()
    return tuple(t for t in tickets if matches(t, criteria, now))


# ── Query helpers ────────────────────────────────────────────────────────────


def unique_assignees(tickets: Iterable[Ticket]) -> List[str]:
    return sorted({t.assignee for t in tickets if t.assignee})


def unique_tags(tickets: Iterable[Ticket]) -> List[str]:
    return sorted({tag for t in tickets for tag in t.tags})


def days_until_due(ticket: Ticket, now: Optional[datetime] = None) -> Optional[int]:
    """Whole days until the due date, rounded up; negative once overdue."""
    due = parse_timestamp(ticket.due_date)
    if due is None:
        return None
    delta = due - parse_timestamp(now or utc_now())
    return math.ceil(delta.total_seconds() / 86400)


def ticket_stats(tickets: Sequence[Ticket], now: Optional[datetime] = None) -> Dict[str, Any]:
    """Counts by status and priority, plus overdue and completed totals."""
    now = now or utc_now()
    stats: Dict[str, Any] = {
        "total": len(tickets),
        "byStatus": {s.value: 0 for s in TicketStatus},
        "byPriority": {p.value: 0 for p in Priority},
        "overdue": 0,
        "completed": 0,
    }
    for ticket in tickets:
        stats["byStatus"][ticket.status.value] += 1
        stats["byPriority"][ticket.priority.value] += 1
        if ticket.status == TicketStatus.DONE:
            stats["completed"] += 1
        if is_overdue(ticket, now):
            stats["overdue"] += 1
    return stats


def sort_tickets(tickets: Iterable[Ticket], key: str) -> List[Ticket]:
    """Return a sorted copy.

    priority: urgent first. due_date: soonest first, undated last.
    created / updated: newest first.
    """
    tickets = list(tickets)
    if key == "priority":
        return sorted(tickets, key=lambda t: t.priority.rank)
    if key == "due_date":
        dated = sorted((t for t in tickets if t.due_date), key=lambda t: t.due_date)
        return dated + [t for t in tickets if not t.due_date]
    if key == "created":
        return sorted(tickets, key=lambda t: t.created_at, reverse=True)
    if key == "updated":
        return sorted(tickets, key=lambda t: t.updated_at, reverse=True)
    raise ValueError(f"Unknown sort key: {key}")
