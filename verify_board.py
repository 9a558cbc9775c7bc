#!/usr/bin/env python3
"""
Quick verification that the ticket board works end-to-end.
"""
import os
import tempfile

from ticketboard.backup import export_all, export_tickets_csv, import_all
from ticketboard.board import BoardStore
from ticketboard.schema import TicketStatus
from ticketboard.storage import BoardPersistence, KeyValueStore


def main():
    print("=" * 60)
    print("Ticket Board Verification")
    print("=" * 60)
    workdir = tempfile.mkdtemp(prefix="ticketboard-")

    print("\n[1/6] Creating store with SQLite persistence...")
    persistence = BoardPersistence(KeyValueStore(os.path.join(workdir, "board.db")))
    store = BoardStore()
    store.initialize(persistence)
    persistence.attach(store)
    print(f"✅ Board '{store.board.name}' with {len(store.board.tickets)} demo tickets")

    print("\n[2/6] Creating a ticket...")
    ticket = store.create_ticket({
        "title": "Fix login bug",
        "description": "Session expires",
        "assignee": "Alice",
        "priority": "high",
        "status": "todo",
        "tags": ["bug", "auth"],
    })
    assert store.board.tickets[0].id == ticket.id
    print(f"✅ {ticket.id} is first on the board")

    print("\n[3/6] Moving it through the columns...")
    for status in (TicketStatus.IN_PROGRESS, TicketStatus.IN_REVIEW, TicketStatus.DONE):
        moved = store.try_move_ticket(ticket.id, status)
        print(f"   → {status.value}: {'ok' if moved else 'refused (column full)'}")
    print(f"✅ Completed at: {store.get_ticket(ticket.id).completed_at}")

    print("\n[4/6] Filtering...")
    store.set_filters({"search": "login"})
    print(f"✅ {len(store.filtered_tickets)} visible for 'login'")

    print("\n[5/6] Reloading from storage...")
    reloaded = BoardStore()
    reloaded.initialize(persistence)
    assert reloaded.board == store.board
    assert reloaded.filters == store.filters
    print("✅ Board and filters restored")

    print("\n[6/6] Backup round-trip...")
    document = export_all(persistence.kv)
    fresh = KeyValueStore(os.path.join(workdir, "restored.db"))
    assert import_all(fresh, document)
    restored = BoardPersistence(fresh).load_board()
    assert restored == store.board
    csv_lines = export_tickets_csv(store.board.tickets).splitlines()
    print(f"✅ Backup restored; CSV has {len(csv_lines) - 1} rows")

    print("\n" + "=" * 60)
    print("✅ ALL CHECKS PASSED")
    print("=" * 60)
    print(f"\nWork directory: {workdir}")


if __name__ == "__main__":
    main()
