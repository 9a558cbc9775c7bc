#!/usr/bin/env python3
"""
Ticket Board Server
-------------------
JSON API over a BoardStore. Plays the part of the UI layer: it validates form
input, checks column capacity before moves, dispatches intents to the store,
and serves whatever snapshot the store reports.

Usage:
    python board_server.py --config config.yaml
    python board_server.py --db /tmp/board.db --port 3000

API:
    GET    /api/board                 → { board, filteredTickets, filters, isLoading, error }
    GET    /api/tickets?sort=priority → visible tickets
    POST   /api/tickets               → create (title required)
    PUT    /api/tickets/<id>          → partial update
    DELETE /api/tickets/<id>
    POST   /api/tickets/<id>/move     → { status }   (409 when the column refuses it)
    GET    /api/filters | PUT (merge) | DELETE (clear)
    POST   /api/board/refresh         → regenerate the demo board
    GET    /api/stats, /api/filter-options
    GET    /api/theme | PUT { theme }
    GET    /api/backup                → backup document download
    POST   /api/backup                → restore from a backup document
    GET    /api/export.csv            → ticket spreadsheet

Writes require an X-API-Key header when TICKETBOARD_API_SECRET is set.
"""

import hmac
import logging
import os
from functools import wraps
from typing import Any, Dict

from flask import Flask, Response, current_app, jsonify, request

from ticketboard.backup import backup_filename, csv_filename, export_all, export_tickets_csv, import_all
from ticketboard.board import BoardSnapshot, BoardStore
from ticketboard.config import BoardConfig, configure_logging
from ticketboard.demo import generate_demo_board
from ticketboard.filters import SORT_KEYS, sort_tickets, ticket_stats, unique_assignees, unique_tags
from ticketboard.schema import Priority, TicketStatus, normalize_hours, parse_timestamp
from ticketboard.storage import BoardPersistence, KeyValueStore

logger = logging.getLogger(__name__)

TITLE_MIN, TITLE_MAX = 3, 100
DESCRIPTION_MAX = 1000
HOURS_MAX = 1000


# ── Validation ───────────────────────────────────────────────────────────────


def validate_ticket(data: Dict[str, Any], partial: bool = False) -> Dict[str, str]:
    """Form-level checks. Returns field -> message for every failing field."""
    errors: Dict[str, str] = {}

    if "title" in data or not partial:
        title = str(data.get("title") or "").strip()
        if not title:
            errors["title"] = "Title is required"
        elif len(title) < TITLE_MIN:
            errors["title"] = f"Title must be at least {TITLE_MIN} characters long"
        elif len(title) > TITLE_MAX:
            errors["title"] = f"Title must be less than {TITLE_MAX} characters"

    if len(str(data.get("description") or "")) > DESCRIPTION_MAX:
        errors["description"] = f"Description must be less than {DESCRIPTION_MAX} characters"

    if data.get("status") is not None and TicketStatus.from_str(data["status"]) is None:
        errors["status"] = f"Unknown status: {data['status']}"
    if data.get("priority") is not None and Priority.from_str(data["priority"]) is None:
        errors["priority"] = f"Unknown priority: {data['priority']}"

    if data.get("dueDate") and parse_timestamp(data["dueDate"]) is None:
        errors["dueDate"] = "Due date must be an ISO-8601 timestamp"

    hours = data.get("estimatedHours")
    if hours is not None:
        value = normalize_hours(hours)
        if value is None:
            errors["estimatedHours"] = "Estimated hours must be a non-negative number"
        elif value > HOURS_MAX:
            errors["estimatedHours"] = f"Estimated hours cannot exceed {HOURS_MAX}"

    if data.get("tags") is not None and not isinstance(data["tags"], list):
        errors["tags"] = "Tags must be a list"
    return errors


# ── Serialization ────────────────────────────────────────────────────────────


def snapshot_to_dict(snapshot: BoardSnapshot) -> Dict[str, Any]:
    return {
        "board": snapshot.board.to_dict(),
        "filteredTickets": [t.to_dict() for t in snapshot.filtered_tickets],
        "filters": snapshot.filters.to_dict(),
        "isLoading": snapshot.is_loading,
        "error": snapshot.error,
    }


# ── Auth ─────────────────────────────────────────────────────────────────────


def require_api_key(f):
    """Decorator: when a secret is configured, reject writes without a matching X-API-Key."""
    @wraps(f)
    def decorated(*args, **kwargs):
        secret = current_app.config.get("API_SECRET", "")
        if secret:
            provided = request.headers.get("X-API-Key", "").strip()
            if not hmac.compare_digest(provided, secret):
                code = 401 if not provided else 403
                return jsonify({"error": "Unauthorized"}), code
        return f(*args, **kwargs)
    return decorated


# ── App ──────────────────────────────────────────────────────────────────────


def create_app(store: BoardStore, persistence: BoardPersistence, api_secret: str = "") -> Flask:
    app = Flask(__name__)
    app.config["API_SECRET"] = api_secret

    def body() -> Dict[str, Any]:
        data = request.get_json(force=True, silent=True)
        return data if isinstance(data, dict) else {}

    def not_found(ticket_id: str):
        return jsonify({"error": f"Ticket {ticket_id} not found"}), 404

    @app.route("/api/board")
    def api_board():
        return jsonify(snapshot_to_dict(store.snapshot()))

    @app.route("/api/tickets", methods=["GET"])
    def api_tickets():
        tickets = store.filtered_tickets
        sort = request.args.get("sort")
        if sort:
            if sort not in SORT_KEYS:
                return jsonify({"error": f"sort must be one of {', '.join(SORT_KEYS)}"}), 400
            tickets = sort_tickets(tickets, sort)
        return jsonify({"tickets": [t.to_dict() for t in tickets]})

    @app.route("/api/tickets", methods=["POST"])
    @require_api_key
    def api_create_ticket():
        data = body()
        errors = validate_ticket(data)
        if errors:
            return jsonify({"error": "validation failed", "fields": errors}), 400
        ticket = store.create_ticket(data)
        return jsonify({"ticket": ticket.to_dict(), "id": ticket.id}), 201

    @app.route("/api/tickets/<ticket_id>", methods=["PUT"])
    @require_api_key
    def api_update_ticket(ticket_id):
        if store.get_ticket(ticket_id) is None:
            return not_found(ticket_id)
        data = body()
        errors = validate_ticket(data, partial=True)
        if errors:
            return jsonify({"error": "validation failed", "fields": errors}), 400
        store.update_ticket(ticket_id, data)
        return jsonify({"ticket": store.get_ticket(ticket_id).to_dict()})

    @app.route("/api/tickets/<ticket_id>", methods=["DELETE"])
    @require_api_key
    def api_delete_ticket(ticket_id):
        if store.get_ticket(ticket_id) is None:
            return not_found(ticket_id)
        store.delete_ticket(ticket_id)
        return jsonify({"deleted": ticket_id})

    @app.route("/api/tickets/<ticket_id>/move", methods=["POST"])
    @require_api_key
    def api_move_ticket(ticket_id):
        ticket = store.get_ticket(ticket_id)
        if ticket is None:
            return not_found(ticket_id)
        status = TicketStatus.from_str(body().get("status", ""))
        if status is None:
            return jsonify({"error": "status must be one of "
                            + ", ".join(s.value for s in TicketStatus)}), 400
        if not store.try_move_ticket(ticket_id, status):
            column = store.board.column_for(status)
            reason = ("Ticket is already in this column" if ticket.status == status
                      else f"Column limit reached ({column.limit})")
            return jsonify({"error": reason}), 409
        return jsonify({"ticket": store.get_ticket(ticket_id).to_dict()})

    @app.route("/api/filters", methods=["GET"])
    def api_filters_get():
        return jsonify(store.filters.to_dict())

    @app.route("/api/filters", methods=["PUT"])
    @require_api_key
    def api_filters_set():
        store.set_filters(body())
        return jsonify(snapshot_to_dict(store.snapshot()))

    @app.route("/api/filters", methods=["DELETE"])
    @require_api_key
    def api_filters_clear():
        store.clear_filters()
        return jsonify(snapshot_to_dict(store.snapshot()))

    @app.route("/api/board/refresh", methods=["POST"])
    @require_api_key
    def api_refresh():
        store.refresh_board()
        return jsonify(snapshot_to_dict(store.snapshot()))

    @app.route("/api/stats")
    def api_stats():
        return jsonify(ticket_stats(store.board.tickets))

    @app.route("/api/filter-options")
    def api_filter_options():
        tickets = store.board.tickets
        return jsonify({
            "assignees": unique_assignees(tickets),
            "tags": unique_tags(tickets),
            "statuses": [s.value for s in TicketStatus],
            "priorities": [p.value for p in Priority],
        })

    @app.route("/api/theme", methods=["GET"])
    def api_theme_get():
        return jsonify({"theme": persistence.load_theme()})

    @app.route("/api/theme", methods=["PUT"])
    @require_api_key
    def api_theme_set():
        theme = str(body().get("theme") or "").strip()
        if not theme:
            return jsonify({"error": "theme is required"}), 400
        if not persistence.save_theme(theme):
            return jsonify({"error": "Theme could not be saved"}), 507
        return jsonify({"theme": theme})

    @app.route("/api/backup", methods=["GET"])
    def api_backup_export():
        document = export_all(persistence.kv)
        if document is None:
            return jsonify({"error": "Export failed"}), 500
        return Response(
            document,
            mimetype="application/json",
            headers={"Content-Disposition": f'attachment; filename="{backup_filename()}"'},
        )

    @app.route("/api/backup", methods=["POST"])
    @require_api_key
    def api_backup_import():
        if not import_all(persistence.kv, request.get_data(as_text=True)):
            return jsonify({"error": "Backup document is invalid"}), 422
        # Reload so the running store reflects the restored data
        store.initialize(persistence)
        return jsonify(snapshot_to_dict(store.snapshot()))

    @app.route("/api/export.csv")
    def api_export_csv():
        return Response(
            export_tickets_csv(store.board.tickets),
            mimetype="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{csv_filename()}"'},
        )

    @app.route("/health")
    def health():
        return jsonify({"status": "ok", "db": persistence.kv.db_path,
                        "tickets": len(store.board.tickets)})

    return app


def build_app(cfg: BoardConfig) -> Flask:
    kv = KeyValueStore(cfg.db_path, quota_bytes=cfg.quota_bytes)
    persistence = BoardPersistence(kv)
    columns = cfg.build_columns()
    store = BoardStore(
        columns=columns,
        board_factory=lambda: generate_demo_board(columns, board_id=cfg.board_id, name=cfg.board_name),
    )
    store.initialize(persistence)
    persistence.attach(store)
    return create_app(store, persistence, os.environ.get("TICKETBOARD_API_SECRET", ""))


# ── Main ─────────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Ticket Board Server")
    parser.add_argument("--config", default=None, help="Path to config.yaml")
    parser.add_argument("--host", default=None,
                        help="Bind address (use 0.0.0.0 to expose on network)")
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--db", help="Path to board.db (overrides TICKETBOARD_DB env var)")
    args = parser.parse_args()

    if args.db:
        os.environ["TICKETBOARD_DB"] = args.db

    cfg = BoardConfig.load(args.config)
    configure_logging(cfg.log_level)
    host = args.host or cfg.host
    port = args.port or cfg.port

    app = build_app(cfg)
    logger.info(f"Serving board on http://{host}:{port} (db: {cfg.db_path})")
    app.run(host=host, port=port, debug=False)
