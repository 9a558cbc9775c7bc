"""
Board persistence (SQLite key-value store).

KeyValueStore keeps string values in a single `system_state` table.
BoardPersistence serializes the board, filters, and theme into it.

Persistence is best-effort: load failures return None, save failures return
False, both are logged. The in-memory BoardStore stays authoritative.
"""
import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .schema import Board, FilterCriteria

logger = logging.getLogger(__name__)

BOARD_KEY = "kanban-board-data"
FILTERS_KEY = "kanban-filters"
THEME_KEY = "kanban-theme-preference"

ESTIMATED_CAPACITY = 5 * 1024 * 1024  # browser-style 5MB estimate when no quota is set


class StorageError(Exception):
    """Raised when the key-value store cannot complete a read or write."""
    pass


class StorageQuotaExceeded(StorageError):
    """Raised when a write would push the store past its quota."""
    pass


def _connect(db_path: str) -> sqlite3.Connection:
    """Open a connection with WAL mode."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


class KeyValueStore:
    """String key-value store backed by one SQLite table."""

    def __init__(self, db_path: str, quota_bytes: Optional[int] = None):
        self.db_path = str(db_path)
        self.quota_bytes = quota_bytes
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _init_schema(self):
        with _connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS system_state (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.commit()

    def get(self, key: str) -> Optional[str]:
        with _connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT value FROM system_state WHERE key = ?", (key,)
            ).fetchone()
        return row["value"] if row else None

    def set(self, key: str, value: str) -> None:
        self.set_many({key: value})

    def set_many(self, values: Dict[str, str]) -> None:
        """Write several keys in one transaction: all land or none do."""
        now = datetime.now(timezone.utc).isoformat()
        try:
            with _connect(self.db_path) as conn:
                self._check_quota(conn, values)
                conn.executemany("""
                    INSERT INTO system_state (key, value, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at
                """, [(k, v, now) for k, v in values.items()])
                conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to write {sorted(values)}: {e}") from e

    def _check_quota(self, conn: sqlite3.Connection, values: Dict[str, str]) -> None:
        if self.quota_bytes is None:
            return
        placeholders = ",".join("?" for _ in values)
        row = conn.execute(
            f"SELECT COALESCE(SUM(LENGTH(value)), 0) FROM system_state WHERE key NOT IN ({placeholders})",
            list(values),
        ).fetchone()
        total = row[0] + sum(len(v) for v in values.values())
        if total > self.quota_bytes:
            raise StorageQuotaExceeded(
                f"Writing {sorted(values)} needs {total} bytes, quota is {self.quota_bytes}"
            )

    def remove(self, key: str) -> None:
        with _connect(self.db_path) as conn:
            conn.execute("DELETE FROM system_state WHERE key = ?", (key,))
            conn.commit()

    def keys(self) -> List[str]:
        with _connect(self.db_path) as conn:
            rows = conn.execute("SELECT key FROM system_state ORDER BY key").fetchall()
        return [r["key"] for r in rows]

    def items(self) -> List[Tuple[str, str]]:
        with _connect(self.db_path) as conn:
            rows = conn.execute("SELECT key, value FROM system_state ORDER BY key").fetchall()
        return [(r["key"], r["value"]) for r in rows]

    def clear(self) -> None:
        with _connect(self.db_path) as conn:
            conn.execute("DELETE FROM system_state")
            conn.commit()

    def storage_info(self) -> Dict[str, float]:
        """Bytes used, bytes available, and percentage of capacity used."""
        with _connect(self.db_path) as conn:
            used = conn.execute(
                "SELECT COALESCE(SUM(LENGTH(value)), 0) FROM system_state"
            ).fetchone()[0]
        capacity = self.quota_bytes or ESTIMATED_CAPACITY
        return {
            "used": used,
            "available": max(0, capacity - used),
            "percentage": used / capacity * 100,
        }


class BoardPersistence:
    """Saves and restores board, filters, and theme through a KeyValueStore."""

    def __init__(self, kv: KeyValueStore):
        self.kv = kv
        self.last_error: Optional[str] = None

    # ── board ──

    def save_board(self, board: Board) -> bool:
        return self._save(BOARD_KEY, lambda: json.dumps(board.to_dict()))

    def load_board(self) -> Optional[Board]:
        data = self._load_json(BOARD_KEY)
        if data is None:
            return None
        try:
            return Board.from_dict(data)
        except Exception as e:
            self._fail(f"Stored board is unreadable: {e}")
            return None

    # ── filters ──

    def save_filters(self, criteria: FilterCriteria) -> bool:
        return self._save(FILTERS_KEY, lambda: json.dumps(criteria.to_dict()))

    def load_filters(self) -> Optional[FilterCriteria]:
        data = self._load_json(FILTERS_KEY)
        if data is None:
            return None
        try:
            return FilterCriteria.from_dict(data)
        except Exception as e:
            self._fail(f"Stored filters are unreadable: {e}")
            return None

    # ── theme ──

    def save_theme(self, theme_id: str) -> bool:
        return self._save(THEME_KEY, lambda: str(theme_id))

    def load_theme(self) -> Optional[str]:
        self.last_error = None
        try:
            return self.kv.get(THEME_KEY) or None
        except Exception as e:
            self._fail(f"Failed to load theme: {e}")
            return None

    # ── store wiring ──

    def attach(self, store) -> None:
        """Save after every settled change of `store`, starting with its current state.

        Saves run synchronously inside the intent that triggered them, under the
        store lock, so writes land in intent order. They never raise.

        When the store fell back to a fresh board because the stored one was
        unreadable, the stored value is left in place until the next change.
        """
        store.subscribe("board_changed", lambda snapshot: self.save_board(snapshot.board))
        store.subscribe("filters_changed", lambda snapshot: self.save_filters(snapshot.filters))
        if store.snapshot().error is None:
            self.save_board(store.board)
        self.save_filters(store.filters)

    # ── helpers ──

    def _save(self, key: str, serialize) -> bool:
        try:
            self.kv.set(key, serialize())
            return True
        except Exception as e:
            self._fail(f"Failed to save {key}: {e}", level=logging.WARNING)
            return False

    def _load_json(self, key: str) -> Optional[dict]:
        self.last_error = None
        try:
            raw = self.kv.get(key)
        except Exception as e:
            self._fail(f"Failed to read {key}: {e}")
            return None
        if raw is None:
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            self._fail(f"Corrupted value under {key}: {e}")
            return None
        # Older exports wrapped values as {"data": ..., "timestamp": ...}
        if isinstance(data, dict) and "timestamp" in data and isinstance(data.get("data"), dict):
            data = data["data"]
        if not isinstance(data, dict):
            self._fail(f"Unexpected {type(data).__name__} under {key}")
            return None
        return data

    def _fail(self, message: str, level: int = logging.ERROR) -> None:
        self.last_error = message
        logger.log(level, message)
