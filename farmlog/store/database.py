"""SQLite persistence for logs, reference data and sync state.

Logs are stored in their persistence shape as a single JSON document per
row; SQLite assigns each log its ``local_id``.
"""

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

from ..errors import MalformedInputError
from ..records.log import LogRecord
from ..records.transcoder import from_persistence, to_persistence

logger = logging.getLogger(__name__)

SCHEMA = """
-- Logs in persistence shape, keyed by the locally assigned id
CREATE TABLE IF NOT EXISTS logs (
    local_id INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT,
    payload TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_logs_id ON logs(id);

-- Areas, assets, units, categories and equipment fetched from the server
CREATE TABLE IF NOT EXISTS reference_data (
    kind TEXT PRIMARY KEY,
    items TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

-- Key/value sync bookkeeping (last sync date)
CREATE TABLE IF NOT EXISTS sync_state (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""

SYNC_DATE_KEY = "sync_date"


def _local_id(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise MalformedInputError(f"{value!r} is not a database local id") from e


class LogDatabase:
    """Local durable storage for the log store."""

    def __init__(self, db_path: str | Path):
        """Initialize the database.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = Path(db_path).expanduser()
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Initialize database connection and schema."""
        if str(self.db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(str(self.db_path))
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(SCHEMA)
        self._conn.commit()

        logger.info(f"LogDatabase connected to {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def _ensure_connected(self) -> sqlite3.Connection:
        """Ensure database connection exists."""
        if self._conn is None:
            self.connect()
        return self._conn

    # ==================== Logs ====================

    def save(self, record: LogRecord) -> int:
        """Insert or update a log.

        Args:
            record: Log to write. A log without ``local_id`` is inserted.

        Returns:
            The log's local id.
        """
        conn = self._ensure_connected()

        payload = to_persistence(record)
        local_id = payload.pop("local_id", None)
        now = datetime.now().isoformat()
        server_id = str(record.id) if record.id is not None else None

        if local_id is None:
            cursor = conn.execute(
                "INSERT INTO logs (id, payload, updated_at) VALUES (?, ?, ?)",
                (server_id, json.dumps(payload), now),
            )
            local_id = cursor.lastrowid
            logger.debug(f"Inserted log local_id={local_id}")
        else:
            local_id = _local_id(local_id)
            conn.execute(
                """
                INSERT INTO logs (local_id, id, payload, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(local_id) DO UPDATE SET
                    id = excluded.id,
                    payload = excluded.payload,
                    updated_at = excluded.updated_at
                """,
                (local_id, server_id, json.dumps(payload), now),
            )
            logger.debug(f"Updated log local_id={local_id}")

        conn.commit()
        return local_id

    def load_all(self) -> list[LogRecord]:
        """Load every stored log, oldest first."""
        conn = self._ensure_connected()

        cursor = conn.execute(
            "SELECT local_id, payload FROM logs ORDER BY local_id ASC"
        )

        records = []
        for row in cursor:
            payload = json.loads(row["payload"])
            payload["local_id"] = row["local_id"]
            records.append(from_persistence(payload))
        return records

    def get(self, local_id: int) -> LogRecord | None:
        """Load a single log by local id."""
        conn = self._ensure_connected()

        row = conn.execute(
            "SELECT local_id, payload FROM logs WHERE local_id = ?",
            (_local_id(local_id),),
        ).fetchone()
        if row is None:
            return None
        payload = json.loads(row["payload"])
        payload["local_id"] = row["local_id"]
        return from_persistence(payload)

    def delete(self, local_id: int) -> bool:
        """Delete a log.

        Returns:
            True if a log was deleted.
        """
        conn = self._ensure_connected()

        cursor = conn.execute(
            "DELETE FROM logs WHERE local_id = ?", (_local_id(local_id),)
        )
        conn.commit()
        return cursor.rowcount > 0

    # ==================== Reference data ====================

    def set_reference(self, kind: str, items: list[dict[str, Any]]) -> None:
        """Replace all stored items of one reference kind."""
        conn = self._ensure_connected()

        conn.execute(
            """
            INSERT INTO reference_data (kind, items, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(kind) DO UPDATE SET
                items = excluded.items,
                updated_at = excluded.updated_at
            """,
            (kind, json.dumps(items), datetime.now().isoformat()),
        )
        conn.commit()

    def get_reference(self, kind: str) -> list[dict[str, Any]]:
        conn = self._ensure_connected()

        row = conn.execute(
            "SELECT items FROM reference_data WHERE kind = ?", (kind,)
        ).fetchone()
        return json.loads(row["items"]) if row else []

    # ==================== Sync state ====================

    def get_sync_date(self) -> int | None:
        """Epoch seconds of the last successful sync, if any."""
        conn = self._ensure_connected()

        row = conn.execute(
            "SELECT value FROM sync_state WHERE key = ?", (SYNC_DATE_KEY,)
        ).fetchone()
        return int(row["value"]) if row else None

    def set_sync_date(self, stamp: int) -> None:
        conn = self._ensure_connected()

        conn.execute(
            """
            INSERT INTO sync_state (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """,
            (SYNC_DATE_KEY, str(stamp)),
        )
        conn.commit()

    def get_stats(self) -> dict[str, Any]:
        """Get database statistics.

        Returns:
            Dictionary with log counts and other stats.
        """
        records = self.load_all()

        stats = {
            "total_logs": len(records),
            "ready_to_sync": sum(1 for r in records if r.is_ready_to_sync),
            "unpushed": sum(1 for r in records if not r.was_pushed_to_server),
            "sync_date": self.get_sync_date(),
        }

        if str(self.db_path) != ":memory:" and self.db_path.exists():
            stats["db_size_mb"] = round(
                self.db_path.stat().st_size / (1024 * 1024), 2
            )

        return stats
