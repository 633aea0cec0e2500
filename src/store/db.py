"""SQLite-backed store of received Telegram updates.

The unique index on ``update_id`` is the authoritative idempotency guard:
two deliveries racing past ``exists()`` still produce exactly one row, and
the loser gets ``DuplicateUpdateError``.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import UTC, datetime
from pathlib import Path

from src.models import InboundUpdate, StoredUpdate

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS telegram_updates (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    update_id INTEGER NOT NULL,
    chat_id INTEGER,
    username TEXT,
    raw_data TEXT,
    message_text TEXT,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_telegram_updates_update_id
    ON telegram_updates(update_id);
"""


class StoreError(Exception):
    """Raised when the update store cannot complete an operation."""


class DuplicateUpdateError(StoreError):
    """Raised when an update_id is already recorded."""

    def __init__(self, update_id: int) -> None:
        self.update_id = update_id
        super().__init__(f"Update {update_id} already recorded")


class UpdateStore:
    """Persists inbound updates keyed uniquely by update_id."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._create_tables()

    def _create_tables(self) -> None:
        self.conn.executescript(SCHEMA_SQL)
        self.conn.commit()

    def exists(self, update_id: int) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM telegram_updates WHERE update_id = ? LIMIT 1",
            (update_id,),
        ).fetchone()
        return row is not None

    def insert(self, update: InboundUpdate) -> StoredUpdate:
        received_at = datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S")
        try:
            with self.conn:
                self.conn.execute(
                    """INSERT INTO telegram_updates
                       (update_id, chat_id, username, raw_data, message_text, created_at)
                       VALUES (?, ?, ?, ?, ?, ?)""",
                    (
                        update.update_id,
                        update.chat_id,
                        update.username,
                        update.raw_payload,
                        update.message_text,
                        received_at,
                    ),
                )
        except sqlite3.IntegrityError as exc:
            raise DuplicateUpdateError(update.update_id) from exc
        except sqlite3.Error as exc:
            raise StoreError(f"Failed to insert update {update.update_id}: {exc}") from exc

        return StoredUpdate(
            update_id=update.update_id,
            chat_id=update.chat_id,
            username=update.username,
            message_text=update.message_text,
            raw_data=update.raw_payload,
            received_at=received_at,
        )

    def get(self, update_id: int) -> StoredUpdate | None:
        row = self.conn.execute(
            "SELECT * FROM telegram_updates WHERE update_id = ?", (update_id,)
        ).fetchone()
        return _row_to_update(row) if row else None

    def recent(self, limit: int = 20) -> list[StoredUpdate]:
        rows = self.conn.execute(
            "SELECT * FROM telegram_updates ORDER BY id DESC LIMIT ?", (limit,)
        ).fetchall()
        return [_row_to_update(r) for r in rows]

    def count(self) -> int:
        row = self.conn.execute("SELECT COUNT(*) FROM telegram_updates").fetchone()
        return int(row[0])

    def close(self) -> None:
        self.conn.close()


def _row_to_update(row: sqlite3.Row) -> StoredUpdate:
    return StoredUpdate(
        update_id=row["update_id"],
        chat_id=row["chat_id"],
        username=row["username"],
        message_text=row["message_text"],
        raw_data=row["raw_data"],
        received_at=row["created_at"],
    )
