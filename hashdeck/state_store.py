"""
SQLite State Store for hashdeck.

Provides portable persistence for:
- The collection snapshot (exported memory states, stored as a JSON blob)
- Review history log for analytics
- Session history

Database location: ~/.hashdeck/state.db
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path

from loguru import logger

SNAPSHOT_KEY = "collection_snapshot"

# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class ReviewRecord:
    """A single review event."""

    id: int
    card_id: str
    reviewed_at: datetime
    grade: str
    interval_days: int
    due: date


@dataclass
class SessionRecord:
    """A drill session summary."""

    id: int
    started_at: datetime
    ended_at: datetime | None
    cards_reviewed: int
    recall_rate: float


def _parse_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


# =============================================================================
# State Store
# =============================================================================


class StateStore:
    """
    SQLite-backed persistence used by the CLI.

    Handles:
    - Key/value blobs (the collection snapshot lives under SNAPSHOT_KEY)
    - Review log (card, time, grade, resulting interval)
    - Session history
    """

    DEFAULT_DB_PATH = Path.home() / ".hashdeck" / "state.db"

    def __init__(self, db_path: Path | str | None = None):
        """
        Initialize the state store.

        Args:
            db_path: Custom database path (defaults to ~/.hashdeck/state.db)
        """
        self.db_path = Path(db_path) if db_path else self.DEFAULT_DB_PATH
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn: sqlite3.Connection | None = None
        self._init_schema()

        logger.debug(f"StateStore initialized at {self.db_path}")

    @property
    def conn(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path))
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def _init_schema(self) -> None:
        cursor = self.conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS blobs (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS review_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                card_id TEXT NOT NULL,
                reviewed_at TEXT NOT NULL,
                grade TEXT NOT NULL,
                interval_days INTEGER NOT NULL,
                due TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS session_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                started_at TEXT NOT NULL,
                ended_at TEXT,
                cards_reviewed INTEGER DEFAULT 0,
                recall_rate REAL DEFAULT 0.0
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_review_log_card
            ON review_log(card_id)
        """)

        self.conn.commit()

    # =========================================================================
    # Blob Operations
    # =========================================================================

    def get_blob(self, key: str) -> str | None:
        cursor = self.conn.cursor()
        cursor.execute("SELECT value FROM blobs WHERE key = ?", (key,))
        row = cursor.fetchone()
        return row["value"] if row else None

    def put_blob(self, key: str, value: str) -> None:
        cursor = self.conn.cursor()
        cursor.execute(
            """
            INSERT INTO blobs (key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                updated_at = excluded.updated_at
        """,
            (key, value, datetime.now().isoformat()),
        )
        self.conn.commit()

    def load_snapshot(self) -> str | None:
        """Saved collection snapshot JSON, or None on first run."""
        return self.get_blob(SNAPSHOT_KEY)

    def save_snapshot(self, snapshot_json: str) -> None:
        self.put_blob(SNAPSHOT_KEY, snapshot_json)

    # =========================================================================
    # Review Log Operations
    # =========================================================================

    def log_review(
        self,
        card_id: str,
        grade: str,
        reviewed_at: datetime,
        interval_days: int,
        due: date,
    ) -> int:
        """
        Log a review event.

        Returns:
            Review record ID
        """
        cursor = self.conn.cursor()
        cursor.execute(
            """
            INSERT INTO review_log (card_id, reviewed_at, grade, interval_days, due)
            VALUES (?, ?, ?, ?, ?)
        """,
            (card_id, reviewed_at.isoformat(), grade, interval_days, due.isoformat()),
        )
        self.conn.commit()
        return cursor.lastrowid

    def delete_last_review(self, card_id: str) -> bool:
        """Drop the newest log entry for a card (used when a grade is undone)."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            DELETE FROM review_log WHERE id = (
                SELECT MAX(id) FROM review_log WHERE card_id = ?
            )
        """,
            (card_id,),
        )
        self.conn.commit()
        return cursor.rowcount > 0

    def get_recent_reviews(self, limit: int = 50) -> list[ReviewRecord]:
        """Most recent reviews across all cards, newest first."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            SELECT * FROM review_log
            ORDER BY id DESC
            LIMIT ?
        """,
            (limit,),
        )

        return [
            ReviewRecord(
                id=row["id"],
                card_id=row["card_id"],
                reviewed_at=datetime.fromisoformat(row["reviewed_at"]),
                grade=row["grade"],
                interval_days=row["interval_days"],
                due=date.fromisoformat(row["due"]),
            )
            for row in cursor.fetchall()
        ]

    # =========================================================================
    # Session Operations
    # =========================================================================

    def start_session(self, started_at: datetime | None = None) -> int:
        """
        Record the start of a drill session.

        Returns:
            Session ID
        """
        cursor = self.conn.cursor()
        cursor.execute(
            "INSERT INTO session_history (started_at) VALUES (?)",
            ((started_at or datetime.now()).isoformat(),),
        )
        self.conn.commit()
        return cursor.lastrowid

    def end_session(
        self,
        session_id: int,
        cards_reviewed: int,
        recall_rate: float,
        ended_at: datetime | None = None,
    ) -> None:
        cursor = self.conn.cursor()
        cursor.execute(
            """
            UPDATE session_history SET
                ended_at = ?,
                cards_reviewed = ?,
                recall_rate = ?
            WHERE id = ?
        """,
            ((ended_at or datetime.now()).isoformat(), cards_reviewed, recall_rate, session_id),
        )
        self.conn.commit()

    def get_session_history(self, limit: int = 30) -> list[SessionRecord]:
        """Get recent session history, newest first."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            SELECT * FROM session_history
            ORDER BY id DESC
            LIMIT ?
        """,
            (limit,),
        )

        return [
            SessionRecord(
                id=row["id"],
                started_at=datetime.fromisoformat(row["started_at"]),
                ended_at=_parse_datetime(row["ended_at"]),
                cards_reviewed=row["cards_reviewed"],
                recall_rate=row["recall_rate"],
            )
            for row in cursor.fetchall()
        ]

    # =========================================================================
    # Stats
    # =========================================================================

    def get_stats(self) -> dict:
        """
        Get review-log statistics.

        Returns:
            Dictionary with aggregate stats
        """
        cursor = self.conn.cursor()

        cursor.execute("SELECT COUNT(*) as cnt FROM review_log")
        total_reviews = cursor.fetchone()["cnt"]

        cursor.execute("SELECT COUNT(*) as cnt FROM session_history WHERE ended_at IS NOT NULL")
        sessions = cursor.fetchone()["cnt"]

        # Retention over the last 100 reviews (anything but forgot passes)
        cursor.execute("""
            SELECT
                COUNT(CASE WHEN grade != 'forgot' THEN 1 END) * 100.0 / COUNT(*) as retention
            FROM (
                SELECT grade FROM review_log ORDER BY id DESC LIMIT 100
            )
        """)
        row = cursor.fetchone()
        retention = row["retention"] if row["retention"] else 0

        return {
            "total_reviews": total_reviews,
            "retention_rate_percent": round(retention, 1),
            "sessions_completed": sessions,
        }

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None
