"""SQLite implementation of the tracking repository."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

from pydantic import ValidationError

from ..errors import CorruptRecord, StaleRecord, WorkflowNotFound
from .models import SessionInfo, WorkflowTracking, session_matches, session_name, utcnow
from .repository import TrackingRepository

logger = logging.getLogger(__name__)


class SQLiteTrackingRepository(TrackingRepository):
    """Persist tracking records using SQLite.

    Saves use ``UPDATE ... WHERE revision = ?`` so concurrent writers against
    the same feature cannot silently overwrite each other.
    """

    def __init__(self, db_path: str | Path, clock: Callable[[], datetime] = utcnow):
        self.db_path = str(db_path)
        self._clock = clock
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS sessions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                location TEXT NOT NULL,
                feature TEXT NOT NULL,
                record TEXT,
                revision INTEGER NOT NULL DEFAULT 0,
                archived INTEGER NOT NULL DEFAULT 0
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_sessions_feature ON sessions (feature, archived)"
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()
        return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    def _current_row(self, feature: str) -> sqlite3.Row | None:
        rows = self._fetchall(
            "SELECT id, location, record, revision FROM sessions WHERE feature = ? AND archived = 0",
            feature,
        )
        rows = [r for r in rows if session_matches(r["location"], feature)]
        if not rows:
            return None
        return max(rows, key=lambda r: (r["location"], r["id"]))

    def _parse(self, row: sqlite3.Row) -> WorkflowTracking:
        try:
            return WorkflowTracking.from_json(row["record"])
        except ValidationError as exc:
            raise CorruptRecord(row["location"], details=str(exc)) from exc

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Repository API
    def locate(self, feature: str) -> Optional[str]:
        row = self._current_row(feature)
        return row["location"] if row else None

    def create_or_reuse(self, feature: str) -> str:
        row = self._current_row(feature)
        if row is not None:
            return row["location"]
        location = session_name(feature, self._clock())
        self._execute(
            "INSERT INTO sessions (location, feature, record, revision) VALUES (?, ?, NULL, 0)",
            location,
            feature,
        )
        logger.debug(f"Allocated SQLite session {location}")
        return location

    def load(self, feature: str) -> WorkflowTracking:
        row = self._current_row(feature)
        if row is None or row["record"] is None:
            raise WorkflowNotFound(feature)
        return self._parse(row)

    def save(self, feature: str, record: WorkflowTracking) -> WorkflowTracking:
        self.create_or_reuse(feature)
        row = self._current_row(feature)
        expected = record.revision
        updated = record.model_copy(deep=True)
        updated.updated_at = self._clock()
        updated.revision = expected + 1
        if row["record"] is None:
            changed = self._execute(
                "UPDATE sessions SET record = ?, revision = ? WHERE id = ? AND record IS NULL",
                updated.to_json(),
                updated.revision,
                row["id"],
            )
        else:
            changed = self._execute(
                "UPDATE sessions SET record = ?, revision = ? WHERE id = ? AND revision = ?",
                updated.to_json(),
                updated.revision,
                row["id"],
                expected,
            )
        if changed != 1:
            current = self._fetchone("SELECT revision FROM sessions WHERE id = ?", row["id"])
            raise StaleRecord(feature, expected, current["revision"] if current else -1)
        record.updated_at = updated.updated_at
        record.revision = updated.revision
        return record

    def archive(self, feature: str) -> str:
        row = self._current_row(feature)
        if row is None:
            raise WorkflowNotFound(feature)
        self._execute("UPDATE sessions SET archived = 1 WHERE id = ?", row["id"])
        return f"archive/{row['location']}"

    def list_sessions(self) -> list[SessionInfo]:
        rows = self._fetchall(
            "SELECT location, record, archived FROM sessions WHERE record IS NOT NULL ORDER BY location, id"
        )
        sessions: list[SessionInfo] = []
        for row in rows:
            try:
                record = self._parse(row)
            except CorruptRecord:
                logger.warning(f"Skipping unreadable tracking record {row['location']}")
                continue
            location = row["location"]
            if row["archived"]:
                location = f"archive/{location}"
            sessions.append(
                SessionInfo(
                    location=location,
                    feature=record.feature,
                    workflow_status=record.workflow_status,
                    current_stage=record.current_stage,
                    updated_at=record.updated_at,
                    archived=bool(row["archived"]),
                )
            )
        return sorted(sessions, key=lambda s: s.location)
