"""File system implementation of the tracking repository.

Layout::

    {sessions_dir}/{YYYY-MM-DD}-{feature}/stage-tracking.json
    {sessions_dir}/archive/{YYYY-MM-DD}-{feature}/stage-tracking.json
"""

from __future__ import annotations

import fcntl
import logging
import os
import tempfile
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterator, Optional

from pydantic import ValidationError

from ..errors import CorruptRecord, StaleRecord, WorkflowNotFound
from .models import SessionInfo, WorkflowTracking, session_matches, session_name, utcnow
from .repository import TrackingRepository

logger = logging.getLogger(__name__)

TRACKING_FILE = "stage-tracking.json"
LOCK_FILE = ".stage-tracking.lock"
ARCHIVE_DIR = "archive"


class FileSystemTrackingRepository(TrackingRepository):
    """Persist one JSON document per workflow run under ``sessions_dir``."""

    def __init__(
        self, sessions_dir: str | Path, clock: Callable[[], datetime] = utcnow
    ) -> None:
        self.sessions_dir = Path(sessions_dir)
        self._clock = clock

    # ------------------------------------------------------------------
    # Helper methods
    def _tracking_file(self, location: str) -> Path:
        return self.sessions_dir / location / TRACKING_FILE

    def _read(self, path: Path) -> WorkflowTracking:
        try:
            return WorkflowTracking.from_json(path.read_bytes())
        except (ValidationError, UnicodeDecodeError) as exc:
            raise CorruptRecord(str(path), details=str(exc)) from exc

    @contextmanager
    def _locked(self, location: str) -> Iterator[None]:
        lock_path = self.sessions_dir / location / LOCK_FILE
        with open(lock_path, "a+", encoding="utf-8") as handle:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)

    def _write(self, path: Path, content: str) -> None:
        # Write beside the target then rename so readers never see a partial file.
        fd, tmp_name = tempfile.mkstemp(
            prefix=".stage-tracking-", suffix=".tmp", dir=str(path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    # ------------------------------------------------------------------
    # Repository API
    def locate(self, feature: str) -> Optional[str]:
        if not self.sessions_dir.is_dir():
            return None
        names = sorted(
            entry.name
            for entry in self.sessions_dir.iterdir()
            if entry.is_dir() and session_matches(entry.name, feature)
        )
        return names[-1] if names else None

    def create_or_reuse(self, feature: str) -> str:
        location = self.locate(feature)
        if location is None:
            location = session_name(feature, self._clock())
            (self.sessions_dir / location).mkdir(parents=True, exist_ok=True)
            logger.debug(f"Created session directory {self.sessions_dir / location}")
        return location

    def load(self, feature: str) -> WorkflowTracking:
        location = self.locate(feature)
        if location is None:
            raise WorkflowNotFound(feature)
        path = self._tracking_file(location)
        if not path.exists():
            raise WorkflowNotFound(feature, details=f"Missing {path}")
        return self._read(path)

    def save(self, feature: str, record: WorkflowTracking) -> WorkflowTracking:
        location = self.create_or_reuse(feature)
        path = self._tracking_file(location)
        with self._locked(location):
            if path.exists():
                stored_revision = self._read(path).revision
                if stored_revision != record.revision:
                    raise StaleRecord(feature, record.revision, stored_revision)
            updated = record.model_copy(deep=True)
            updated.updated_at = self._clock()
            updated.revision = record.revision + 1
            self._write(path, updated.to_json())
        record.updated_at = updated.updated_at
        record.revision = updated.revision
        logger.debug(f"Saved {path} at revision {record.revision}")
        return record

    def archive(self, feature: str) -> str:
        location = self.locate(feature)
        if location is None:
            raise WorkflowNotFound(feature)
        archive_root = self.sessions_dir / ARCHIVE_DIR
        archive_root.mkdir(parents=True, exist_ok=True)
        target = archive_root / location
        suffix = 1
        while target.exists():
            suffix += 1
            target = archive_root / f"{location}.{suffix}"
        os.replace(self.sessions_dir / location, target)
        logger.debug(f"Archived {location} to {target}")
        return f"{ARCHIVE_DIR}/{target.name}"

    def list_sessions(self) -> list[SessionInfo]:
        sessions: list[SessionInfo] = []
        if not self.sessions_dir.is_dir():
            return sessions
        candidates = [(p, False) for p in self.sessions_dir.glob(f"*/{TRACKING_FILE}")]
        candidates += [
            (p, True) for p in self.sessions_dir.glob(f"{ARCHIVE_DIR}/*/{TRACKING_FILE}")
        ]
        for path, archived in candidates:
            if not archived and path.parent.name == ARCHIVE_DIR:
                continue
            try:
                record = self._read(path)
            except CorruptRecord:
                logger.warning(f"Skipping unreadable tracking file {path}")
                continue
            location = path.parent.name
            if archived:
                location = f"{ARCHIVE_DIR}/{location}"
            sessions.append(
                SessionInfo(
                    location=location,
                    feature=record.feature,
                    workflow_status=record.workflow_status,
                    current_stage=record.current_stage,
                    updated_at=record.updated_at,
                    archived=archived,
                )
            )
        return sorted(sessions, key=lambda s: s.location)
