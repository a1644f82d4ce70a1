"""In-memory implementation of the tracking repository."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Dict, Optional

from pydantic import ValidationError

from ..errors import CorruptRecord, StaleRecord, WorkflowNotFound
from .models import SessionInfo, WorkflowTracking, session_matches, session_name, utcnow
from .repository import TrackingRepository

logger = logging.getLogger(__name__)


class InMemoryTrackingRepository(TrackingRepository):
    """Store tracking records in local memory.

    Useful for tests or throwaway runs. Records are kept as serialized JSON
    so every ``load`` hands out an independent copy.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._records: Dict[str, str] = {}
        self._allocated: set[str] = set()
        self._archived: Dict[str, str] = {}

    # ------------------------------------------------------------------
    def locate(self, feature: str) -> Optional[str]:
        names = sorted(
            name
            for name in self._allocated | set(self._records)
            if session_matches(name, feature)
        )
        return names[-1] if names else None

    def create_or_reuse(self, feature: str) -> str:
        location = self.locate(feature)
        if location is None:
            location = session_name(feature, self._clock())
            self._allocated.add(location)
            logger.debug(f"Allocated in-memory session {location}")
        return location

    def load(self, feature: str) -> WorkflowTracking:
        location = self.locate(feature)
        if location is None or location not in self._records:
            raise WorkflowNotFound(feature)
        try:
            return WorkflowTracking.from_json(self._records[location])
        except ValidationError as exc:
            raise CorruptRecord(location, details=str(exc)) from exc

    def save(self, feature: str, record: WorkflowTracking) -> WorkflowTracking:
        location = self.create_or_reuse(feature)
        stored = self._records.get(location)
        if stored is not None:
            try:
                stored_revision = WorkflowTracking.from_json(stored).revision
            except ValidationError as exc:
                raise CorruptRecord(location, details=str(exc)) from exc
            if stored_revision != record.revision:
                raise StaleRecord(feature, record.revision, stored_revision)
        updated = record.model_copy(deep=True)
        updated.updated_at = self._clock()
        updated.revision = record.revision + 1
        self._records[location] = updated.to_json()
        record.updated_at = updated.updated_at
        record.revision = updated.revision
        return record

    def archive(self, feature: str) -> str:
        location = self.locate(feature)
        if location is None:
            raise WorkflowNotFound(feature)
        self._allocated.discard(location)
        archived_name = f"archive/{location}"
        suffix = 1
        while archived_name in self._archived:
            suffix += 1
            archived_name = f"archive/{location}.{suffix}"
        if location in self._records:
            self._archived[archived_name] = self._records.pop(location)
        return archived_name

    def list_sessions(self) -> list[SessionInfo]:
        sessions = [
            _summary(name, data, archived=False) for name, data in self._records.items()
        ]
        sessions += [
            _summary(name, data, archived=True) for name, data in self._archived.items()
        ]
        return sorted(sessions, key=lambda s: s.location)


def _summary(location: str, data: str, archived: bool) -> SessionInfo:
    record = WorkflowTracking.from_json(data)
    return SessionInfo(
        location=location,
        feature=record.feature,
        workflow_status=record.workflow_status,
        current_stage=record.current_stage,
        updated_at=record.updated_at,
        archived=archived,
    )
