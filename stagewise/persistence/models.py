"""Data models for persisted stage tracking state."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from ..catalog import StageCatalog

_DATE_PREFIX = re.compile(r"\d{4}-\d{2}-\d{2}")


class StageState(str, Enum):
    """Lifecycle of a single stage within one workflow run."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class WorkflowState(str, Enum):
    """Lifecycle of a whole workflow run."""

    ACTIVE = "active"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"


class ValidationResult(BaseModel):
    """Outcome of checking one validation criterion."""

    criterion: str
    passed: bool
    notes: Optional[str] = None


class StageStatus(BaseModel):
    """Progress of one stage in a workflow run."""

    id: int
    name: str
    status: StageState = StageState.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    outputs: Optional[list[str]] = None
    validation_results: Optional[list[ValidationResult]] = None
    error: Optional[str] = None

    def reset(self) -> None:
        """Return the stage to ``pending`` and drop everything it recorded."""
        self.status = StageState.PENDING
        self.started_at = None
        self.completed_at = None
        self.outputs = None
        self.validation_results = None
        self.error = None


class RollbackEntry(BaseModel):
    """Audit log entry written by every rollback."""

    stage: int
    timestamp: datetime
    reason: str


class WorkflowTracking(BaseModel):
    """Tracking record for one run of the pipeline for a feature."""

    feature: str
    workflow_status: WorkflowState = WorkflowState.ACTIVE
    current_stage: int = 1
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    stages: list[StageStatus] = Field(default_factory=list)
    rollback_history: list[RollbackEntry] = Field(default_factory=list)
    revision: int = 0

    @classmethod
    def new(
        cls, feature: str, catalog: StageCatalog, now: datetime, revision: int = 0
    ) -> "WorkflowTracking":
        """Build a fresh active record positioned at the first stage."""
        return cls(
            feature=feature,
            workflow_status=WorkflowState.ACTIVE,
            current_stage=catalog.first.id,
            created_at=now,
            updated_at=now,
            stages=[StageStatus(id=stage.id, name=stage.name) for stage in catalog],
            rollback_history=[],
            revision=revision,
        )

    def stage(self, stage_id: int) -> Optional[StageStatus]:
        return next((s for s in self.stages if s.id == stage_id), None)

    @property
    def is_active(self) -> bool:
        return self.workflow_status is WorkflowState.ACTIVE

    def to_json(self) -> str:
        """Serialize the record to the on-disk JSON document."""
        return self.model_dump_json(indent=2, exclude_none=True)

    @classmethod
    def from_json(cls, data: str | bytes) -> "WorkflowTracking":
        return cls.model_validate_json(data)


class SessionInfo(BaseModel):
    """Summary of one stored tracking record."""

    location: str
    feature: str
    workflow_status: WorkflowState
    current_stage: int
    updated_at: datetime
    archived: bool = False


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def session_name(feature: str, now: datetime) -> str:
    """Storage location name for a run of ``feature`` started at ``now``."""
    return f"{now.date().isoformat()}-{feature}"


def session_matches(name: str, feature: str) -> bool:
    """Return ``True`` when ``name`` is a ``{YYYY-MM-DD}-{feature}`` location."""
    return (
        len(name) > 11
        and name[10] == "-"
        and name[11:] == feature
        and _DATE_PREFIX.fullmatch(name[:10]) is not None
    )
