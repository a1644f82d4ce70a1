"""Stage transition engine.

Every operation loads the full tracking record, checks all preconditions
before touching it, mutates the loaded copy and hands it back to the
repository for a full overwrite. A rejected operation never persists
anything.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Callable, Iterable, Optional

from pydantic import BaseModel, Field

from .catalog import DEFAULT_CATALOG, StageCatalog, StageDefinition
from .config import StagewiseConfig
from .errors import (
    AlreadyActive,
    AlreadyExists,
    CorruptRecord,
    InvalidFeatureName,
    InvalidTransition,
    OutOfSequence,
    PrerequisitesUnmet,
    StagewiseError,
    WorkflowNotFound,
)
from .persistence.models import (
    RollbackEntry,
    StageState,
    ValidationResult,
    WorkflowState,
    WorkflowTracking,
    utcnow,
)
from .persistence.repository import TrackingRepository

logger = logging.getLogger(__name__)

FEATURE_PATTERN = re.compile(r"[A-Za-z0-9][A-Za-z0-9._-]*")
DEFAULT_ROLLBACK_REASON = "Manual rollback"
DEFAULT_ABORT_REASON = "Manual abort"
DEFAULT_FAILURE_REASON = "Stage failed"

RESUMABLE = (WorkflowState.ABORTED, WorkflowState.FAILED)
# A completed workflow that was rolled back can be worked forward again.
COMPLETABLE = (WorkflowState.ACTIVE, WorkflowState.COMPLETED)


class StageReadiness(BaseModel):
    """What a caller needs to execute a stage that passed validation."""

    stage_id: int
    name: str
    expected_outputs: list[str] = Field(default_factory=list)
    validation_criteria: list[str] = Field(default_factory=list)


class CompletionResult(BaseModel):
    """Outcome of completing a stage."""

    stage_id: int
    workflow_completed: bool
    next_stage: Optional[int] = None
    tracking: WorkflowTracking


class StageTransitionEngine:
    """Apply workflow operations against records held by a repository."""

    def __init__(
        self,
        repository: TrackingRepository,
        catalog: StageCatalog = DEFAULT_CATALOG,
        config: Optional[StagewiseConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repository = repository
        self.catalog = catalog
        self.config = config or StagewiseConfig()
        self._clock = clock

    # ------------------------------------------------------------------
    # Helpers
    def _reject(self, operation: str, feature: str, error: StagewiseError) -> StagewiseError:
        logger.warning(f"Rejected {operation} for feature={feature}: {error.message}")
        return error

    def _check_feature(self, feature: str) -> None:
        if not FEATURE_PATTERN.fullmatch(feature or ""):
            raise InvalidFeatureName(feature)

    def _load(self, feature: str) -> WorkflowTracking:
        self._check_feature(feature)
        tracking = self.repository.load(feature)
        stage_ids = [stage.id for stage in tracking.stages]
        if stage_ids != self.catalog.ids:
            raise CorruptRecord(
                feature,
                details=f"Stage ids {stage_ids} do not match catalog {self.catalog.ids}",
            )
        if tracking.current_stage not in self.catalog:
            raise CorruptRecord(
                feature, details=f"Current stage {tracking.current_stage} is not in catalog"
            )
        return tracking

    def _unmet_prerequisites(
        self, tracking: WorkflowTracking, stage: StageDefinition
    ) -> list[tuple[int, str]]:
        unmet = []
        for prereq_id in sorted(stage.prerequisites):
            prereq = tracking.stage(prereq_id)
            if prereq is None or prereq.status is not StageState.COMPLETED:
                unmet.append((prereq_id, prereq.status.value if prereq else "unknown"))
        return unmet

    # ------------------------------------------------------------------
    # Operations
    def status(self, feature: str) -> WorkflowTracking:
        """Load the tracking record without changing it."""
        return self._load(feature)

    def init(self, feature: str) -> WorkflowTracking:
        """Start a new workflow for ``feature`` positioned at the first stage."""
        self._check_feature(feature)
        try:
            existing: Optional[WorkflowTracking] = self.repository.load(feature)
        except WorkflowNotFound:
            existing = None

        if existing is not None:
            if existing.is_active:
                current = self.catalog.get(existing.current_stage)
                raise self._reject(
                    "init",
                    feature,
                    AlreadyActive(
                        feature, existing.current_stage, current.name if current else ""
                    ),
                )
            if self.config.init_policy == "require-archive":
                raise self._reject(
                    "init", feature, AlreadyExists(feature, existing.workflow_status.value)
                )
            logger.info(
                f"Replacing {existing.workflow_status.value} workflow for feature={feature}"
            )

        tracking = WorkflowTracking.new(
            feature,
            self.catalog,
            self._clock(),
            revision=existing.revision if existing is not None else 0,
        )
        self.repository.save(feature, tracking)
        logger.info(f"Initialized stage tracking for feature={feature}")
        return tracking

    def validate(self, feature: str, stage_id: int) -> StageReadiness:
        """Check that ``stage_id`` may be executed now. Never mutates state."""
        tracking = self._load(feature)
        stage = self.catalog.require(stage_id)

        unmet = self._unmet_prerequisites(tracking, stage)
        if unmet:
            raise self._reject("validate", feature, PrerequisitesUnmet(stage_id, unmet))
        if stage_id != tracking.current_stage:
            raise self._reject(
                "validate", feature, OutOfSequence(stage_id, tracking.current_stage)
            )

        return StageReadiness(
            stage_id=stage.id,
            name=stage.name,
            expected_outputs=list(stage.expected_outputs),
            validation_criteria=list(stage.validation_criteria),
        )

    def complete(
        self,
        feature: str,
        stage_id: int,
        outputs: Optional[Iterable[str]] = None,
        validation_results: Optional[Iterable[ValidationResult]] = None,
    ) -> CompletionResult:
        """Mark the current stage completed and advance to the next one."""
        tracking = self._load(feature)
        self.catalog.require(stage_id)
        if tracking.workflow_status not in COMPLETABLE:
            raise self._reject(
                "complete",
                feature,
                InvalidTransition(
                    "complete",
                    tracking.workflow_status.value,
                    [state.value for state in COMPLETABLE],
                ),
            )
        if stage_id != tracking.current_stage:
            raise self._reject(
                "complete", feature, OutOfSequence(stage_id, tracking.current_stage)
            )

        now = self._clock()
        stage_status = tracking.stage(stage_id)
        stage_status.status = StageState.COMPLETED
        stage_status.completed_at = now
        stage_status.error = None
        if outputs is not None:
            stage_status.outputs = list(outputs)
        if validation_results is not None:
            stage_status.validation_results = list(validation_results)

        next_stage = self.catalog.next_after(stage_id)
        if next_stage is None:
            tracking.workflow_status = WorkflowState.COMPLETED
            tracking.completed_at = now
        else:
            tracking.workflow_status = WorkflowState.ACTIVE
            tracking.completed_at = None
            tracking.current_stage = next_stage.id
            upcoming = tracking.stage(next_stage.id)
            upcoming.status = StageState.IN_PROGRESS
            upcoming.started_at = now

        self.repository.save(feature, tracking)
        if next_stage is None:
            logger.info(f"Workflow completed for feature={feature}")
        else:
            logger.info(
                f"Completed stage {stage_id} for feature={feature}; now at stage {next_stage.id}"
            )
        return CompletionResult(
            stage_id=stage_id,
            workflow_completed=next_stage is None,
            next_stage=next_stage.id if next_stage else None,
            tracking=tracking,
        )

    def fail(self, feature: str, reason: Optional[str] = None) -> WorkflowTracking:
        """Mark the current stage and the workflow as failed."""
        tracking = self._load(feature)
        if not tracking.is_active:
            raise self._reject(
                "fail",
                feature,
                InvalidTransition(
                    "fail", tracking.workflow_status.value, [WorkflowState.ACTIVE.value]
                ),
            )

        now = self._clock()
        stage_status = tracking.stage(tracking.current_stage)
        stage_status.status = StageState.FAILED
        stage_status.error = reason or DEFAULT_FAILURE_REASON
        tracking.workflow_status = WorkflowState.FAILED
        tracking.completed_at = now

        self.repository.save(feature, tracking)
        logger.info(
            f"Stage {tracking.current_stage} failed for feature={feature}: {stage_status.error}"
        )
        return tracking

    def rollback(
        self, feature: str, stage_id: int, reason: Optional[str] = None
    ) -> WorkflowTracking:
        """Reset ``stage_id`` and every later stage to pending."""
        tracking = self._load(feature)
        self.catalog.require(stage_id)

        for stage_status in tracking.stages:
            if stage_status.id >= stage_id:
                stage_status.reset()
        tracking.current_stage = stage_id
        tracking.rollback_history.append(
            RollbackEntry(
                stage=stage_id,
                timestamp=self._clock(),
                reason=reason or DEFAULT_ROLLBACK_REASON,
            )
        )

        self.repository.save(feature, tracking)
        logger.info(f"Rolled back feature={feature} to stage {stage_id}")
        return tracking

    def abort(self, feature: str, reason: Optional[str] = None) -> WorkflowTracking:
        """Freeze the workflow without resetting any stage."""
        tracking = self._load(feature)
        reason = reason or DEFAULT_ABORT_REASON
        if tracking.workflow_status is WorkflowState.ABORTED:
            logger.info(f"Workflow for feature={feature} is already aborted")
            return tracking

        tracking.workflow_status = WorkflowState.ABORTED
        tracking.completed_at = self._clock()
        self.repository.save(feature, tracking)
        logger.info(
            f"Aborted workflow for feature={feature} at stage {tracking.current_stage}: {reason}"
        )
        return tracking

    def resume(self, feature: str, stage_id: int) -> WorkflowTracking:
        """Reactivate an aborted or failed workflow at ``stage_id``."""
        tracking = self._load(feature)
        stage = self.catalog.require(stage_id)
        if tracking.workflow_status not in RESUMABLE:
            raise self._reject(
                "resume",
                feature,
                InvalidTransition(
                    "resume",
                    tracking.workflow_status.value,
                    [state.value for state in RESUMABLE],
                ),
            )
        if self.config.resume_validates_prerequisites:
            unmet = self._unmet_prerequisites(tracking, stage)
            if unmet:
                raise self._reject("resume", feature, PrerequisitesUnmet(stage_id, unmet))

        tracking.workflow_status = WorkflowState.ACTIVE
        tracking.completed_at = None
        tracking.current_stage = stage_id
        stage_status = tracking.stage(stage_id)
        stage_status.status = StageState.IN_PROGRESS
        stage_status.started_at = self._clock()
        stage_status.completed_at = None
        stage_status.error = None

        self.repository.save(feature, tracking)
        logger.info(f"Resumed workflow for feature={feature} at stage {stage_id}")
        return tracking

    def archive(self, feature: str) -> str:
        """Move a finished workflow out of the way so ``init`` can start afresh."""
        self._check_feature(feature)
        if self.repository.locate(feature) is None:
            raise WorkflowNotFound(feature)
        try:
            tracking: Optional[WorkflowTracking] = self._load(feature)
        except (CorruptRecord, WorkflowNotFound) as exc:
            logger.warning(
                f"Archiving feature={feature} without a readable record: {exc.message}"
            )
            tracking = None
        if tracking is not None and tracking.is_active:
            raise self._reject(
                "archive",
                feature,
                InvalidTransition(
                    "archive",
                    tracking.workflow_status.value,
                    [
                        WorkflowState.COMPLETED.value,
                        WorkflowState.ABORTED.value,
                        WorkflowState.FAILED.value,
                    ],
                ),
            )
        location = self.repository.archive(feature)
        logger.info(f"Archived workflow for feature={feature} to {location}")
        return location
