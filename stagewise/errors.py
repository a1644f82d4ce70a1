"""Error types raised by the stage workflow."""

from __future__ import annotations

from typing import Optional, Sequence


class StagewiseError(Exception):
    """Base exception for all workflow errors."""

    def __init__(
        self,
        message: str,
        remediation: Optional[str] = None,
        details: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.remediation = remediation
        self.details = details

    def __str__(self) -> str:
        parts = [self.message]
        if self.details:
            parts.append(f"Details: {self.details}")
        if self.remediation:
            parts.append(f"To fix: {self.remediation}")
        return "\n".join(parts)


class NotFoundError(StagewiseError):
    """Base class for lookups that found nothing."""


class WorkflowNotFound(NotFoundError):
    """No tracking record exists for the feature."""

    def __init__(self, feature: str, details: Optional[str] = None):
        self.feature = feature
        super().__init__(
            f"No stage tracking found for feature: {feature}",
            remediation=f"Use 'init {feature}' to initialize stage tracking",
            details=details,
        )


class UnknownStage(NotFoundError):
    """The stage id is not part of the catalog."""

    def __init__(self, stage_id: int, valid_ids: Sequence[int] = ()):
        self.stage_id = stage_id
        remediation = None
        if valid_ids:
            remediation = f"Use a stage id between {min(valid_ids)} and {max(valid_ids)}"
        super().__init__(f"Invalid stage ID: {stage_id}", remediation=remediation)


class AlreadyActive(StagewiseError):
    """``init`` was called while a workflow for the feature is still active."""

    def __init__(self, feature: str, current_stage: int, stage_name: str = ""):
        self.feature = feature
        self.current_stage = current_stage
        label = f" ({stage_name})" if stage_name else ""
        super().__init__(
            f"Stage tracking already exists for feature: {feature}",
            remediation="Use 'status' to view progress or 'abort' to start over",
            details=f"Current stage: {current_stage}{label}",
        )


class AlreadyExists(StagewiseError):
    """A finished record blocks ``init`` under the require-archive policy."""

    def __init__(self, feature: str, workflow_status: str):
        self.feature = feature
        self.workflow_status = workflow_status
        super().__init__(
            f"A {workflow_status} workflow already exists for feature: {feature}",
            remediation=f"Use 'archive {feature}' before starting a new workflow",
        )


class PrerequisitesUnmet(StagewiseError):
    """One or more prerequisite stages are not completed."""

    def __init__(self, stage_id: int, unmet: Sequence[tuple[int, str]]):
        self.stage_id = stage_id
        self.unmet = list(unmet)
        listing = ", ".join(f"stage {sid}: {status}" for sid, status in self.unmet)
        super().__init__(
            f"Prerequisites not met for stage {stage_id}",
            remediation="Complete prerequisite stages before proceeding",
            details=listing,
        )


class OutOfSequence(StagewiseError):
    """The requested stage is not the workflow's current stage."""

    def __init__(self, requested: int, current: int):
        self.requested = requested
        self.current = current
        super().__init__(
            f"Stage {requested} is not the current stage",
            remediation="Cannot skip stages - must execute sequentially",
            details=f"Current stage: {current}",
        )


class InvalidTransition(StagewiseError):
    """The operation is not legal from the workflow's status."""

    def __init__(self, operation: str, workflow_status: str, allowed: Sequence[str] = ()):
        self.operation = operation
        self.workflow_status = workflow_status
        remediation = None
        if allowed:
            remediation = f"'{operation}' requires workflow status: {' or '.join(allowed)}"
        super().__init__(
            f"Cannot {operation} - workflow status is: {workflow_status}",
            remediation=remediation,
        )


class CorruptRecord(StagewiseError):
    """The stored tracking record could not be parsed."""

    def __init__(self, location: str, details: Optional[str] = None):
        self.location = location
        super().__init__(
            f"Stage tracking record is unreadable: {location}",
            remediation="Restore the record from backup or archive it and re-run 'init'",
            details=details,
        )


class StaleRecord(StagewiseError):
    """The stored record changed between load and save."""

    def __init__(self, feature: str, expected: int, actual: int):
        self.feature = feature
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Stage tracking for {feature} was modified concurrently",
            remediation="Re-run the command against the latest state",
            details=f"Expected revision {expected}, found {actual}",
        )


class CatalogError(ValueError):
    """The stage catalog definition is inconsistent."""


class InvalidFeatureName(StagewiseError):
    """The feature identifier cannot be used as a storage location."""

    def __init__(self, feature: str):
        self.feature = feature
        super().__init__(
            f"Invalid feature name: {feature!r}",
            remediation="Use letters, digits, '.', '_' or '-' (e.g. 'auth-system')",
        )
