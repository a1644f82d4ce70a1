"""Human-readable rendering of tracking records."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from .catalog import DEFAULT_CATALOG, StageCatalog
from .engine import StageReadiness
from .persistence.models import SessionInfo, StageState, WorkflowTracking

STATUS_ICONS: dict[StageState, str] = {
    StageState.PENDING: "○",
    StageState.IN_PROGRESS: "🔄",
    StageState.COMPLETED: "✅",
    StageState.FAILED: "❌",
}


def _ts(value: Optional[datetime]) -> str:
    return value.isoformat() if value else "-"


def render_status(
    tracking: WorkflowTracking, catalog: StageCatalog = DEFAULT_CATALOG
) -> str:
    """Render the progress summary shown by ``status``."""

    lines = [
        f"[{tracking.feature}] Multi-Stage Orchestration Workflow",
        f"  Status: {tracking.workflow_status.value} | Current Stage: {tracking.current_stage}",
        f"  Created: {_ts(tracking.created_at)}",
        f"  Updated: {_ts(tracking.updated_at)}",
    ]
    if tracking.completed_at:
        lines.append(f"  Completed: {_ts(tracking.completed_at)}")

    lines.append("")
    lines.append("  Stages:")
    for stage in tracking.stages:
        lines.append(
            f"  {STATUS_ICONS[stage.status]} {stage.id}. {stage.name} [{stage.status.value}]"
        )
        if stage.status is StageState.IN_PROGRESS and stage.started_at:
            lines.append(f"     Started: {_ts(stage.started_at)}")
        if stage.status is StageState.COMPLETED:
            if stage.completed_at:
                lines.append(f"     Completed: {_ts(stage.completed_at)}")
            if stage.outputs:
                lines.append(f"     Outputs: {', '.join(stage.outputs)}")
            for result in stage.validation_results or []:
                mark = "pass" if result.passed else "fail"
                note = f" ({result.notes})" if result.notes else ""
                lines.append(f"     [{mark}] {result.criterion}{note}")
        if stage.status is StageState.FAILED and stage.error:
            lines.append(f"     Error: {stage.error}")

    if tracking.rollback_history:
        lines.append("")
        lines.append("  Rollback History:")
        for entry in tracking.rollback_history:
            lines.append(f"  - Stage {entry.stage} rolled back at {_ts(entry.timestamp)}")
            lines.append(f"    Reason: {entry.reason}")

    current = catalog.get(tracking.current_stage)
    if current is not None and tracking.is_active:
        lines.append("")
        lines.append(
            f"  Next Action: Complete stage {tracking.current_stage} ({current.name})"
        )
        lines.append(f"  Command: stagewise complete {tracking.feature} {tracking.current_stage}")
    return "\n".join(lines)


def render_validation(readiness: StageReadiness) -> str:
    """Render the checklist for a stage that passed validation."""

    lines = [f"Stage {readiness.stage_id} ({readiness.name}) is ready to execute", ""]
    lines.append("  Expected outputs:")
    lines.extend(f"  - {output}" for output in readiness.expected_outputs)
    lines.append("")
    lines.append("  Validation criteria:")
    lines.extend(f"  - {criterion}" for criterion in readiness.validation_criteria)
    return "\n".join(lines)


def render_catalog(catalog: StageCatalog = DEFAULT_CATALOG) -> str:
    lines = []
    for stage in catalog:
        prereqs = ", ".join(str(p) for p in sorted(stage.prerequisites)) or "none"
        lines.append(f"{stage.id}. {stage.name} - {stage.description} (requires: {prereqs})")
    return "\n".join(lines)


def render_sessions(sessions: Iterable[SessionInfo]) -> str:
    rows = [
        f"{s.location}\t{s.workflow_status.value}\tstage {s.current_stage}\t{_ts(s.updated_at)}"
        for s in sessions
    ]
    return "\n".join(rows) if rows else "No workflows found"
