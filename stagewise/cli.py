"""Command line interface for stage tracking."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

import typer

from stagewise.catalog import DEFAULT_CATALOG
from stagewise.config import load_config
from stagewise.engine import StageTransitionEngine
from stagewise.errors import StagewiseError
from stagewise.logging_config import setup_logging
from stagewise.persistence import get_repository
from stagewise.reporting import (
    render_catalog,
    render_sessions,
    render_status,
    render_validation,
)

app = typer.Typer(help="Track a feature through the multi-stage delivery workflow")

_state: dict = {"config_path": None}


@app.callback()
def main(
    config: Optional[Path] = typer.Option(
        None, "--config", help="Path to stagewise.yaml (default: STAGEWISE_CONFIG)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Stagewise CLI entry point."""
    _state["config_path"] = str(config) if config else None
    setup_logging(logging.DEBUG if verbose else None)


def _engine() -> StageTransitionEngine:
    config = load_config(_state["config_path"])
    if _state["config_path"] is None:
        repository = get_repository()
    else:
        repository = get_repository(config=config)
    return StageTransitionEngine(repository, DEFAULT_CATALOG, config=config)


@contextmanager
def _handle_errors() -> Iterator[None]:
    try:
        yield
    except StagewiseError as exc:
        typer.secho(f"❌ {exc.message}", fg=typer.colors.RED)
        if exc.details:
            typer.echo(f"   {exc.details}")
        if exc.remediation:
            typer.echo(f"   {exc.remediation}")
        raise typer.Exit(code=1)


@app.command("init")
def init_command(feature: str) -> None:
    """
    Initialize stage tracking for a feature.

    Example:
        stagewise init auth-system
    """
    with _handle_errors():
        engine = _engine()
        tracking = engine.init(feature)
        location = engine.repository.locate(feature)
    typer.echo(f"✅ Stage tracking initialized for feature: {feature}")
    typer.echo(f"   Session: {location}")
    first = DEFAULT_CATALOG.first
    typer.echo(f"   Starting stage: {tracking.current_stage} ({first.name})")
    typer.echo(f"\n   Use 'status {feature}' to view progress")


@app.command("status")
def status_command(feature: str) -> None:
    """Show current stage and progress."""
    with _handle_errors():
        tracking = _engine().status(feature)
    typer.echo(render_status(tracking, DEFAULT_CATALOG))


@app.command("validate")
def validate_command(feature: str, stage: int) -> None:
    """
    Validate stage prerequisites and readiness.

    Fails when a prerequisite is not completed or when the stage is not the
    current stage; stages execute strictly in order.

    Example:
        stagewise validate auth-system 1
    """
    with _handle_errors():
        readiness = _engine().validate(feature, stage)
    typer.echo("✅ Prerequisites met")
    typer.echo("✅ Stage sequence valid")
    typer.echo(render_validation(readiness))


@app.command("complete")
def complete_command(
    feature: str,
    stage: int,
    output: Optional[List[str]] = typer.Option(
        None, "--output", "-o", help="Output produced by the stage (repeatable)"
    ),
) -> None:
    """
    Mark the current stage complete and advance to the next one.

    Example:
        stagewise complete auth-system 1 -o architecture.md -o components.json
    """
    with _handle_errors():
        result = _engine().complete(feature, stage, outputs=output or None)
    name = DEFAULT_CATALOG.require(stage).name
    typer.echo(f"✅ Stage {stage} ({name}) marked complete")
    if result.workflow_completed:
        typer.echo(f"\n🎉 Workflow completed for feature: {feature}")
        typer.echo(f"   All {len(DEFAULT_CATALOG)} stages completed successfully")
    else:
        next_name = DEFAULT_CATALOG.require(result.next_stage).name
        typer.echo(f"\n   Next stage: {result.next_stage} ({next_name})")
        typer.echo(f"   Command: stagewise validate {feature} {result.next_stage}")


@app.command("rollback")
def rollback_command(
    feature: str, stage: int, reason: Optional[str] = typer.Argument(None)
) -> None:
    """
    Roll a stage and every later stage back to pending.

    Example:
        stagewise rollback auth-system 3 "contracts need rework"
    """
    with _handle_errors():
        tracking = _engine().rollback(feature, stage, reason)
    typer.echo(f"✅ Stage {stage} rolled back to pending")
    typer.echo("   All subsequent stages reset")
    typer.echo(f"   Current stage: {tracking.current_stage}")
    typer.echo(f"\n   Use 'validate {feature} {stage}' to restart stage")


@app.command("abort")
def abort_command(
    feature: str, reason: Optional[str] = typer.Argument(None)
) -> None:
    """Abort the workflow, preserving all recorded progress."""
    with _handle_errors():
        engine = _engine()
        tracking = engine.abort(feature, reason)
        location = engine.repository.locate(feature)
    typer.echo(f"⚠️  Workflow aborted for feature: {feature}")
    typer.echo(f"   Reason: {reason or 'Manual abort'}")
    typer.echo(f"   Current stage at abort: {tracking.current_stage}")
    typer.echo(f"\n   Work preserved in: {location}")
    typer.echo(f"   Use 'resume {feature} <stage>' to continue or 'init {feature}' to start over")


@app.command("fail")
def fail_command(
    feature: str, reason: Optional[str] = typer.Argument(None)
) -> None:
    """Mark the current stage, and with it the workflow, as failed."""
    with _handle_errors():
        tracking = _engine().fail(feature, reason)
    typer.echo(f"❌ Stage {tracking.current_stage} failed for feature: {feature}")
    typer.echo(f"   Error: {tracking.stage(tracking.current_stage).error}")
    typer.echo(f"   Use 'resume {feature} {tracking.current_stage}' to retry")


@app.command("resume")
def resume_command(feature: str, stage: int) -> None:
    """Resume an aborted or failed workflow from a specific stage."""
    with _handle_errors():
        _engine().resume(feature, stage)
    typer.echo(f"✅ Workflow resumed for feature: {feature}")
    typer.echo(f"   Resuming at stage: {stage} ({DEFAULT_CATALOG.require(stage).name})")
    typer.echo(f"\n   Use 'status {feature}' to view progress")


@app.command("archive")
def archive_command(feature: str) -> None:
    """Archive a finished workflow so a new one can be started."""
    with _handle_errors():
        location = _engine().archive(feature)
    typer.echo(f"📦 Workflow for feature {feature} archived to: {location}")


@app.command("list")
def list_command() -> None:
    """List stored workflows with their status."""
    with _handle_errors():
        sessions = _engine().repository.list_sessions()
    typer.echo(render_sessions(sessions))


@app.command("stages")
def stages_command() -> None:
    """Show the stage catalog."""
    typer.echo(render_catalog(DEFAULT_CATALOG))


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
