"""Stagewise: stage-gated delivery workflow tracking."""

from .catalog import DEFAULT_CATALOG, StageCatalog, StageDefinition
from .config import StagewiseConfig, load_config
from .engine import CompletionResult, StageReadiness, StageTransitionEngine
from .persistence import (
    StageState,
    WorkflowState,
    WorkflowTracking,
    get_repository,
)

__version__ = "0.1.0"
__all__ = [
    "DEFAULT_CATALOG",
    "StageCatalog",
    "StageDefinition",
    "StagewiseConfig",
    "load_config",
    "StageTransitionEngine",
    "StageReadiness",
    "CompletionResult",
    "StageState",
    "WorkflowState",
    "WorkflowTracking",
    "get_repository",
]
