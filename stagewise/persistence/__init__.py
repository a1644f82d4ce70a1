"""Persistence layer for stage tracking records."""

from __future__ import annotations

import os
from typing import Optional

from ..config import StagewiseConfig, load_config
from .filesystem import FileSystemTrackingRepository
from .inmemory import InMemoryTrackingRepository
from .models import (
    RollbackEntry,
    SessionInfo,
    StageState,
    StageStatus,
    ValidationResult,
    WorkflowState,
    WorkflowTracking,
)
from .repository import TrackingRepository
from .sqlite import SQLiteTrackingRepository

_repository_instance: TrackingRepository | None = None


def get_repository(
    store_url: Optional[str] = None, config: Optional[StagewiseConfig] = None
) -> TrackingRepository:
    """Factory function to obtain a tracking repository.

    The backend is selected from ``store_url`` which can be provided
    explicitly, via environment variable ``STAGEWISE_STORE_URL``, or from
    loaded configuration. Without a store URL, records are kept as JSON files
    under the configured sessions directory.
    """

    global _repository_instance
    if _repository_instance is not None and store_url is None and config is None:
        return _repository_instance

    config = config or load_config()
    store_url = (
        store_url
        or os.getenv("STAGEWISE_STORE_URL")
        or getattr(config, "store_url", None)
    )

    if not store_url:
        _repository_instance = FileSystemTrackingRepository(
            config.resolved_sessions_dir()
        )
    elif store_url.startswith("memory://"):
        _repository_instance = InMemoryTrackingRepository()
    elif store_url.startswith("sqlite://"):
        path = store_url.replace("sqlite://", "", 1)
        _repository_instance = SQLiteTrackingRepository(path)
    else:
        raise ValueError(f"Unsupported store backend: {store_url}")

    return _repository_instance


__all__ = [
    "RollbackEntry",
    "SessionInfo",
    "StageState",
    "StageStatus",
    "ValidationResult",
    "WorkflowState",
    "WorkflowTracking",
    "TrackingRepository",
    "FileSystemTrackingRepository",
    "InMemoryTrackingRepository",
    "SQLiteTrackingRepository",
    "get_repository",
]
