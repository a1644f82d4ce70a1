"""Configuration loading for stage tracking."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel

PROJECT_MARKERS = (".git", "pyproject.toml", "package.json")


class StagewiseConfig(BaseModel):
    """Top-level configuration model."""

    sessions_dir: str = ".tmp/sessions"
    store_url: Optional[str] = None
    init_policy: Literal["reuse", "require-archive"] = "reuse"
    resume_validates_prerequisites: bool = True

    def resolved_sessions_dir(self, start: Optional[Path] = None) -> Path:
        """Return ``sessions_dir`` anchored at the project root when relative."""
        path = Path(self.sessions_dir).expanduser()
        if path.is_absolute():
            return path
        return find_project_root(start) / path


def find_project_root(start: Optional[Path] = None) -> Path:
    """Walk up from ``start`` to the first directory holding a project marker."""

    origin = (start or Path.cwd()).resolve()
    current = origin
    while current != current.parent:
        if any((current / marker).exists() for marker in PROJECT_MARKERS):
            return current
        current = current.parent
    return origin


def load_config(path: Optional[str] = None) -> StagewiseConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to STAGEWISE_CONFIG env
            variable or 'stagewise.yaml' in the current directory.
    """

    config_path = path or os.getenv("STAGEWISE_CONFIG", "stagewise.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = StagewiseConfig(**data)
    else:
        config = StagewiseConfig()

    env_store_url = os.getenv("STAGEWISE_STORE_URL")
    if env_store_url:
        config.store_url = env_store_url
    env_policy = os.getenv("STAGEWISE_INIT_POLICY")
    if env_policy:
        config = StagewiseConfig(**{**config.model_dump(), "init_policy": env_policy})
    return config
