"""Repository abstraction for stage tracking persistence."""

from __future__ import annotations

from typing import Optional, Protocol

from .models import SessionInfo, WorkflowTracking


class TrackingRepository(Protocol):
    """Protocol for stage tracking storage backends.

    Each feature maps to at most one live storage location at a time. Older
    runs may coexist under other date prefixes; the lexicographically greatest
    location name wins.
    """

    def locate(self, feature: str) -> Optional[str]:
        """Return the most recent location for ``feature`` or ``None``."""

    def create_or_reuse(self, feature: str) -> str:
        """Return the located location or allocate a new one."""

    def load(self, feature: str) -> WorkflowTracking:
        """Load the record, raising ``WorkflowNotFound`` or ``CorruptRecord``."""

    def save(self, feature: str, record: WorkflowTracking) -> WorkflowTracking:
        """Overwrite the stored record, bumping ``updated_at`` and ``revision``."""

    def archive(self, feature: str) -> str:
        """Move the current location out of lookup and return its new name."""

    def list_sessions(self) -> list[SessionInfo]:
        """Return a summary of every stored record."""
