import logging
from datetime import datetime, timedelta, timezone

import pytest

import stagewise.persistence as persistence
from stagewise.config import StagewiseConfig
from stagewise.engine import StageTransitionEngine
from stagewise.persistence import InMemoryTrackingRepository


class FakeClock:
    """Deterministic clock that ticks one second per call."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def repo(clock) -> InMemoryTrackingRepository:
    return InMemoryTrackingRepository(clock=clock)


@pytest.fixture
def engine(repo, clock) -> StageTransitionEngine:
    return StageTransitionEngine(repo, config=StagewiseConfig(), clock=clock)


@pytest.fixture(autouse=True)
def _reset_repository_singleton():
    persistence._repository_instance = None
    yield
    persistence._repository_instance = None
    logging.getLogger("stagewise").handlers.clear()
