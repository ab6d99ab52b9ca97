"""Shared pytest fixtures for panel-harga."""

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from panel_harga.core.config import StorageConfig
from panel_harga.core.exceptions import FetchCause, FetchFailure
from panel_harga.core.models import IngestionMethod, PriceObservation
from panel_harga.ingestion.store import SqliteStore

JAKARTA = ZoneInfo("Asia/Jakarta")


class FakeClock:
    """Callable clock frozen at ``now`` until moved."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingSleep:
    """Stand-in for asyncio.sleep that records delays without waiting."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeAdapter:
    """Source adapter that replays scripted outcomes.

    Each outcome is either an exception to raise or a list of
    observations to return; the last outcome repeats.
    """

    def __init__(self, method: IngestionMethod, outcomes: list):
        self.method = method
        self._outcomes = list(outcomes)
        self.calls = 0

    async def fetch(self) -> list[PriceObservation]:
        self.calls += 1
        outcome = self._outcomes[min(self.calls, len(self._outcomes)) - 1]
        if isinstance(outcome, BaseException):
            raise outcome
        return list(outcome)


@pytest.fixture
def now() -> datetime:
    return datetime(2026, 3, 10, 7, 0, tzinfo=JAKARTA)


@pytest.fixture
def clock(now) -> FakeClock:
    return FakeClock(now)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fake_adapter():
    """Factory: fake_adapter(method, outcomes) -> FakeAdapter."""
    return FakeAdapter


@pytest.fixture
def network_failure() -> FetchFailure:
    return FetchFailure("connection refused", cause=FetchCause.NETWORK)


@pytest.fixture
def make_observation(now):
    """Factory for PriceObservation with overridable defaults."""

    def _make(**overrides):
        defaults = dict(
            commodity_label="Beras Premium",
            region_label="Jawa Barat",
            price=14500,
            unit="kg",
            observed_at=now,
        )
        defaults.update(overrides)
        return PriceObservation(**defaults)

    return _make


@pytest.fixture
def sample_observations(make_observation):
    return [
        make_observation(commodity_label="Beras Premium", region_label="Jawa Barat", price=14000),
        make_observation(commodity_label="Beras Premium", region_label="Jawa Timur", price=15000),
        make_observation(commodity_label="Cabai Merah Keriting", region_label="DKI Jakarta", price=52000),
    ]


@pytest.fixture
async def store():
    """Create an in-memory SqliteStore for testing."""
    s = SqliteStore(StorageConfig(sqlite_path=":memory:"))
    await s.initialize()
    yield s
    await s.close()
