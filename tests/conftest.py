import pytest

from services.cache import AnalyticsCache


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return AnalyticsCache(default_ttl_ms=5 * 60 * 1000, max_entries=100, clock=clock)
