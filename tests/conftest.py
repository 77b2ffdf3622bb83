"""Shared fixtures for codetime tests."""

from datetime import datetime

import pytest

from codetime.store import SessionStore


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start_ms: int = 0) -> None:
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


def local_ms(*args: int) -> int:
    """Epoch milliseconds for a naive local datetime."""
    return int(datetime(*args).timestamp() * 1000)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(local_ms(2025, 1, 25, 10, 0, 0))


@pytest.fixture
def store(clock: FakeClock):
    store = SessionStore.open_in_memory(clock=clock)
    yield store
    store.close()
