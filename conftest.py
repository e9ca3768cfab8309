"""Pytest configuration: in-repo src package and shared fake clocks."""
from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest

SRC_PATH = Path(__file__).resolve().parent / "src"
if SRC_PATH.exists():
    sys.path.insert(0, str(SRC_PATH))


class FakeClock:
    """Monotonic clock advanced only by its own ``sleep``.

    ``wall`` is the fixed clock sample handed to the delay scheduler. When
    ``durations`` is given, each sleep advances time by the next entry instead
    of the requested amount, which lets a test dictate the observed delays.
    """

    def __init__(self, wall: float = 0.0, durations=None) -> None:
        self.now = 0.0
        self.wall_time = wall
        self.sleeps: list[float] = []
        self._durations = list(durations) if durations is not None else None

    def wall(self) -> float:
        return self.wall_time

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        if self._durations:
            self.now += self._durations.pop(0)
        else:
            self.now += seconds
        await asyncio.sleep(0)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def _normal_verbosity(monkeypatch):
    monkeypatch.setenv("CASCADE_VERBOSITY", "1")


@pytest.fixture
def make_clock():
    """Factory for clocks with a custom wall sample or scripted durations."""
    return FakeClock
