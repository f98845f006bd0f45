"""
Shared fixtures for cv-lifecycle tests.
"""

from typing import List

import pytest

from cv_lifecycle.client.memory import InMemoryContentServer


class SleepRecorder:
    """Sleep replacement that records requested delays and returns at once."""

    def __init__(self) -> None:
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)

    @property
    def total(self) -> float:
        return sum(self.calls)


@pytest.fixture
def sleeper():
    """Recording no-op sleep."""
    return SleepRecorder()


@pytest.fixture
def server():
    """Empty in-memory content server."""
    return InMemoryContentServer(organization="ACME")
