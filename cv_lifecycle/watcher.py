"""
Task completion watcher.

Waits for the server's background tasks of one kind (publish, promote)
to finish before the workflow depends on their results.

The wait is a small state machine:

    POLLING --(running count is 0)--------------> COMPLETED
    POLLING --(max_polls queries, still busy)---> EXHAUSTED
    POLLING --(status endpoint unavailable)-----> FALLBACK_USED

Invariants:
    - Never waits forever: at most max_polls queries, each followed by at
      most one poll_interval sleep
    - FALLBACK_USED always sleeps fallback_wait exactly once, then reports
      completion
    - EXHAUSTED reports completed=False; callers must not assume the
      server is idle
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable

from .client.base import RemoteStateClient
from .client.errors import ContentManagerError, TaskStatusUnavailableError

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


class WatchState(Enum):
    """States of a completion wait."""

    POLLING = "polling"
    COMPLETED = "completed"
    EXHAUSTED = "exhausted"
    FALLBACK_USED = "fallback_used"


@dataclass(frozen=True)
class WaitOutcome:
    """Result of awaiting a task label.

    Attributes:
        label: Task label waited on
        state: Terminal state reached
        polls: Status queries issued
    """

    label: str
    state: WatchState
    polls: int

    @property
    def completed(self) -> bool:
        return self.state in (WatchState.COMPLETED, WatchState.FALLBACK_USED)

    @property
    def used_fallback(self) -> bool:
        return self.state is WatchState.FALLBACK_USED

    def to_dict(self) -> dict:
        return {
            "label": self.label,
            "state": self.state.value,
            "completed": self.completed,
            "used_fallback": self.used_fallback,
            "polls": self.polls,
        }


class TaskCompletionWatcher:
    """Polls running-task counts until a label goes idle.

    Example:
        >>> watcher = TaskCompletionWatcher(client, poll_interval=30, max_polls=60)
        >>> outcome = await watcher.await_completion(PUBLISH_LABEL)
        >>> if not outcome.completed:
        ...     logger.warning("publish may still be running")
    """

    def __init__(
        self,
        client: RemoteStateClient,
        poll_interval: float = 30.0,
        max_polls: int = 60,
        fallback_wait: float = 300.0,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        """Initialize the watcher.

        Args:
            client: Server client
            poll_interval: Seconds between status queries
            max_polls: Status queries before giving up (at least 1)
            fallback_wait: Fixed wait used when status is unavailable
            sleep: Sleep coroutine (tests inject a recorder)
        """
        if max_polls < 1:
            raise ValueError(f"max_polls must be at least 1, got {max_polls}")
        self._client = client
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        self.fallback_wait = fallback_wait
        self._sleep = sleep

    async def await_completion(self, label: str) -> WaitOutcome:
        """Wait until no task with this label is running.

        Args:
            label: Task label, e.g. "Actions::Katello::ContentView::Publish"

        Returns:
            WaitOutcome in a terminal state
        """
        state = WatchState.POLLING
        polls = 0

        while state is WatchState.POLLING:
            polls += 1
            state = await self._poll_once(label, polls)
            if state is WatchState.POLLING:
                await self._sleep(self.poll_interval)

        if state is WatchState.FALLBACK_USED:
            logger.info(
                f"Task status unavailable, waiting {self.fallback_wait}s for '{label}'"
            )
            await self._sleep(self.fallback_wait)
        elif state is WatchState.EXHAUSTED:
            logger.warning(
                f"Tasks '{label}' still running after {polls} polls; "
                "continuing without confirmation"
            )
        else:
            logger.info(f"Tasks '{label}' finished after {polls} poll(s)")

        return WaitOutcome(label=label, state=state, polls=polls)

    async def _poll_once(self, label: str, polls: int) -> WatchState:
        try:
            running = await self._client.count_running_tasks(label)
        except TaskStatusUnavailableError:
            return WatchState.FALLBACK_USED
        except ContentManagerError as e:
            logger.warning(f"Task status query {polls}/{self.max_polls} failed: {e}")
            running = None

        if running == 0:
            return WatchState.COMPLETED
        if running is not None:
            logger.debug(f"{running} '{label}' task(s) running (poll {polls}/{self.max_polls})")
        if polls >= self.max_polls:
            return WatchState.EXHAUSTED
        return WatchState.POLLING
