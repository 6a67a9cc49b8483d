from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pytest


class ManualTask:
    def __init__(self, due_at: float, callback: Callable[[], None]) -> None:
        self.due_at = due_at
        self.callback = callback
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


class ManualScheduler:
    """Runs scheduled callbacks only when the test advances time."""

    def __init__(self) -> None:
        self.now = 0.0
        self.tasks: list[ManualTask] = []

    def schedule(self, delay_sec: float, callback: Callable[[], None]) -> ManualTask:
        task = ManualTask(self.now + delay_sec, callback)
        self.tasks.append(task)
        return task

    def advance(self, seconds: float) -> int:
        self.now += seconds
        due = [task for task in self.tasks if task.due_at <= self.now]
        self.tasks = [task for task in self.tasks if task.due_at > self.now]
        fired = 0
        for task in sorted(due, key=lambda item: item.due_at):
            if task.cancelled:
                continue
            task.callback()
            fired += 1
        return fired

    def pending(self) -> list[ManualTask]:
        return [task for task in self.tasks if not task.cancelled]


class ManualClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2024, 5, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()
