from __future__ import annotations

from collections.abc import Callable
from threading import Lock, Timer
from typing import Protocol


class ScheduledTask(Protocol):
    @property
    def cancelled(self) -> bool: ...

    def cancel(self) -> None: ...


class ReplyScheduler(Protocol):
    def schedule(self, delay_sec: float, callback: Callable[[], None]) -> ScheduledTask: ...


class TimerTask:
    """Fire-once callback on a daemon timer thread. Cancel wins over a late fire."""

    def __init__(self, delay_sec: float, callback: Callable[[], None]) -> None:
        self._callback = callback
        self._cancelled = False
        self._lock = Lock()
        self._timer = Timer(max(float(delay_sec), 0.0), self._run)
        self._timer.daemon = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def start(self) -> None:
        self._timer.start()

    def cancel(self) -> None:
        with self._lock:
            self._cancelled = True
        self._timer.cancel()

    def _run(self) -> None:
        with self._lock:
            if self._cancelled:
                return
        self._callback()


class ThreadTimerScheduler:
    def schedule(self, delay_sec: float, callback: Callable[[], None]) -> TimerTask:
        task = TimerTask(delay_sec, callback)
        task.start()
        return task
