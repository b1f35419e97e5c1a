"""
Delayed background tasks with revocable handles.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class ScheduledTask(Protocol):
    name: str

    def cancel(self) -> bool:
        """Revoke the task. Returns False if it already ran or was cancelled."""
        ...

    @property
    def cancelled(self) -> bool:
        ...


class TaskScheduler(Protocol):
    def schedule(self, delay_seconds: float, callback: Callable[[], None], name: str = "") -> ScheduledTask:
        ...

    def shutdown(self) -> int:
        ...


class TimerTask:
    """Handle for a callback running on its own daemon timer thread."""

    def __init__(self, delay_seconds: float, callback: Callable[[], None], name: str = ""):
        self.name = name or "task"
        self._callback = callback
        self._lock = threading.Lock()
        self._started = False
        self._cancelled = False
        self._timer = threading.Timer(delay_seconds, self._run)
        self._timer.daemon = True
        self._timer.name = f"scheduled-{self.name}"

    def start(self) -> None:
        self._timer.start()

    def _run(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._started = True
        try:
            self._callback()
        except Exception:
            logger.exception("Scheduled task %s failed", self.name)

    def cancel(self) -> bool:
        with self._lock:
            if self._started or self._cancelled:
                return False
            self._cancelled = True
        self._timer.cancel()
        return True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class ThreadTimerScheduler:
    """Runs each scheduled callback on a threading.Timer; never blocks the caller."""

    def __init__(self):
        self._tasks: set = set()
        self._lock = threading.Lock()

    def schedule(self, delay_seconds: float, callback: Callable[[], None], name: str = "") -> TimerTask:
        task: Optional[TimerTask] = None

        def run_and_forget():
            try:
                callback()
            finally:
                with self._lock:
                    self._tasks.discard(task)

        task = TimerTask(delay_seconds, run_and_forget, name=name)
        with self._lock:
            self._tasks = {t for t in self._tasks if not t.cancelled}
            self._tasks.add(task)
        task.start()
        logger.debug("Scheduled %s in %.1fs", task.name, delay_seconds)
        return task

    def pending_count(self) -> int:
        with self._lock:
            return sum(1 for t in self._tasks if not t.cancelled)

    def shutdown(self) -> int:
        """Cancel everything that has not started yet. Returns how many were revoked."""
        with self._lock:
            tasks = list(self._tasks)
            self._tasks.clear()
        return sum(1 for task in tasks if task.cancel())
