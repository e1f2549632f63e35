"""
PeriodicTask / BackgroundTasks -- in-process polling for background jobs.

Contract:
    Each ``PeriodicTask`` runs one action on a fixed interval in a daemon
    thread: escalation scanning, the integration retry sweep,
    reconciliation, debounce flushing and notification retries.

Invariants enforced:
    - ``tick()`` is public and synchronous so tests drive tasks without
      threads.
    - ``start()`` and ``stop()`` are idempotent; ``stop()`` lets the
      current tick finish.
    - A failing tick is logged and never kills the loop.
"""

from __future__ import annotations

import threading
from typing import Any, Callable

from procurement_kernel.logging_config import get_logger

logger = get_logger("services.scheduler")


class PeriodicTask:
    """Run ``action`` every ``interval_seconds`` until stopped.

    Non-goals:
        - NOT a distributed scheduler (no leader election).
    """

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        action: Callable[[], Any],
    ):
        self.name = name
        self._interval = interval_seconds
        self._action = action
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self.ticks = 0
        self.failures = 0

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> Any:
        """Run the action once (public for testing).

        Returns the action's result, or ``None`` when it raised.
        """
        self.ticks += 1
        try:
            return self._action()
        except Exception:
            self.failures += 1
            logger.exception("periodic_task_failed", extra={"task": self.name})
            return None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name=f"procurement-{self.name}",
            daemon=True,
        )
        self._thread.start()
        logger.info(
            "periodic_task_started",
            extra={"task": self.name, "interval_seconds": self._interval},
        )

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current tick to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("periodic_task_stopped", extra={"task": self.name})

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.tick()
            self._stop_event.wait(timeout=self._interval)


class BackgroundTasks:
    """A named group of periodic tasks started and stopped together."""

    def __init__(self, tasks: list[PeriodicTask] | None = None):
        self._tasks: dict[str, PeriodicTask] = {}
        for task in tasks or []:
            self.add(task)

    def add(self, task: PeriodicTask) -> PeriodicTask:
        if task.name in self._tasks:
            raise ValueError(f"duplicate task name: {task.name}")
        self._tasks[task.name] = task
        return task

    def get(self, name: str) -> PeriodicTask:
        return self._tasks[name]

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self._tasks)

    def start(self) -> None:
        for task in self._tasks.values():
            task.start()

    def stop(self, timeout: float = 30.0) -> None:
        for task in self._tasks.values():
            task.stop(timeout=timeout)

    def tick_all(self) -> dict[str, Any]:
        return {name: task.tick() for name, task in self._tasks.items()}

    @property
    def is_running(self) -> bool:
        return any(task.is_running for task in self._tasks.values())
