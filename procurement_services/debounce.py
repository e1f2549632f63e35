"""
Debouncer -- coalesce repeated refresh requests per key.

A burst of ``submit(key)`` calls within the window produces a single
action call once the key has been quiet for ``window_seconds``
(trailing edge).  Nothing sleeps: ``flush_due()`` is driven by a
periodic task and the injected clock decides what is due.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Hashable

from procurement_kernel.domain.clock import Clock
from procurement_kernel.logging_config import get_logger

logger = get_logger("services.debounce")


class Debouncer:
    """Trailing-edge debouncer keyed by an arbitrary hashable."""

    def __init__(
        self,
        clock: Clock,
        window_seconds: float,
        action: Callable[[Hashable], Any],
    ):
        self._clock = clock
        self._window = timedelta(seconds=window_seconds)
        self._action = action
        self._deadlines: dict[Hashable, datetime] = {}
        self._lock = threading.Lock()

    def submit(self, key: Hashable) -> bool:
        """Schedule ``key``; returns False when it coalesced into a pending one."""
        with self._lock:
            coalesced = key in self._deadlines
            self._deadlines[key] = self._clock.now() + self._window
        if coalesced:
            logger.debug("debounce_coalesced", extra={"key": str(key)})
        return not coalesced

    def cancel(self, key: Hashable) -> bool:
        with self._lock:
            return self._deadlines.pop(key, None) is not None

    def pending(self) -> tuple[Hashable, ...]:
        with self._lock:
            return tuple(self._deadlines)

    def flush_due(self) -> int:
        """Run the action for every key whose quiet period has elapsed."""
        now = self._clock.now()
        with self._lock:
            due = [key for key, deadline in self._deadlines.items() if deadline <= now]
            for key in due:
                del self._deadlines[key]
        return self._run(due)

    def flush_all(self) -> int:
        """Run every pending key now (shutdown path)."""
        with self._lock:
            due = list(self._deadlines)
            self._deadlines.clear()
        return self._run(due)

    def _run(self, keys: list[Hashable]) -> int:
        ran = 0
        for key in keys:
            try:
                self._action(key)
                ran += 1
            except Exception:
                logger.exception("debounced_action_failed", extra={"key": str(key)})
        return ran
