"""
ConfigProvider -- holder of the active configuration snapshot.

Services that outlive a single call (the orchestrator, background tasks)
hold a provider instead of a snapshot so configuration can be replaced
at runtime.  Each unit of work reads ``current()`` once and uses that
snapshot throughout.
"""

from __future__ import annotations

import threading

from procurement_config.schema import ProcurementConfigSnapshot
from procurement_config.validator import validate_snapshot
from procurement_kernel.exceptions import InvalidConfigurationError
from procurement_kernel.logging_config import get_logger

logger = get_logger("config.provider")


class ConfigProvider:
    """Thread-safe holder of the active ``ProcurementConfigSnapshot``."""

    def __init__(self, snapshot: ProcurementConfigSnapshot, validate: bool = True):
        if validate:
            _ensure_valid(snapshot)
        self._snapshot = snapshot
        self._lock = threading.Lock()

    def current(self) -> ProcurementConfigSnapshot:
        with self._lock:
            return self._snapshot

    def replace(self, snapshot: ProcurementConfigSnapshot) -> ProcurementConfigSnapshot:
        """Validate and activate ``snapshot``; returns the previous one.

        Raises:
            InvalidConfigurationError: The snapshot failed validation; the
                active snapshot is unchanged.
        """
        _ensure_valid(snapshot)
        with self._lock:
            previous = self._snapshot
            self._snapshot = snapshot
        logger.info(
            "config_replaced",
            extra={
                "previous_version": previous.label,
                "new_version": snapshot.label,
                "checksum": snapshot.checksum,
            },
        )
        return previous


def _ensure_valid(snapshot: ProcurementConfigSnapshot) -> None:
    result = validate_snapshot(snapshot)
    for warning in result.warnings:
        logger.warning(
            "config_validation_warning",
            extra={"config_version": snapshot.label, "warning": warning},
        )
    if not result.is_valid:
        raise InvalidConfigurationError(snapshot.label, result.errors)
