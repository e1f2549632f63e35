"""
procurement_config -- single public entrypoint for procurement configuration.

Responsibility:
    Provides the way to obtain configuration at runtime through
    ``get_active_config()``.  Returns a frozen, validated
    ``ProcurementConfigSnapshot``.

Architecture position:
    Configuration -- YAML-driven, validated before activation.  This
    package sits above ``procurement_kernel`` and ``procurement_engines``
    and below ``procurement_services``.  The kernel never imports from
    ``procurement_config``; services receive snapshots by injection.

Failure modes:
    - ``FileNotFoundError`` -- configuration file missing.
    - ``InvalidConfigurationError`` -- validation produced errors.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``PROCUREMENT_CONFIG_TRACE`` log entry with the config id, version,
    checksum and policy count.
"""

from __future__ import annotations

from pathlib import Path

from procurement_config.loader import DEFAULT_CONFIG_PATH, compute_checksum, load_config
from procurement_config.provider import ConfigProvider
from procurement_config.schema import (
    EscalationSettings,
    IntegrationSettings,
    NotificationSettings,
    ProcurementConfigSnapshot,
)
from procurement_config.validator import ConfigValidationResult, validate_snapshot
from procurement_kernel.exceptions import InvalidConfigurationError
from procurement_kernel.logging_config import get_logger

_logger = get_logger("config")


def get_active_config(path: Path | str | None = None) -> ProcurementConfigSnapshot:
    """Load, validate and return the configuration snapshot.

    Args:
        path: YAML file to load.  Defaults to the packaged
            ``defaults/procurement.yaml``.

    Raises:
        FileNotFoundError: If the file does not exist.
        InvalidConfigurationError: If validation fails.
    """
    snapshot = load_config(path)

    validation = validate_snapshot(snapshot)
    if not validation.is_valid:
        raise InvalidConfigurationError(snapshot.label, validation.errors)

    _logger.info(
        "PROCUREMENT_CONFIG_TRACE",
        extra={
            "trace_type": "PROCUREMENT_CONFIG_TRACE",
            "config_id": snapshot.config_id,
            "config_version": snapshot.version,
            "checksum": snapshot.checksum,
            "policy_count": len(snapshot.policies),
            "warning_count": len(validation.warnings),
        },
    )
    return snapshot


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "ConfigProvider",
    "ConfigValidationResult",
    "EscalationSettings",
    "IntegrationSettings",
    "NotificationSettings",
    "ProcurementConfigSnapshot",
    "compute_checksum",
    "get_active_config",
    "load_config",
    "validate_snapshot",
]
