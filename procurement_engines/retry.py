"""
procurement_engines.retry -- Pure retry scheduling.

Responsibility:
    Classify failures as transient or permanent and compute the next
    attempt for an integration event from its retry count.  Timers never
    sleep: the schedule is stored on the event and picked up by the
    retry sweep.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Time is passed in.

Invariants enforced:
    - Backoff is exponential: ``base * multiplier ** (failures - 1)``.
    - After ``max_attempts`` failures the event is ``failed`` and has no
      next attempt.
    - Non-transient errors fail the event immediately.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as SQLAlchemyTimeoutError

from procurement_kernel.domain.integration import ProcessingStatus
from procurement_kernel.exceptions import (
    ConcurrentModificationError,
    ReceivingNotReadyError,
    TransientIntegrationError,
)

TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    TransientIntegrationError,
    ReceivingNotReadyError,
    ConcurrentModificationError,
    # Two workers inserting the same projection row
    IntegrityError,
    OperationalError,
    SQLAlchemyTimeoutError,
    TimeoutError,
    ConnectionError,
)


@dataclass(frozen=True)
class RetryPolicy:
    base_delay_seconds: float = 1.0
    multiplier: float = 2.0
    max_attempts: int = 3

    def delay_for(self, failures: int) -> timedelta:
        """Backoff after the ``failures``-th consecutive failure (1-based)."""
        exponent = max(failures - 1, 0)
        return timedelta(seconds=self.base_delay_seconds * (self.multiplier ** exponent))


@dataclass(frozen=True)
class RetryDecision:
    status: ProcessingStatus
    retry_count: int
    next_attempt_at: datetime | None
    transient: bool

    @property
    def exhausted(self) -> bool:
        return self.status == ProcessingStatus.FAILED


def is_transient(error: BaseException) -> bool:
    """Whether ``error`` is worth retrying automatically.

    Readiness problems count as transient: order data is often completed
    shortly after approval.
    """
    return isinstance(error, TRANSIENT_ERRORS)


def schedule_retry(
    policy: RetryPolicy,
    retry_count: int,
    error: BaseException,
    now: datetime,
) -> RetryDecision:
    """Next state of an event whose processing just failed with ``error``."""
    failures = retry_count + 1
    transient = is_transient(error)
    if not transient or failures >= policy.max_attempts:
        return RetryDecision(
            status=ProcessingStatus.FAILED,
            retry_count=failures,
            next_attempt_at=None,
            transient=transient,
        )
    return RetryDecision(
        status=ProcessingStatus.PENDING,
        retry_count=failures,
        next_attempt_at=now + policy.delay_for(failures),
        transient=transient,
    )
