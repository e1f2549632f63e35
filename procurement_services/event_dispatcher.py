"""
EventDispatcher -- hands outbound order events to the receiving bridge.

Transitions return their events explicitly; callers pass them here after
the transaction commits.  The events themselves are already in the
integration outbox, so dispatching only decides *when* the bridge runs:

    * ``added`` / ``removed`` -- processed immediately;
    * ``updated`` -- refreshes are debounced per order.

Dispatch failures are logged and left to the retry sweep; they never
reach the caller.
"""

from __future__ import annotations

from typing import Iterable
from uuid import UUID

from procurement_kernel.domain.integration import OrderEvent, QueueChange
from procurement_kernel.logging_config import get_logger
from procurement_services.debounce import Debouncer
from procurement_services.receiving_integration import ReceivingIntegrationBridge

logger = get_logger("services.event_dispatcher")


class EventDispatcher:
    """Routes committed order events to the receiving bridge."""

    def __init__(
        self,
        bridge: ReceivingIntegrationBridge,
        debouncer: Debouncer | None = None,
    ):
        self._bridge = bridge
        self._debouncer = debouncer

    def dispatch(self, events: Iterable[OrderEvent]) -> int:
        """Dispatch ``events``; returns how many triggered immediate processing."""
        immediate: list[UUID] = []
        for event in events:
            change = event.queue_change
            if change == QueueChange.NONE:
                continue
            if change == QueueChange.UPDATED and self._debouncer is not None:
                self._debouncer.submit(event.order_id)
                continue
            if event.order_id not in immediate:
                immediate.append(event.order_id)

        for order_id in immediate:
            self.dispatch_order(order_id)
        return len(immediate)

    def dispatch_order(self, order_id: UUID) -> None:
        """Process the order now, dropping any pending debounced refresh."""
        if self._debouncer is not None:
            self._debouncer.cancel(order_id)
        self._process(order_id)

    def _process(self, order_id: UUID) -> None:
        try:
            self._bridge.process_order(order_id)
        except Exception:
            logger.exception(
                "event_dispatch_failed",
                extra={"order_id": str(order_id)},
            )
