"""
Collaborator protocols (``procurement_kernel.domain.protocols``).

Narrow interfaces for the external collaborators the engine consumes.
Reference implementations live in ``procurement_kernel.services``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol
from uuid import UUID

from procurement_kernel.domain.audit import AuditEntry
from procurement_kernel.domain.purchase_order import OrderQuery, PurchaseOrder


class OrderStore(Protocol):
    """Authoritative order storage with optimistic compare-and-swap."""

    def get(self, order_id: UUID) -> PurchaseOrder:
        """Return the order or raise ``OrderNotFoundError``."""
        ...

    def save(self, order: PurchaseOrder, expected_version: int) -> PurchaseOrder:
        """Persist ``order`` if the stored version equals ``expected_version``.

        Returns the order with its new version; raises
        ``ConcurrentModificationError`` on a version mismatch.
        """
        ...

    def query(self, query: OrderQuery) -> list[PurchaseOrder]:
        ...


class RoleDirectory(Protocol):
    """Identity/role lookup."""

    def role_of(self, user_id: str) -> str | None:
        """Return the user's role, or ``None`` for unknown users."""
        ...


class AuditSink(Protocol):
    """Fire-and-forget audit recording."""

    def record(self, entry: AuditEntry) -> None:
        ...


@dataclass(frozen=True)
class NotificationResult:
    success: bool
    error: str | None = None


class NotificationDispatcher(Protocol):
    """Delivers templated notifications (e-mail, chat, ...)."""

    def send(
        self,
        template: str,
        recipients: tuple[str, ...],
        context: dict[str, Any],
    ) -> NotificationResult:
        ...
