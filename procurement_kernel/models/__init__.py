"""SQLAlchemy ORM models for the procurement kernel."""

from procurement_kernel.models.approval import (
    ApprovalDecisionModel,
    ApprovalRequestModel,
)
from procurement_kernel.models.audit import AuditEntryModel, NotificationModel
from procurement_kernel.models.integration import (
    IntegrationEventModel,
    ReceivingQueueEntryModel,
)
from procurement_kernel.models.purchase_order import (
    PurchaseOrderLineModel,
    PurchaseOrderModel,
)
from procurement_kernel.models.sequence import SequenceCounterModel


def import_all_models() -> None:
    """Ensure every model is registered on ``Base.metadata``.

    Importing this package already registers them; the function exists so
    callers can make the dependency explicit.  Idempotent.
    """
