"""Domain models for the inventory kernel."""

from inventory_kernel.models.average_cost import AverageCostState
from inventory_kernel.models.cogs_allocation import COGSAllocation
from inventory_kernel.models.item import BundleComponent, InventoryItem
from inventory_kernel.models.receipt_layer import ReceiptLayer, ReceiptRefType
from inventory_kernel.models.sales_order import CANCELLED_STATUS, SalesOrderLine

__all__ = [
    "AverageCostState",
    "BundleComponent",
    "CANCELLED_STATUS",
    "COGSAllocation",
    "InventoryItem",
    "ReceiptLayer",
    "ReceiptRefType",
    "SalesOrderLine",
    "import_all_models",
]


def import_all_models() -> None:
    """Import every ORM module so ``Base.metadata`` holds the full schema.

    Idempotent.  The run-log tables live in ``inventory_runs`` and the
    sequence counter table beside SequenceService.
    """
    import inventory_kernel.services.sequence_service  # noqa: F401
    import inventory_runs.models  # noqa: F401
