"""Read-only selectors over the inventory ledger."""

from inventory_kernel.selectors.allocation_selector import AllocationDTO, AllocationSelector
from inventory_kernel.selectors.sales_line_selector import SalesLineDTO, SalesLineSelector

__all__ = [
    "AllocationDTO",
    "AllocationSelector",
    "SalesLineDTO",
    "SalesLineSelector",
]
