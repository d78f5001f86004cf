"""
Typed Exception Hierarchy for the Inventory Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

COGS runs process hundreds of order lines and must report each failure with
a reason an operator can act on.  Parsing exception messages for that is
fragile, so every error raised by the kernel:

  1. Has a TYPED exception class (catch by type, not message)
  2. Carries a CODE class attribute (machine-readable, stored in run logs)
  3. Stores its context as attributes (sku, quantities, ids)

Example:
    try:
        writer.apply(start, end, CostingMethod.FIFO)
    except InvalidDateRangeError as e:
        api_response(code=e.code, start=e.start_date, end=e.end_date)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    InventoryKernelError (base)
    |
    +-- CatalogError
    |   +-- UnknownSkuError
    |   +-- InvalidBundleError
    |
    +-- StockError
    |   +-- InsufficientStockError
    |   +-- LayerCreditOverflowError
    |
    +-- AllocationError
    |   +-- AlreadyAllocatedError
    |
    +-- ReversalError
    |   +-- AllocationNotFoundError
    |   +-- OverReversalError
    |
    +-- ConcurrencyError
    |   +-- ConcurrentUpdateConflict
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- ConfigurationError
    |   +-- InvalidCostingMethodError
    |   +-- InvalidDateRangeError
    |
    +-- InvalidQuantityError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Catalog         | UNKNOWN_SKU                 | SKU (or bundle component) not in catalog
                | INVALID_BUNDLE              | Empty recipe or nested bundle
----------------|-----------------------------|-----------------------------------------
Stock           | INSUFFICIENT_STOCK          | Layers cannot cover the demand
                | LAYER_CREDIT_OVERFLOW       | Credit-back would exceed qty received
----------------|-----------------------------|-----------------------------------------
Allocation      | ALREADY_ALLOCATED           | (order, sku) already has COGS rows
----------------|-----------------------------|-----------------------------------------
Reversal        | ALLOCATION_NOT_FOUND        | Nothing to reverse for (order, sku)
                | OVER_REVERSAL               | Quantity exceeds the reversible amount
----------------|-----------------------------|-----------------------------------------
Concurrency     | CONCURRENT_UPDATE_CONFLICT  | Conditional UPDATE matched zero rows
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Update/delete of an append-only row
----------------|-----------------------------|-----------------------------------------
Configuration   | INVALID_COSTING_METHOD      | Method is neither FIFO nor AVG
                | INVALID_DATE_RANGE          | start date after end date
----------------|-----------------------------|-----------------------------------------
Validation      | INVALID_QUANTITY            | Quantity is zero or negative

===============================================================================
HANDLING PATTERNS
===============================================================================

Per-line errors (CatalogError, StockError, ConcurrencyError) are captured by
the allocation writer and reported in the run result; the run continues.
ConfigurationError aborts a run before any line is processed.
ImmutabilityError indicates a code defect and is never caught by services.

===============================================================================
"""

from decimal import Decimal


class InventoryKernelError(Exception):
    """
    Base exception for all inventory kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "INVENTORY_KERNEL_ERROR"


# Catalog-related exceptions


class CatalogError(InventoryKernelError):
    """Base exception for item catalog errors."""

    code: str = "CATALOG_ERROR"


class UnknownSkuError(CatalogError):
    """SKU is not present in the item catalog."""

    code: str = "UNKNOWN_SKU"

    def __init__(self, sku: str, bundle_sku: str | None = None):
        self.sku = sku
        self.bundle_sku = bundle_sku
        if bundle_sku:
            msg = f"Unknown SKU {sku} (component of bundle {bundle_sku})"
        else:
            msg = f"Unknown SKU: {sku}"
        super().__init__(msg)


class InvalidBundleError(CatalogError):
    """Bundle recipe is empty or references another bundle."""

    code: str = "INVALID_BUNDLE"

    def __init__(self, bundle_sku: str, reason: str):
        self.bundle_sku = bundle_sku
        self.reason = reason
        super().__init__(f"Invalid bundle {bundle_sku}: {reason}")


# Stock-related exceptions


class StockError(InventoryKernelError):
    """Base exception for stock level errors."""

    code: str = "STOCK_ERROR"


class InsufficientStockError(StockError):
    """On-hand quantity cannot satisfy the requested quantity."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        sku: str,
        requested_quantity: Decimal,
        available_quantity: Decimal,
    ):
        self.sku = sku
        self.requested_quantity = requested_quantity
        self.available_quantity = available_quantity
        super().__init__(
            f"Insufficient stock for {sku}: "
            f"requested {requested_quantity}, available {available_quantity}"
        )


class LayerCreditOverflowError(StockError):
    """Crediting quantity back would push a layer above its received quantity."""

    code: str = "LAYER_CREDIT_OVERFLOW"

    def __init__(self, layer_id: str, credit_quantity: Decimal, headroom: Decimal):
        self.layer_id = layer_id
        self.credit_quantity = credit_quantity
        self.headroom = headroom
        super().__init__(
            f"Cannot credit {credit_quantity} to layer {layer_id}: "
            f"only {headroom} was consumed"
        )


# Allocation-related exceptions


class AllocationError(InventoryKernelError):
    """Base exception for COGS allocation errors."""

    code: str = "ALLOCATION_ERROR"


class AlreadyAllocatedError(AllocationError):
    """
    The (order, sku) pair already carries COGS allocation rows.

    Idempotency signal: callers treat this as a skip, not a failure.
    """

    code: str = "ALREADY_ALLOCATED"

    def __init__(self, order_id: str, sku: str):
        self.order_id = order_id
        self.sku = sku
        super().__init__(f"COGS already allocated for order {order_id} sku {sku}")


# Reversal-related exceptions


class ReversalError(InventoryKernelError):
    """Base exception for COGS reversal errors."""

    code: str = "REVERSAL_ERROR"


class AllocationNotFoundError(ReversalError):
    """No original allocation exists for the (order, sku) pair."""

    code: str = "ALLOCATION_NOT_FOUND"

    def __init__(self, order_id: str, sku: str):
        self.order_id = order_id
        self.sku = sku
        super().__init__(f"No COGS allocation found for order {order_id} sku {sku}")


class OverReversalError(ReversalError):
    """Requested reversal exceeds what remains reversible."""

    code: str = "OVER_REVERSAL"

    def __init__(
        self,
        order_id: str,
        sku: str,
        requested_quantity: Decimal,
        reversible_quantity: Decimal,
    ):
        self.order_id = order_id
        self.sku = sku
        self.requested_quantity = requested_quantity
        self.reversible_quantity = reversible_quantity
        super().__init__(
            f"Cannot reverse {requested_quantity} of {sku} on order {order_id}: "
            f"only {reversible_quantity} is reversible"
        )


# Concurrency-related exceptions


class ConcurrencyError(InventoryKernelError):
    """Base exception for concurrency errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentUpdateConflict(ConcurrencyError):
    """
    A conditional UPDATE affected zero rows.

    Raised when a layer decrement finds less remaining quantity than planned,
    or when an average-cost record's revision moved underneath us.
    """

    code: str = "CONCURRENT_UPDATE_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str, detail: str = ""):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.detail = detail
        msg = f"Concurrent update on {entity_type} {entity_id}"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


# Immutability-related exceptions


class ImmutabilityError(InventoryKernelError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Configuration-related exceptions


class ConfigurationError(InventoryKernelError):
    """Base exception for invalid run configuration."""

    code: str = "CONFIGURATION_ERROR"


class InvalidCostingMethodError(ConfigurationError):
    """Costing method is not one of the supported methods."""

    code: str = "INVALID_COSTING_METHOD"

    def __init__(self, method: str):
        self.method = method
        super().__init__(f"Invalid costing method: {method!r} (expected FIFO or AVG)")


class InvalidDateRangeError(ConfigurationError):
    """Start date falls after end date, or a bound is not a date."""

    code: str = "INVALID_DATE_RANGE"

    def __init__(self, start_date: str, end_date: str, detail: str | None = None):
        self.start_date = start_date
        self.end_date = end_date
        super().__init__(
            f"Invalid date range: {detail or f'{start_date} is after {end_date}'}"
        )


# Validation


class InvalidQuantityError(InventoryKernelError):
    """Quantity must be strictly positive."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, field_name: str, quantity: Decimal):
        self.field_name = field_name
        self.quantity = quantity
        super().__init__(f"{field_name} must be greater than zero, got {quantity}")
