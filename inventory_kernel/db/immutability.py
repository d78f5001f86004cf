"""
ORM-Level Immutability Enforcement for the inventory ledger.

===============================================================================
WHY THIS EXISTS
===============================================================================

COGS history must be reproducible: a report for last month has to give the
same number next year.  Allocation rows are therefore append-only, and a
correction is always a new reversal row that points at the original.

Receipt layers are append-only except for ``qty_remaining``, the running
balance that allocation and restocking move.  Receipt quantity, unit cost,
receipt time and sku never change, and layers are never deleted.

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database:

    session.flush()
         |
         v
    [before_update] --> _check_*_update() --> ImmutabilityViolationError
         |
    [before_delete] --> _check_*_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

Layer balance changes are issued by ReceiptLedger as conditional Core UPDATE
statements, which bypass mapper events by construction; those statements
only ever touch ``qty_remaining``.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity            | Rule
------------------|---------------------------------------------------------
COGSAllocation    | No UPDATE, no DELETE, ever
ReceiptLayer      | No DELETE; UPDATE limited to qty_remaining (+ audit cols)

===============================================================================
USAGE
===============================================================================

    from inventory_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

To disable temporarily (TESTS ONLY):

    unregister_immutability_listeners()

===============================================================================
"""

from sqlalchemy import event, inspect

from inventory_kernel.exceptions import ImmutabilityViolationError
from inventory_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_COLUMNS = frozenset({"updated_at", "updated_by_id"})
_LAYER_MUTABLE_COLUMNS = _AUDIT_COLUMNS | {"qty_remaining"}


def _blocked(entity_type: str, entity_id: str, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
    )


def _check_allocation_update(mapper, connection, target):
    """COGS allocation rows are never modified."""
    _blocked(
        "COGSAllocation",
        str(target.id),
        "UPDATE",
        "COGS allocations are append-only; write a reversal instead",
    )


def _check_allocation_delete(mapper, connection, target):
    """COGS allocation rows are never deleted."""
    _blocked(
        "COGSAllocation",
        str(target.id),
        "DELETE",
        "COGS allocations cannot be deleted",
    )


def _check_layer_update(mapper, connection, target):
    """Only qty_remaining (and audit metadata) may change on a receipt layer."""
    changed = [
        attr.key
        for attr in inspect(target).attrs
        if attr.key not in _LAYER_MUTABLE_COLUMNS and attr.history.has_changes()
    ]
    if changed:
        _blocked(
            "ReceiptLayer",
            str(target.id),
            "UPDATE",
            f"Receipt layer fields are frozen: {', '.join(sorted(changed))}",
        )


def _check_layer_delete(mapper, connection, target):
    """Receipt layers are never deleted."""
    _blocked(
        "ReceiptLayer",
        str(target.id),
        "DELETE",
        "Receipt layers cannot be deleted",
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Call after the models are importable and before any writes.  Repeated
    calls are harmless.
    """
    from inventory_kernel.models.cogs_allocation import COGSAllocation
    from inventory_kernel.models.receipt_layer import ReceiptLayer

    for target, event_name, fn in _listeners(COGSAllocation, ReceiptLayer):
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)

    logger.info("immutability_listeners_registered")


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that intentionally violate the rules.
    """
    from inventory_kernel.models.cogs_allocation import COGSAllocation
    from inventory_kernel.models.receipt_layer import ReceiptLayer

    for target, event_name, fn in _listeners(COGSAllocation, ReceiptLayer):
        _safe_remove_listener(target, event_name, fn)


def _listeners(allocation_cls, layer_cls):
    return (
        (allocation_cls, "before_update", _check_allocation_update),
        (allocation_cls, "before_delete", _check_allocation_delete),
        (layer_cls, "before_update", _check_layer_update),
        (layer_cls, "before_delete", _check_layer_delete),
    )
