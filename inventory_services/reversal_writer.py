"""
inventory_services.reversal_writer -- Reverse COGS for returned units.

Responsibility:
    Offset all or part of the COGS recorded for an (order, sku) by appending
    negative allocation rows, and optionally put the returned units back
    into stock.

Architecture position:
    Services -- stateful orchestration.  Writes through AllocationStore and
    ReceiptLedger; reads through AllocationSelector.

Invariants enforced:
    - Original rows are never changed.  Each reversal row points at the
      original it offsets and copies its unit cost, layer and method.
    - Originals are offset in insertion order, and never beyond what is
      left of them after earlier reversals.
    - Restocking a FIFO row credits its own layer, bounded by the layer's
      qty_received.  Restocking an AVG row blends the units back into the
      average at the original unit cost.  Estimated rows are not restocked.

Failure modes:
    - InvalidQuantityError for quantity <= 0.
    - AllocationNotFoundError when the order has no COGS for the sku.
    - OverReversalError when quantity exceeds what is still reversible.
    - LayerCreditOverflowError / ConcurrentUpdateConflict from restocking.

Audit relevance:
    Every row of one call shares a fresh ``batch_id`` and carries the
    caller's reason, so a return can be traced as a unit.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from inventory_config.schema import CostingPolicy
from inventory_engines.costing.moving_average import blend_receipt
from inventory_engines.costing.types import CostingMethod
from inventory_kernel.db.types import quantize_stored, to_decimal
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.values import SYSTEM_ACTOR_ID, canonical_sku
from inventory_kernel.exceptions import (
    AllocationNotFoundError,
    InvalidQuantityError,
    OverReversalError,
)
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.cogs_allocation import COGSAllocation
from inventory_kernel.selectors.allocation_selector import AllocationDTO, AllocationSelector
from inventory_kernel.services.allocation_store import AllocationStore
from inventory_services.receipt_ledger import ReceiptLedger

logger = get_logger("services.reversal_writer")

_ZERO = Decimal("0")


@dataclass(frozen=True)
class ReversalRecord:
    """Immutable result of one reversal call."""

    reversal_id: UUID
    order_id: str
    sku: str
    quantity: Decimal
    amount: Decimal
    reason: str
    restocked: bool
    reversed_at: datetime
    rows: tuple[AllocationDTO, ...]


class ReversalWriter:
    """
    Appends reversal rows for returned units.

    Contract:
        ``reverse(order_id, sku, quantity, reason)`` offsets exactly
        ``quantity`` units of the recorded COGS, or raises and writes
        nothing.

    Guarantees:
        - The net quantity for (order, sku) never drops below zero.
        - The original rows of the order are locked while the reversible
          quantity is computed, so two returns cannot both spend the same
          units.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT re-cost the order line; a reversed line stays allocated.
    """

    def __init__(
        self,
        session: Session,
        policy: CostingPolicy | None = None,
        clock: Clock | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ):
        self._session = session
        self._policy = policy or CostingPolicy()
        self._clock = clock or SystemClock()
        self._store = AllocationStore(session, actor_id)
        self._ledger = ReceiptLedger(session, self._clock, actor_id)
        self._allocations = AllocationSelector(session)

    def reverse(
        self,
        order_id: str,
        sku: str,
        quantity: Decimal | int | str,
        reason: str,
        restock: bool | None = None,
    ) -> ReversalRecord:
        qty = to_decimal(quantity)
        if qty <= _ZERO:
            raise InvalidQuantityError("quantity", qty)
        key = canonical_sku(sku)
        do_restock = self._policy.restock_on_reversal if restock is None else restock

        self._lock_originals(order_id, key)
        originals = self._allocations.originals_for(order_id, key)
        if not originals:
            raise AllocationNotFoundError(order_id, key)

        already = self._allocations.reversed_quantities([row.id for row in originals])
        open_rows = [
            (row, row.quantity - already.get(row.id, _ZERO)) for row in originals
        ]
        reversible = sum((left for _, left in open_rows), _ZERO)
        if qty > reversible:
            raise OverReversalError(order_id, key, qty, reversible)

        reversal_id = uuid4()
        reversed_at = self._clock.now()
        written: list[AllocationDTO] = []
        outstanding = qty
        for original, left in open_rows:
            if outstanding <= _ZERO:
                break
            if left <= _ZERO:
                continue
            take = min(left, outstanding)
            written.append(
                self._store.append(
                    order_id=order_id,
                    sku=key,
                    quantity=-take,
                    unit_cost=original.unit_cost,
                    amount=-quantize_stored(take * original.unit_cost),
                    method=original.method,
                    shipped_at=reversed_at,
                    layer_id=original.layer_id,
                    is_reversal=True,
                    reverses_allocation_id=original.id,
                    estimated=original.estimated,
                    batch_id=reversal_id,
                    reason=reason,
                )
            )
            if do_restock:
                self._restock(original, take)
            outstanding -= take

        record = ReversalRecord(
            reversal_id=reversal_id,
            order_id=order_id,
            sku=key,
            quantity=qty,
            amount=sum((row.amount for row in written), _ZERO),
            reason=reason,
            restocked=do_restock,
            reversed_at=reversed_at,
            rows=tuple(written),
        )
        logger.info(
            "cogs_reversal_recorded",
            extra={
                "reversal_id": str(reversal_id),
                "order_id": order_id,
                "sku": key,
                "quantity": qty,
                "amount": record.amount,
                "rows": len(written),
                "restocked": do_restock,
            },
        )
        return record

    def _lock_originals(self, order_id: str, sku: str) -> None:
        self._session.execute(
            select(COGSAllocation.id)
            .where(
                COGSAllocation.order_id == order_id,
                COGSAllocation.sku == sku,
                COGSAllocation.is_reversal.is_(False),
            )
            .with_for_update()
        ).all()

    def _restock(self, original: AllocationDTO, quantity: Decimal) -> None:
        if original.estimated:
            logger.info(
                "reversal_restock_skipped_estimated",
                extra={"allocation_id": str(original.id), "quantity": quantity},
            )
            return
        if CostingMethod.parse(original.method) is CostingMethod.FIFO:
            self._ledger.credit_layer(original.layer_id, quantity)
            return
        before = self._ledger.average_state(original.sku)
        self._ledger.save_average(
            before, blend_receipt(before, quantity, original.unit_cost)
        )
