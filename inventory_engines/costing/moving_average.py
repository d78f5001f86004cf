"""
inventory_engines.costing.moving_average -- Moving-average cost math.

Responsibility:
    Blend receipts (and restocked returns) into a SKU's weighted average
    cost, and price shipments at the current average.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  ReceiptLedger persists the
    resulting state with a revision check.

Invariants enforced:
    - On receipt: new_avg = (old_qty*old_avg + qty*cost) / (old_qty + qty).
    - Shipments are priced at the current average and do not change it.
    - Depleting on-hand to zero resets value and average to zero.
    - on_hand_qty never goes negative; an estimated shortfall is priced but
      not carried as negative stock.

Failure modes:
    - InsufficientStockError when on-hand cannot cover the demand and the
      oversell policy is BLOCK.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal

from inventory_engines.costing.types import (
    AverageCost,
    CostingMethod,
    CostingResult,
    CostLine,
    OversellPolicy,
)
from inventory_kernel.db.types import quantize_stored
from inventory_kernel.exceptions import InsufficientStockError
from inventory_kernel.logging_config import get_logger

logger = get_logger("engines.costing.moving_average")

_ZERO = Decimal("0")


def blend_receipt(state: AverageCost, quantity: Decimal, unit_cost: Decimal) -> AverageCost:
    """State after ``quantity`` units arrive at ``unit_cost``."""
    new_qty = state.on_hand_qty + quantity
    new_value = quantize_stored(state.on_hand_value + quantity * unit_cost)
    new_avg = quantize_stored(new_value / new_qty) if new_qty > _ZERO else _ZERO
    return replace(
        state,
        on_hand_qty=new_qty,
        on_hand_value=new_value,
        avg_unit_cost=new_avg,
        revision=state.revision + 1,
    )


def plan_average(
    sku: str,
    needed: Decimal,
    state: AverageCost,
    oversell: OversellPolicy = OversellPolicy.BLOCK,
) -> CostingResult:
    """Price ``needed`` units at the current average and deplete on-hand."""
    if state.on_hand_qty < needed and oversell == OversellPolicy.BLOCK:
        logger.info(
            "average_insufficient_stock",
            extra={"sku": sku, "needed": needed, "available": state.on_hand_qty},
        )
        raise InsufficientStockError(sku, needed, state.on_hand_qty)

    covered = min(needed, state.on_hand_qty)
    lines: list[CostLine] = []
    if covered > _ZERO:
        lines.append(CostLine.priced(sku, covered, state.avg_unit_cost))
    shortfall = needed - covered
    if shortfall > _ZERO:
        lines.append(CostLine.priced(sku, shortfall, state.avg_unit_cost, estimated=True))
        logger.warning(
            "average_shortfall_estimated",
            extra={"sku": sku, "shortfall": shortfall, "unit_cost": state.avg_unit_cost},
        )

    remaining_qty = state.on_hand_qty - covered
    if remaining_qty > _ZERO:
        covered_amount = lines[0].amount if covered > _ZERO else _ZERO
        after = replace(
            state,
            on_hand_qty=remaining_qty,
            on_hand_value=state.on_hand_value - covered_amount,
            revision=state.revision + 1,
        )
    else:
        after = replace(
            state,
            on_hand_qty=_ZERO,
            on_hand_value=_ZERO,
            avg_unit_cost=_ZERO,
            revision=state.revision + 1,
        )

    result = CostingResult(
        sku=sku,
        method=CostingMethod.MOVING_AVERAGE,
        requested_quantity=needed,
        lines=tuple(lines),
        average_after=after,
    )
    logger.debug(
        "average_costing_planned",
        extra={
            "sku": sku,
            "needed": needed,
            "unit_cost": state.avg_unit_cost,
            "total_amount": result.total_amount,
        },
    )
    return result
