"""
inventory_engines.costing.fifo -- First-in, first-out cost planning.

Responsibility:
    Given the open layers of a SKU, plan which layers a shipment consumes
    and at what cost.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The plan is applied by
    ReceiptLedger with conditional UPDATEs.

Invariants enforced:
    - Layers are consumed in (received_at, seq) order.
    - One cost line per layer touched, in consumption order.
    - Sum of line quantities equals the demand (BLOCK policy refuses
      otherwise).

Failure modes:
    - InsufficientStockError when open layers do not cover the demand and
      the oversell policy is BLOCK.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal

from inventory_engines.costing.types import (
    CostingMethod,
    CostingResult,
    CostLine,
    LayerDecrement,
    LayerSnapshot,
    OversellPolicy,
)
from inventory_kernel.exceptions import InsufficientStockError
from inventory_kernel.logging_config import get_logger

logger = get_logger("engines.costing.fifo")

_ZERO = Decimal("0")


def plan_fifo(
    sku: str,
    needed: Decimal,
    layers: Iterable[LayerSnapshot],
    oversell: OversellPolicy = OversellPolicy.BLOCK,
    fallback_unit_cost: Decimal | None = None,
) -> CostingResult:
    """
    Greedily consume ``needed`` units from the oldest open layers.

    Args:
        sku: Canonical component SKU.
        needed: Units to cost (> 0).
        layers: Open layers for the SKU, any order.
        oversell: Shortfall policy.
        fallback_unit_cost: Price for an estimated shortfall; defaults to
            the cost of the newest layer seen, else zero.
    """
    open_layers = sorted(
        (layer for layer in layers if layer.remaining > _ZERO),
        key=lambda layer: layer.sort_key,
    )
    available = sum((layer.remaining for layer in open_layers), _ZERO)

    if available < needed and oversell == OversellPolicy.BLOCK:
        logger.info(
            "fifo_insufficient_stock",
            extra={"sku": sku, "needed": needed, "available": available},
        )
        raise InsufficientStockError(sku, needed, available)

    lines: list[CostLine] = []
    decrements: list[LayerDecrement] = []
    outstanding = needed

    for layer in open_layers:
        if outstanding <= _ZERO:
            break
        take = min(layer.remaining, outstanding)
        lines.append(CostLine.priced(sku, take, layer.unit_cost, layer_id=layer.layer_id))
        decrements.append(
            LayerDecrement(
                layer_id=layer.layer_id,
                quantity=take,
                expected_remaining=layer.remaining,
            )
        )
        outstanding -= take

    if outstanding > _ZERO:
        if fallback_unit_cost is None:
            fallback_unit_cost = open_layers[-1].unit_cost if open_layers else _ZERO
        lines.append(
            CostLine.priced(sku, outstanding, fallback_unit_cost, estimated=True)
        )
        logger.warning(
            "fifo_shortfall_estimated",
            extra={
                "sku": sku,
                "shortfall": outstanding,
                "unit_cost": fallback_unit_cost,
            },
        )

    result = CostingResult(
        sku=sku,
        method=CostingMethod.FIFO,
        requested_quantity=needed,
        lines=tuple(lines),
        decrements=tuple(decrements),
    )
    logger.debug(
        "fifo_costing_planned",
        extra={
            "sku": sku,
            "needed": needed,
            "layers_touched": len(decrements),
            "total_amount": result.total_amount,
        },
    )
    return result
