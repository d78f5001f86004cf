"""
inventory_engines.costing.engine -- Costing entry point.

Responsibility:
    Dispatch a component demand to FIFO or moving-average planning under
    the configured oversell policy.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Deterministic: the same
    snapshots and arguments always give the same CostingResult.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal

from inventory_engines.costing.fifo import plan_fifo
from inventory_engines.costing.moving_average import plan_average
from inventory_engines.costing.types import (
    AverageCost,
    CostingMethod,
    CostingResult,
    LayerSnapshot,
    OversellPolicy,
)
from inventory_kernel.exceptions import InvalidQuantityError


class CostingEngine:
    """
    Prices component demand.

    Contract:
        ``cost`` returns a plan; it never touches storage.

    Non-goals:
        - Does not lock or re-read layers.  Staleness is detected when the
          plan is applied.
    """

    def __init__(self, oversell_policy: OversellPolicy = OversellPolicy.BLOCK):
        self.oversell_policy = oversell_policy

    def cost(
        self,
        sku: str,
        needed: Decimal,
        method: CostingMethod | str,
        *,
        layers: Iterable[LayerSnapshot] = (),
        average: AverageCost | None = None,
        fallback_unit_cost: Decimal | None = None,
    ) -> CostingResult:
        if needed <= 0:
            raise InvalidQuantityError("needed", needed)

        method = CostingMethod.parse(method)
        if method is CostingMethod.FIFO:
            return plan_fifo(
                sku,
                needed,
                layers,
                oversell=self.oversell_policy,
                fallback_unit_cost=fallback_unit_cost,
            )
        return plan_average(
            sku,
            needed,
            average if average is not None else AverageCost(sku=sku),
            oversell=self.oversell_policy,
        )
