"""Costing - FIFO and moving-average cost planning."""

from inventory_engines.costing.engine import CostingEngine
from inventory_engines.costing.fifo import plan_fifo
from inventory_engines.costing.moving_average import blend_receipt, plan_average
from inventory_engines.costing.types import (
    AverageCost,
    CostingMethod,
    CostingResult,
    CostLine,
    LayerDecrement,
    LayerSnapshot,
    OversellPolicy,
)

__all__ = [
    "AverageCost",
    "CostingEngine",
    "CostingMethod",
    "CostingResult",
    "CostLine",
    "LayerDecrement",
    "LayerSnapshot",
    "OversellPolicy",
    "blend_receipt",
    "plan_average",
    "plan_fifo",
]
