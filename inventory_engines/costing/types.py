"""
inventory_engines.costing.types -- Value objects for the costing engine.

Responsibility:
    Costing method and oversell policy enums, the read snapshots the engine
    consumes (open layers, moving-average state) and the plan it returns
    (cost lines, layer decrements, next average state).

Architecture position:
    Engines -- pure value objects, zero I/O.

Invariants enforced:
    - All value objects are frozen.
    - CostLine.amount == quantity * unit_cost at stored precision.
    - CostingResult.total_quantity equals the quantity requested, whether or
      not part of it was estimated.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from inventory_kernel.db.types import quantize_stored
from inventory_kernel.exceptions import InvalidCostingMethodError

_ZERO = Decimal("0")


class CostingMethod(str, Enum):
    """How a shipped quantity is priced."""

    FIFO = "FIFO"
    MOVING_AVERAGE = "AVG"

    @classmethod
    def parse(cls, value: CostingMethod | str) -> CostingMethod:
        """Accept the enum, its value, or its name in any case."""
        if isinstance(value, CostingMethod):
            return value
        key = str(value).strip().upper()
        aliases = {
            "FIFO": cls.FIFO,
            "AVG": cls.MOVING_AVERAGE,
            "MOVING_AVERAGE": cls.MOVING_AVERAGE,
            "MOVING-AVERAGE": cls.MOVING_AVERAGE,
        }
        try:
            return aliases[key]
        except KeyError:
            raise InvalidCostingMethodError(str(value)) from None


class OversellPolicy(str, Enum):
    """What to do when on-hand stock cannot cover a shipment."""

    BLOCK = "block"  # Refuse; the line is skipped as insufficient_stock
    ESTIMATE = "estimate"  # Cost the shortfall at a fallback unit cost


@dataclass(frozen=True, slots=True)
class LayerSnapshot:
    """An open receipt layer as read at planning time."""

    layer_id: UUID
    sku: str
    received_at: datetime
    seq: int
    remaining: Decimal
    unit_cost: Decimal

    @property
    def sort_key(self) -> tuple[datetime, int]:
        return (self.received_at, self.seq)


@dataclass(frozen=True, slots=True)
class AverageCost:
    """Moving-average state for one SKU."""

    sku: str
    on_hand_qty: Decimal = _ZERO
    on_hand_value: Decimal = _ZERO
    avg_unit_cost: Decimal = _ZERO
    revision: int = 0


@dataclass(frozen=True, slots=True)
class CostLine:
    """A costed slice of the demand; becomes one allocation row."""

    sku: str
    quantity: Decimal
    unit_cost: Decimal
    amount: Decimal
    layer_id: UUID | None = None
    estimated: bool = False

    @classmethod
    def priced(
        cls,
        sku: str,
        quantity: Decimal,
        unit_cost: Decimal,
        layer_id: UUID | None = None,
        estimated: bool = False,
    ) -> CostLine:
        return cls(
            sku=sku,
            quantity=quantity,
            unit_cost=unit_cost,
            amount=quantize_stored(quantity * unit_cost),
            layer_id=layer_id,
            estimated=estimated,
        )


@dataclass(frozen=True, slots=True)
class LayerDecrement:
    """
    Planned reduction of a layer's remaining quantity.

    ``expected_remaining`` is what the planner saw; the ledger applies the
    decrement only if at least ``quantity`` is still there.
    """

    layer_id: UUID
    quantity: Decimal
    expected_remaining: Decimal


@dataclass(frozen=True)
class CostingResult:
    """Everything the writer needs to persist one component's cost."""

    sku: str
    method: CostingMethod
    requested_quantity: Decimal
    lines: tuple[CostLine, ...]
    decrements: tuple[LayerDecrement, ...] = ()
    average_after: AverageCost | None = None

    @property
    def total_quantity(self) -> Decimal:
        return sum((line.quantity for line in self.lines), _ZERO)

    @property
    def total_amount(self) -> Decimal:
        return sum((line.amount for line in self.lines), _ZERO)

    @property
    def has_estimate(self) -> bool:
        return any(line.estimated for line in self.lines)
