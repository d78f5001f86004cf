"""
FIFO planning tests.

Layers are consumed oldest first by (received_at, seq); each layer touched
produces one cost line and one decrement.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from inventory_engines.costing import (
    CostingEngine,
    CostingMethod,
    LayerSnapshot,
    OversellPolicy,
    plan_fifo,
)
from inventory_kernel.exceptions import (
    InsufficientStockError,
    InvalidCostingMethodError,
    InvalidQuantityError,
)

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def _layer(remaining, cost, days=0, seq=1, sku="WIDGET") -> LayerSnapshot:
    return LayerSnapshot(
        layer_id=uuid4(),
        sku=sku,
        received_at=T0 + timedelta(days=days),
        seq=seq,
        remaining=Decimal(str(remaining)),
        unit_cost=Decimal(str(cost)),
    )


class TestFifoOrdering:
    def test_exact_split_across_two_layers(self):
        first = _layer(10, 5, days=0, seq=1)
        second = _layer(10, 6, days=1, seq=2)

        result = plan_fifo("WIDGET", Decimal("15"), [second, first])

        assert [(l.layer_id, l.quantity, l.unit_cost) for l in result.lines] == [
            (first.layer_id, Decimal("10"), Decimal("5")),
            (second.layer_id, Decimal("5"), Decimal("6")),
        ]
        assert result.total_amount == Decimal("80")
        assert result.total_quantity == Decimal("15")

    def test_same_timestamp_orders_by_sequence(self):
        later_seq = _layer(5, 9, seq=8)
        earlier_seq = _layer(5, 1, seq=3)

        result = plan_fifo("WIDGET", Decimal("5"), [later_seq, earlier_seq])

        assert len(result.lines) == 1
        assert result.lines[0].layer_id == earlier_seq.layer_id

    def test_depleted_layers_are_ignored(self):
        empty = _layer(0, 1, days=0, seq=1)
        full = _layer(4, 2, days=1, seq=2)

        result = plan_fifo("WIDGET", Decimal("4"), [empty, full])

        assert [l.layer_id for l in result.lines] == [full.layer_id]

    def test_decrements_carry_planned_remaining(self):
        layer = _layer(10, 5)
        result = plan_fifo("WIDGET", Decimal("3"), [layer])

        (dec,) = result.decrements
        assert dec.layer_id == layer.layer_id
        assert dec.quantity == Decimal("3")
        assert dec.expected_remaining == Decimal("10")


class TestFifoShortfall:
    def test_block_policy_raises(self):
        with pytest.raises(InsufficientStockError) as exc_info:
            plan_fifo("WIDGET", Decimal("12"), [_layer(10, 5)])
        assert exc_info.value.requested_quantity == Decimal("12")
        assert exc_info.value.available_quantity == Decimal("10")

    def test_estimate_policy_prices_shortfall_at_newest_layer(self):
        result = plan_fifo(
            "WIDGET",
            Decimal("12"),
            [_layer(4, 5, days=0, seq=1), _layer(6, 7, days=1, seq=2)],
            oversell=OversellPolicy.ESTIMATE,
        )
        estimated = [l for l in result.lines if l.estimated]
        assert len(estimated) == 1
        assert estimated[0].quantity == Decimal("2")
        assert estimated[0].unit_cost == Decimal("7")
        assert estimated[0].layer_id is None
        assert result.has_estimate
        assert len(result.decrements) == 2

    def test_estimate_uses_fallback_cost_when_given(self):
        result = plan_fifo(
            "WIDGET", Decimal("3"), [], oversell=OversellPolicy.ESTIMATE,
            fallback_unit_cost=Decimal("4.50"),
        )
        (line,) = result.lines
        assert line.amount == Decimal("13.5")
        assert result.decrements == ()

    def test_estimate_with_no_history_costs_zero(self):
        result = plan_fifo("WIDGET", Decimal("3"), [], oversell=OversellPolicy.ESTIMATE)
        assert result.total_amount == Decimal("0")


class TestCostingEngine:
    def test_dispatches_fifo(self):
        engine = CostingEngine()
        result = engine.cost("WIDGET", Decimal("2"), "fifo", layers=[_layer(5, 3)])
        assert result.method is CostingMethod.FIFO
        assert result.total_amount == Decimal("6")

    @pytest.mark.parametrize("needed", [Decimal("0"), Decimal("-1")])
    def test_rejects_non_positive_demand(self, needed):
        with pytest.raises(InvalidQuantityError):
            CostingEngine().cost("WIDGET", needed, CostingMethod.FIFO)

    def test_rejects_unknown_method(self):
        with pytest.raises(InvalidCostingMethodError) as exc_info:
            CostingEngine().cost("WIDGET", Decimal("1"), "LIFO")
        assert exc_info.value.method == "LIFO"

    @pytest.mark.parametrize("alias", ["AVG", "avg", "MOVING_AVERAGE", "moving-average"])
    def test_method_aliases(self, alias):
        assert CostingMethod.parse(alias) is CostingMethod.MOVING_AVERAGE
