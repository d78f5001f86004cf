"""
Append-only ledger tests.

Verifies:
- COGS allocation rows cannot be updated or deleted through the ORM
- Receipt layers only ever change qty_remaining
- Bulk layer updates used by the costing path still go through
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from inventory_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from inventory_kernel.exceptions import ImmutabilityViolationError
from inventory_kernel.models.cogs_allocation import COGSAllocation
from inventory_kernel.models.receipt_layer import ReceiptLayer


def jan(day: int) -> datetime:
    return datetime(2024, 1, day, 12, tzinfo=timezone.utc)


@pytest.fixture
def allocated(make_item, receive, sales_line, cogs_service, session):
    make_item("WIDGET")
    layer = receive("WIDGET", 10, 4, jan(1))
    sales_line("SO-1", "WIDGET", 3, shipped_at=jan(2))
    cogs_service.apply_cogs("2024-01-01", "2024-01-31", "FIFO")
    row = session.query(COGSAllocation).filter_by(order_id="SO-1").one()
    return row, layer


class TestAllocationRows:
    def test_update_blocked(self, allocated, session):
        row, _ = allocated
        row.amount = Decimal("0.01")

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        session.rollback()

        assert exc_info.value.entity_type == "COGSAllocation"
        assert "reversal" in exc_info.value.reason

    def test_delete_blocked(self, allocated, session):
        row, _ = allocated
        session.delete(row)

        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

        assert session.query(COGSAllocation).count() == 1

    def test_listeners_can_be_lifted_for_repair_scripts(self, allocated, session):
        row, _ = allocated
        unregister_immutability_listeners()
        try:
            row.reason = "manual repair"
            session.flush()
        finally:
            register_immutability_listeners()
        session.rollback()


class TestReceiptLayers:
    def test_cost_is_frozen(self, allocated, session):
        _, layer = allocated
        model = session.get(ReceiptLayer, layer.layer_id)
        model.unit_cost = Decimal("99")

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        session.rollback()

        assert "unit_cost" in exc_info.value.reason

    def test_remaining_may_change(self, allocated, session, receipt_ledger):
        _, layer = allocated
        model = session.get(ReceiptLayer, layer.layer_id)
        model.qty_remaining = Decimal("6")
        session.commit()

        assert receipt_ledger.get_layer(layer.layer_id).qty_remaining == Decimal("6")

    def test_delete_blocked(self, allocated, session):
        _, layer = allocated
        session.delete(session.get(ReceiptLayer, layer.layer_id))

        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()
