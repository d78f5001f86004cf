"""
COGSService facade tests.

The facade owns transactions, so these tests also check that a failed write
leaves nothing behind.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from inventory_kernel.exceptions import InvalidQuantityError, UnknownSkuError
from inventory_runs.domain.types import LineStatus, RunState, SkipReason


def mar(day: int, hour: int = 12) -> datetime:
    return datetime(2024, 3, day, hour, tzinfo=timezone.utc)


MARCH = ("2024-03-01", "2024-03-31")


@pytest.fixture
def stocked(cogs_service):
    cogs_service.upsert_item("WIDGET", "Widget")
    cogs_service.record_receipt("WIDGET", 5, 10, received_at=mar(1))
    cogs_service.record_receipt("WIDGET", 10, 12, received_at=mar(2))


class TestDailyCogs:
    def test_sums_one_day(self, stocked, sales_line, cogs_service):
        sales_line("SO-1", "WIDGET", 8, shipped_at=mar(10))
        cogs_service.apply_cogs(*MARCH, "FIFO")

        assert cogs_service.daily_cogs("2024-03-10") == Decimal("86.00")
        assert cogs_service.daily_cogs("2024-03-11") == Decimal("0.00")

    def test_day_boundaries_are_utc(self, stocked, sales_line, cogs_service):
        sales_line("SO-1", "WIDGET", 1, shipped_at=mar(10, 0))
        sales_line("SO-2", "WIDGET", 1, shipped_at=datetime(2024, 3, 10, 23, 59, 59, tzinfo=timezone.utc))
        cogs_service.apply_cogs(*MARCH, "FIFO")

        assert cogs_service.daily_cogs("2024-03-10") == Decimal("20.00")
        assert cogs_service.daily_cogs("2024-03-09") == Decimal("0.00")

    def test_reversal_day_never_negative(self, stocked, sales_line, cogs_service):
        sales_line("SO-1", "WIDGET", 8, shipped_at=mar(10))
        cogs_service.apply_cogs(*MARCH, "FIFO")
        # Reversal rows are dated on the clock's day (March 31)
        cogs_service.reverse_allocation("SO-1", "WIDGET", 3, "return")

        assert cogs_service.daily_cogs("2024-03-31") == Decimal("0.00")
        assert cogs_service.daily_cogs("2024-03-10") == Decimal("86.00")


class TestNetAllocatedQuantity:
    def test_allocated_minus_reversed(self, stocked, sales_line, cogs_service):
        sales_line("SO-1", "WIDGET", 8, shipped_at=mar(10))
        cogs_service.apply_cogs(*MARCH, "FIFO")
        cogs_service.reverse_allocation("SO-1", "widget", 3, "return")

        assert cogs_service.net_allocated_quantity("SO-1", " widget ") == Decimal("5")

    def test_unknown_line_is_zero(self, cogs_service):
        assert cogs_service.net_allocated_quantity("SO-404", "WIDGET") == Decimal("0")


class TestRunLog:
    def test_list_runs_newest_first(self, stocked, sales_line, cogs_service, deterministic_clock):
        sales_line("SO-1", "WIDGET", 2, shipped_at=mar(10))
        first = cogs_service.apply_cogs(*MARCH, "FIFO")
        deterministic_clock.advance(60)
        second = cogs_service.apply_cogs(*MARCH, "AVG")

        runs = cogs_service.list_runs()

        assert [r.run_id for r in runs] == [second.run_id, first.run_id]
        assert runs[0].state is RunState.DONE
        assert runs[0].already_allocated == 1
        assert runs[1].successful == 1
        assert [r.run_id for r in cogs_service.list_runs(limit=1)] == [second.run_id]

    def test_run_items_in_processing_order(self, stocked, sales_line, cogs_service):
        sales_line("SO-1", "WIDGET", 2, shipped_at=mar(10))
        sales_line("SO-2", "GHOST", 1, shipped_at=mar(11))
        sales_line("SO-3", "WIDGET", 1, shipped_at=mar(12))
        result = cogs_service.apply_cogs(*MARCH, "FIFO")

        items = cogs_service.get_run_items(result.run_id)

        assert [(i.order_id, i.status) for i in items] == [
            ("SO-1", LineStatus.SUCCESSFUL),
            ("SO-2", LineStatus.SKIPPED),
            ("SO-3", LineStatus.SUCCESSFUL),
        ]
        assert items[1].reason == SkipReason.UNKNOWN_SKU.value


class TestExport:
    def test_export_missing_allocations(self, stocked, sales_line, cogs_service):
        sales_line("SO-1", "WIDGET", 2, shipped_at=mar(10))
        sales_line("SO-2", "WIDGET", 100, shipped_at=mar(11))
        cogs_service.apply_cogs(*MARCH, "FIFO")

        rows = cogs_service.export_missing_allocations(*MARCH)

        assert [(r.order_id, r.quantity) for r in rows] == [("SO-2", Decimal("100"))]
        stats = cogs_service.get_coverage_stats(*MARCH)
        assert stats.coverage_percent == 50.0

    def test_coverage_report_lists_missing_components(self, stocked, sales_line, cogs_service):
        cogs_service.upsert_item("LID")
        cogs_service.upsert_item("KIT", "Kit")
        cogs_service.set_bundle_recipe("KIT", [("WIDGET", 1), ("LID", 1)])
        sales_line("SO-3", "KIT", 1, shipped_at=mar(12))
        cogs_service.apply_cogs(*MARCH, "FIFO")

        (missing,) = cogs_service.coverage_report(*MARCH).missing

        assert (missing.order_id, missing.missing_components) == ("SO-3", ("WIDGET", "LID"))


class TestUnitOfWork:
    def test_failed_write_is_rolled_back(self, cogs_service, catalog_service):
        cogs_service.upsert_item("KIT", "Kit")

        with pytest.raises(UnknownSkuError):
            cogs_service.set_bundle_recipe("KIT", [("NOPE", 1)])

        assert catalog_service.get_item("KIT").is_bundle is False

    def test_bad_receipt_writes_nothing(self, stocked, cogs_service):
        with pytest.raises(InvalidQuantityError):
            cogs_service.record_receipt("WIDGET", 0, 10)

        assert cogs_service.on_hand("WIDGET") == Decimal("15")

    def test_opening_balance(self, cogs_service):
        cogs_service.upsert_item("BOLT")
        layer = cogs_service.record_opening_balance("bolt", 40, "0.25", as_of=mar(1, 0))

        assert layer.ref_type == "OPENING_BALANCE"
        assert cogs_service.on_hand("BOLT") == Decimal("40")
