"""
AllocationWriter tests.

Covers the FIFO split, insufficient stock and moving-average scenarios,
idempotent re-runs, conservation of quantity, bundle explosion, per-line
atomicity, skip reasons, oversell estimates and cancellation.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from inventory_config.schema import CostingPolicy
from inventory_engines.costing import CostingMethod, OversellPolicy
from inventory_kernel.domain.values import DateRange
from inventory_kernel.exceptions import InvalidCostingMethodError, InvalidDateRangeError
from inventory_kernel.selectors.allocation_selector import AllocationSelector
from inventory_runs.domain.types import LineStatus, RunState, SkipReason
from inventory_runs.models.run import COGSRunModel
from inventory_runs.services.allocation_writer import AllocationWriter


def jan(day: int, hour: int = 12) -> datetime:
    return datetime(2024, 1, day, hour, tzinfo=timezone.utc)


JANUARY = ("2024-01-01", "2024-01-31")


@pytest.fixture
def writer(session, policy, deterministic_clock, test_actor_id) -> AllocationWriter:
    return AllocationWriter(session, policy, deterministic_clock, test_actor_id)


@pytest.fixture
def allocations(session) -> AllocationSelector:
    return AllocationSelector(session)


@pytest.fixture
def widget(make_item):
    return make_item("WIDGET")


class TestExactFifoSplit:
    """Layer A 5@10 (Jan 1), layer B 10@12 (Jan 2), sale of 8 on Jan 3."""

    @pytest.fixture
    def layers(self, widget, receive):
        return receive("WIDGET", 5, 10, jan(1)), receive("WIDGET", 10, 12, jan(2))

    def test_cost_lines_and_total(self, layers, sales_line, writer, allocations):
        sales_line("SO-1", "WIDGET", 8, shipped_at=jan(3))

        result = writer.apply(*JANUARY, "FIFO")

        assert result.state is RunState.DONE
        assert result.allocated_count == 1
        assert result.allocated_amount == Decimal("86")
        rows = allocations.rows_for("SO-1", "WIDGET")
        assert [(r.quantity, r.unit_cost) for r in rows] == [
            (Decimal("5"), Decimal("10")),
            (Decimal("3"), Decimal("12")),
        ]
        assert [r.layer_id for r in rows] == [layers[0].layer_id, layers[1].layer_id]

    def test_layers_depleted(self, layers, sales_line, writer, receipt_ledger):
        sales_line("SO-1", "WIDGET", 8, shipped_at=jan(3))
        writer.apply(*JANUARY, "FIFO")

        layer_a, layer_b = layers
        assert receipt_ledger.get_layer(layer_a.layer_id).qty_remaining == Decimal("0")
        assert receipt_ledger.get_layer(layer_b.layer_id).qty_remaining == Decimal("7")

    def test_rows_carry_run_and_ship_date(self, layers, sales_line, writer, allocations):
        sales_line("SO-1", "WIDGET", 8, shipped_at=jan(3, 15))
        result = writer.apply(*JANUARY, "FIFO")

        for row in allocations.rows_for("SO-1"):
            assert row.batch_id == result.run_id
            assert row.shipped_at == jan(3, 15)
            assert row.method == "FIFO"
            assert not row.is_reversal
            assert not row.estimated


class TestInsufficientStock:
    def test_line_skipped_and_nothing_written(self, widget, receive, sales_line, writer,
                                              allocations, receipt_ledger):
        layer = receive("WIDGET", 5, 10, jan(1))
        sales_line("SO-1", "WIDGET", 8, shipped_at=jan(3))

        result = writer.apply(*JANUARY, "FIFO")

        assert result.allocated_count == 0
        (skipped,) = result.skipped_lines
        assert skipped.reason is SkipReason.INSUFFICIENT_STOCK
        assert allocations.count_rows() == 0
        assert receipt_ledger.get_layer(layer.layer_id).qty_remaining == Decimal("5")

    def test_other_lines_still_allocated(self, widget, receive, sales_line, writer, allocations):
        receive("WIDGET", 5, 10, jan(1))
        sales_line("SO-1", "WIDGET", 8, shipped_at=jan(3))
        sales_line("SO-2", "WIDGET", 4, shipped_at=jan(4))

        result = writer.apply(*JANUARY, "FIFO")

        assert result.allocated_count == 1
        assert allocations.net_quantity("SO-1", "WIDGET") == Decimal("0")
        assert allocations.net_quantity("SO-2", "WIDGET") == Decimal("4")


class TestMovingAverage:
    def test_sale_priced_at_weighted_average(self, widget, receive, sales_line, writer,
                                             allocations, receipt_ledger):
        receive("WIDGET", 10, 4, jan(1))
        receive("WIDGET", 10, 6, jan(2))
        sales_line("SO-1", "WIDGET", 5, shipped_at=jan(3))

        result = writer.apply(*JANUARY, "AVG")

        (row,) = allocations.rows_for("SO-1")
        assert (row.quantity, row.unit_cost) == (Decimal("5"), Decimal("5"))
        assert row.method == "AVG"
        assert row.layer_id is None
        assert result.allocated_amount == Decimal("25")

        state = receipt_ledger.average_state("WIDGET")
        assert state.on_hand_qty == Decimal("15")
        assert state.avg_unit_cost == Decimal("5")

    def test_insufficient_on_hand(self, widget, receive, sales_line, writer, allocations):
        receive("WIDGET", 2, 4, jan(1))
        sales_line("SO-1", "WIDGET", 5, shipped_at=jan(3))

        result = writer.apply(*JANUARY, "AVG")

        assert result.skipped_lines[0].reason is SkipReason.INSUFFICIENT_STOCK
        assert allocations.count_rows() == 0


class TestIdempotence:
    def test_second_run_is_a_no_op(self, widget, receive, sales_line, writer, allocations):
        receive("WIDGET", 20, 3, jan(1))
        sales_line("SO-1", "WIDGET", 4, shipped_at=jan(3))
        sales_line("SO-2", "WIDGET", 6, shipped_at=jan(4))

        first = writer.apply(*JANUARY, "FIFO")
        rows_after_first = allocations.count_rows()

        second = writer.apply(*JANUARY, "FIFO")

        assert first.allocated_count == 2
        assert second.allocated_count == 0
        assert second.already_allocated_count == 2
        assert {s.reason for s in second.skipped_lines} == {SkipReason.ALREADY_ALLOCATED}
        assert allocations.count_rows() == rows_after_first
        assert second.run_id != first.run_id

    def test_rerun_short_circuits_without_failing(self, widget, receive, sales_line, writer,
                                                  captured_logs):
        receive("WIDGET", 20, 3, jan(1))
        sales_line("SO-1", "WIDGET", 4, shipped_at=jan(3))
        writer.apply(*JANUARY, "FIFO")

        second = writer.apply(*JANUARY, "FIFO")

        assert second.error_lines == ()
        messages = [r["message"] for r in captured_logs()]
        assert "cogs_line_failed" not in messages
        (entry,) = [r for r in captured_logs() if r["message"] == "cogs_line_already_allocated"]
        assert entry["error_code"] == "ALREADY_ALLOCATED"
        assert entry["order_id"] == "SO-1"

    def test_new_lines_picked_up_by_rerun(self, widget, receive, sales_line, writer):
        receive("WIDGET", 20, 3, jan(1))
        sales_line("SO-1", "WIDGET", 4, shipped_at=jan(3))
        writer.apply(*JANUARY, "FIFO")

        sales_line("SO-2", "WIDGET", 6, shipped_at=jan(4))
        result = writer.apply(*JANUARY, "FIFO")

        assert result.allocated_count == 1
        assert result.already_allocated_count == 1


class TestConservation:
    def test_received_equals_remaining_plus_allocated(self, widget, receive, sales_line, writer,
                                                      receipt_ledger, allocations):
        receive("WIDGET", 5, 10, jan(1))
        receive("WIDGET", 10, 12, jan(2))
        receive("WIDGET", 3, 11, jan(5))
        sales_line("SO-1", "WIDGET", 8, shipped_at=jan(3))
        sales_line("SO-2", "WIDGET", 6, shipped_at=jan(6))

        writer.apply(*JANUARY, "FIFO")

        layers = receipt_ledger.layers("WIDGET")
        received = sum(l.qty_received for l in layers)
        remaining = sum(l.qty_remaining for l in layers)
        allocated = sum(
            r.quantity for r in allocations.originals_in_range(DateRange.of(*JANUARY))
        )
        assert received == remaining + allocated
        assert allocated == Decimal("14")


class TestBundles:
    @pytest.fixture
    def kit(self, make_item):
        make_item("A")
        make_item("B")
        return make_item("KIT", components=[("A", 2), ("B", 3)])

    def test_bundle_costs_each_component(self, kit, receive, sales_line, writer, allocations):
        receive("A", 10, 1, jan(1))
        receive("B", 20, 2, jan(1))
        sales_line("SO-1", "KIT", 4, shipped_at=jan(3))

        result = writer.apply(*JANUARY, "FIFO")

        assert result.allocated_count == 1
        assert allocations.net_quantity("SO-1", "A") == Decimal("8")
        assert allocations.net_quantity("SO-1", "B") == Decimal("12")
        assert result.allocated_amount == Decimal("32")

    def test_bundle_is_atomic(self, kit, receive, sales_line, writer, allocations, receipt_ledger):
        layer_a = receive("A", 10, 1, jan(1))
        receive("B", 5, 2, jan(1))
        sales_line("SO-1", "KIT", 4, shipped_at=jan(3))

        result = writer.apply(*JANUARY, "FIFO")

        assert result.skipped_lines[0].reason is SkipReason.INSUFFICIENT_STOCK
        assert allocations.count_rows() == 0
        assert receipt_ledger.get_layer(layer_a.layer_id).qty_remaining == Decimal("10")

    def test_component_already_allocated_gives_partial(self, kit, receive, sales_line,
                                                        writer, cogs_service):
        receive("A", 20, 1, jan(1))
        sales_line("SO-1", "A", 8, shipped_at=jan(3, 10))
        sales_line("SO-1", "KIT", 4, shipped_at=jan(3, 11))

        result = writer.apply(*JANUARY, "FIFO")

        assert result.allocated_count == 1
        items = {item.sku: item for item in cogs_service.get_run_items(result.run_id)}
        assert items["A"].status is LineStatus.SUCCESSFUL
        kit_item = items["KIT"]
        assert kit_item.status is LineStatus.PARTIAL
        assert kit_item.reason == SkipReason.INSUFFICIENT_STOCK.value
        assert kit_item.allocated_skus == ("A",)
        assert kit_item.missing_skus == ("B",)


class TestSkipReasons:
    def test_unknown_sku(self, sales_line, writer):
        sales_line("SO-1", "GHOST", 1, shipped_at=jan(3))
        result = writer.apply(*JANUARY)
        assert result.skipped_by_reason(SkipReason.UNKNOWN_SKU)[0].sku == "GHOST"

    def test_invalid_bundle(self, make_item, sales_line, writer, session):
        item = make_item("HOLLOW")
        item.is_bundle = True
        session.commit()
        sales_line("SO-1", "HOLLOW", 1, shipped_at=jan(3))

        result = writer.apply(*JANUARY)

        assert result.skipped_lines[0].reason is SkipReason.INVALID_BUNDLE

    def test_unshipped_line_reported_not_shipped(self, widget, sales_line, writer):
        sales_line("SO-1", "WIDGET", 1, ordered_at=jan(3), status="open")
        result = writer.apply(*JANUARY)

        assert result.total_lines == 1
        assert result.skipped_lines[0].reason is SkipReason.NOT_SHIPPED

    def test_cancelled_and_out_of_range_lines_ignored(self, widget, receive, sales_line, writer):
        receive("WIDGET", 10, 1, jan(1))
        sales_line("SO-1", "WIDGET", 1, shipped_at=jan(3), status="Cancelled")
        sales_line("SO-2", "WIDGET", 1, shipped_at=datetime(2024, 2, 1, tzinfo=timezone.utc))

        result = writer.apply(*JANUARY)

        assert result.total_lines == 0
        assert result.state is RunState.DONE


class TestArguments:
    def test_invalid_method_aborts_before_any_work(self, writer, session):
        with pytest.raises(InvalidCostingMethodError):
            writer.apply(*JANUARY, "LIFO")
        assert session.query(COGSRunModel).count() == 0

    @pytest.mark.parametrize("start", ["2024-13-01", "last tuesday", 20240101])
    def test_malformed_date_aborts_with_typed_error(self, writer, session, start):
        with pytest.raises(InvalidDateRangeError) as excinfo:
            writer.apply(start, "2024-01-31")
        assert excinfo.value.start_date == str(start)
        assert session.query(COGSRunModel).count() == 0

    def test_inverted_range_aborts(self, writer, session):
        with pytest.raises(InvalidDateRangeError):
            writer.apply("2024-01-31", "2024-01-01")
        assert session.query(COGSRunModel).count() == 0

    def test_method_defaults_to_policy(self, session, deterministic_clock, widget, receive, sales_line):
        receive("WIDGET", 10, 4, jan(1))
        sales_line("SO-1", "WIDGET", 1, shipped_at=jan(3))
        policy = CostingPolicy(default_method=CostingMethod.MOVING_AVERAGE)

        result = AllocationWriter(session, policy, deterministic_clock).apply(*JANUARY)

        assert result.method == "AVG"


class TestOversellEstimate:
    def test_shortfall_priced_at_last_cost_and_flagged(self, session, deterministic_clock, widget,
                                                       receive, sales_line, allocations,
                                                       receipt_ledger):
        layer = receive("WIDGET", 5, 10, jan(1))
        sales_line("SO-1", "WIDGET", 8, shipped_at=jan(3))
        policy = CostingPolicy(oversell_policy=OversellPolicy.ESTIMATE)

        result = AllocationWriter(session, policy, deterministic_clock).apply(*JANUARY, "FIFO")

        assert result.allocated_count == 1
        covered, estimated = allocations.rows_for("SO-1")
        assert (covered.quantity, covered.estimated) == (Decimal("5"), False)
        assert (estimated.quantity, estimated.unit_cost, estimated.estimated) == (
            Decimal("3"), Decimal("10"), True,
        )
        assert estimated.layer_id is None
        assert receipt_ledger.get_layer(layer.layer_id).qty_remaining == Decimal("0")


class TestCancellation:
    def test_cancel_between_lines(self, session, policy, deterministic_clock, widget, receive,
                                  sales_line, allocations):
        receive("WIDGET", 10, 1, jan(1))
        sales_line("SO-1", "WIDGET", 1, shipped_at=jan(3))
        sales_line("SO-2", "WIDGET", 1, shipped_at=jan(4))
        polls = iter([False, True])

        writer = AllocationWriter(
            session, policy, deterministic_clock, should_cancel=lambda: next(polls)
        )
        result = writer.apply(*JANUARY)

        assert result.state is RunState.CANCELLED
        assert result.cancelled
        assert result.allocated_count == 1
        assert allocations.net_quantity("SO-1", "WIDGET") == Decimal("1")
        assert allocations.net_quantity("SO-2", "WIDGET") == Decimal("0")


class TestRunLog:
    def test_run_header_records_counts(self, widget, receive, sales_line, writer, session):
        receive("WIDGET", 10, 1, jan(1))
        sales_line("SO-1", "WIDGET", 1, shipped_at=jan(3))
        sales_line("SO-2", "GHOST", 1, shipped_at=jan(3))
        sales_line("SO-3", "WIDGET", 1, ordered_at=jan(3), status="open")

        result = writer.apply(*JANUARY)

        run = session.get(COGSRunModel, result.run_id)
        assert run.state == RunState.DONE.value
        assert (run.total, run.eligible, run.successful, run.skipped) == (3, 2, 1, 2)
        assert run.completed_at is not None

    def test_logs_run_events(self, widget, receive, sales_line, writer, captured_logs):
        receive("WIDGET", 10, 1, jan(1))
        sales_line("SO-1", "WIDGET", 1, shipped_at=jan(3))

        result = writer.apply(*JANUARY)

        logs = captured_logs()
        completed = [r for r in logs if r["message"] == "cogs_run_completed"]
        assert len(completed) == 1
        assert completed[0]["run_id"] == str(result.run_id)
        assert completed[0]["allocated"] == 1
        allocated = [r for r in logs if r["message"] == "cogs_line_allocated"]
        assert allocated[0]["order_id"] == "SO-1"
