"""
inventory_services.cogs_service -- Public surface of the costing engine.

Responsibility:
    One object that callers (order pipeline, operator CLI, reporting) use to
    run COGS, reverse it, audit it, and keep the stock ledger fed.  Each
    write operation is its own unit of work.

Architecture position:
    Services -- facade over AllocationWriter, ReversalWriter,
    CoverageAuditor, ReceiptLedger and CatalogService.  Holds the session,
    policy and clock and passes them down.

Invariants enforced:
    - Every write method commits on success and rolls back on failure,
      so a caller never sees half of an operation.
    - ``apply_cogs`` commits per order line (see AllocationWriter).
    - Read methods never write.

Failure modes:
    - Typed InventoryKernelError subclasses propagate unchanged.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from inventory_config.schema import CostingPolicy
from inventory_engines.costing.types import CostingMethod
from inventory_engines.coverage import CoverageReport, CoverageStats
from inventory_kernel.db.types import round_money
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.values import SYSTEM_ACTOR_ID, DateRange, canonical_sku
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.models.item import BundleComponent, InventoryItem
from inventory_kernel.selectors.allocation_selector import AllocationSelector
from inventory_runs.domain.types import ApplyCOGSResult, RunItem, RunSummary
from inventory_runs.models.run import COGSRunItemModel, COGSRunModel
from inventory_runs.services.allocation_writer import AllocationWriter
from inventory_services.catalog_service import CatalogService
from inventory_services.coverage_auditor import CoverageAuditor, MissingAllocationRow
from inventory_services.receipt_ledger import ReceiptDTO, ReceiptLedger
from inventory_services.reversal_writer import ReversalRecord, ReversalWriter

logger = get_logger("services.cogs")

_ZERO = Decimal("0")


class COGSService:
    """
    Facade for COGS application, reversal and audit.

    Contract:
        Construct with a session (and optionally a policy, clock, actor and
        cancellation callback).  Write methods own their transaction.

    Non-goals:
        - Does not create sales order lines; those come from the order
          import pipeline.
    """

    def __init__(
        self,
        session: Session,
        policy: CostingPolicy | None = None,
        clock: Clock | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
        should_cancel: Callable[[], bool] | None = None,
    ):
        self._session = session
        self._policy = policy or CostingPolicy()
        self._clock = clock or SystemClock()
        self._actor_id = actor_id
        self._should_cancel = should_cancel
        self._catalog = CatalogService(session, actor_id)
        self._ledger = ReceiptLedger(session, self._clock, actor_id)
        self._allocations = AllocationSelector(session)

    @property
    def policy(self) -> CostingPolicy:
        return self._policy

    @contextmanager
    def _unit_of_work(self) -> Iterator[None]:
        try:
            yield
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

    # ------------------------------------------------------------------
    # COGS
    # ------------------------------------------------------------------

    def apply_cogs(
        self,
        start: date | datetime | str,
        end: date | datetime | str,
        method: CostingMethod | str | None = None,
    ) -> ApplyCOGSResult:
        writer = AllocationWriter(
            self._session,
            policy=self._policy,
            clock=self._clock,
            actor_id=self._actor_id,
            should_cancel=self._should_cancel,
        )
        with LogContext.bind(actor_id=str(self._actor_id)):
            return writer.apply(start, end, method)

    def reverse_allocation(
        self,
        order_id: str,
        sku: str,
        quantity: Decimal | int | str,
        reason: str,
        restock: bool | None = None,
    ) -> ReversalRecord:
        writer = ReversalWriter(self._session, self._policy, self._clock, self._actor_id)
        with LogContext.bind(order_id=order_id, sku=canonical_sku(sku)), self._unit_of_work():
            return writer.reverse(order_id, sku, quantity, reason, restock=restock)

    def net_allocated_quantity(self, order_id: str, sku: str) -> Decimal:
        """Units still carrying COGS for (order, sku): allocated minus reversed."""
        return self._allocations.net_quantity(order_id, canonical_sku(sku))

    def daily_cogs(self, day: date | datetime | str) -> Decimal:
        """Net COGS dated on one UTC day, never below zero, to the cent."""
        date_range = DateRange.of(day, day)
        total = self._allocations.amount_between(date_range.start_at, date_range.end_before)
        return round_money(max(total, _ZERO))

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def coverage_report(self, start, end) -> CoverageReport:
        return CoverageAuditor(self._session, self._policy).audit(start, end)

    def get_coverage_stats(self, start, end) -> CoverageStats:
        return CoverageAuditor(self._session, self._policy).stats(start, end)

    def export_missing_allocations(self, start, end) -> list[MissingAllocationRow]:
        return CoverageAuditor(self._session, self._policy).missing_rows(start, end)

    # ------------------------------------------------------------------
    # Stock and catalog
    # ------------------------------------------------------------------

    def upsert_item(
        self,
        sku: str,
        product_name: str = "",
        is_bundle: bool = False,
        base_cost_per_unit: Decimal | int | str = Decimal("0"),
    ) -> InventoryItem:
        with self._unit_of_work():
            return self._catalog.upsert_item(sku, product_name, is_bundle, base_cost_per_unit)

    def set_bundle_recipe(
        self,
        bundle_sku: str,
        components: list[tuple[str, Decimal | int | str]],
    ) -> list[BundleComponent]:
        with self._unit_of_work():
            return self._catalog.set_bundle_recipe(bundle_sku, components)

    def record_receipt(
        self,
        sku: str,
        quantity: Decimal | int | str,
        unit_cost: Decimal | int | str,
        received_at: datetime | None = None,
        ref_id: str | None = None,
    ) -> ReceiptDTO:
        with self._unit_of_work():
            return self._ledger.record_receipt(
                sku, quantity, unit_cost, received_at=received_at, ref_id=ref_id
            )

    def record_opening_balance(
        self,
        sku: str,
        quantity: Decimal | int | str,
        unit_cost: Decimal | int | str,
        as_of: datetime | None = None,
    ) -> ReceiptDTO:
        with self._unit_of_work():
            return self._ledger.record_opening_balance(sku, quantity, unit_cost, as_of=as_of)

    def on_hand(self, sku: str) -> Decimal:
        return self._ledger.on_hand(sku)

    # ------------------------------------------------------------------
    # Run log
    # ------------------------------------------------------------------

    def list_runs(self, limit: int | None = None) -> list[RunSummary]:
        """Runs, newest first."""
        stmt = select(COGSRunModel).order_by(
            COGSRunModel.started_at.desc(), COGSRunModel.created_at.desc()
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return [run.to_dto() for run in self._session.execute(stmt).scalars()]

    def get_run_items(self, run_id: UUID) -> list[RunItem]:
        rows = self._session.execute(
            select(COGSRunItemModel)
            .where(COGSRunItemModel.run_id == run_id)
            .order_by(COGSRunItemModel.position)
        ).scalars()
        return [row.to_dto() for row in rows]
