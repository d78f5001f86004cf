"""
inventory_runs.services.allocation_writer -- Apply COGS to shipped order lines.

Responsibility:
    For a date range and a costing method, find every shipped order line,
    explode bundles, cost each component that has no allocation yet, and
    persist the allocation rows together with the layer decrements or
    average-state change they imply.  Every run and every line outcome is
    written to the run log.

Architecture position:
    Runs -- stateful orchestration.  Composes CatalogService and
    ReceiptLedger (inventory_services), the pure BundleResolver and
    CostingEngine (inventory_engines), and the kernel selectors/stores.

Invariants enforced:
    - Idempotence: a component with an original allocation row for the
      order is never costed again.  The check is repeated inside the line's
      savepoint, after the sales line row is locked.
    - Per-line atomicity: each order line runs in its own SAVEPOINT and is
      committed on its own.  A failing line rolls back only itself.
    - Conservation: every FIFO unit costed is a unit removed from a layer,
      by conditional UPDATE; AVG depletes the average state by revision.
    - Invalid method or date range aborts before any line is touched.

Failure modes:
    - InvalidCostingMethodError / InvalidDateRangeError raised to the caller.
    - Per-line kernel and database errors are captured in the result and
      the run log; the run continues.
    - A failure outside line processing (catalog load, line fetch) ends the
      run in FAILED with the reason recorded.

Audit relevance:
    Each allocation row carries the run id in ``batch_id``; the run log
    carries the policy checksum and a per-line status with allocated and
    missing component SKUs.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from inventory_config.schema import CostingPolicy
from inventory_engines.bundle import BundleResolver, ComponentDemand
from inventory_engines.costing.engine import CostingEngine
from inventory_engines.costing.types import (
    AverageCost,
    CostingMethod,
    CostingResult,
    OversellPolicy,
)
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.values import SYSTEM_ACTOR_ID, DateRange
from inventory_kernel.exceptions import (
    AlreadyAllocatedError,
    ConcurrentUpdateConflict,
    InsufficientStockError,
    InvalidBundleError,
    InventoryKernelError,
    UnknownSkuError,
)
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.models.sales_order import SalesOrderLine
from inventory_kernel.selectors.allocation_selector import AllocationSelector
from inventory_kernel.selectors.sales_line_selector import SalesLineDTO, SalesLineSelector
from inventory_kernel.services.allocation_store import AllocationStore
from inventory_runs.domain.types import (
    ApplyCOGSResult,
    ErrorLine,
    ErrorReason,
    LineStatus,
    RunItem,
    RunState,
    SkippedLine,
    SkipReason,
    validate_transition,
)
from inventory_runs.models.run import COGSRunItemModel, COGSRunModel
from inventory_services.catalog_service import CatalogService
from inventory_services.receipt_ledger import ReceiptLedger

logger = get_logger("runs.allocation_writer")

_ZERO = Decimal("0")


@dataclass
class _RunTally:
    """Mutable counters for one run; frozen into ApplyCOGSResult at the end."""

    allocated: int = 0
    already_allocated: int = 0
    partial: int = 0
    recorded: int = 0
    amount: Decimal = _ZERO
    skipped: list[SkippedLine] = field(default_factory=list)
    errors: list[ErrorLine] = field(default_factory=list)


@dataclass(frozen=True)
class _LineOutcome:
    item: RunItem
    amount: Decimal = _ZERO
    skip: SkipReason | None = None
    error: ErrorReason | None = None
    detail: str = ""


class AllocationWriter:
    """
    Runs COGS application over a date range.

    Contract:
        ``apply`` returns an ApplyCOGSResult.  It commits the session after
        the run header and after every order line.

    Guarantees:
        - Re-running the same range writes no new rows and reports each
          previously costed line as already_allocated.
        - ``should_cancel`` is polled between lines; a cancelled run keeps
          every line committed before the poll returned True.

    Non-goals:
        - Does not reverse allocations (see ReversalWriter).
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
        self._should_cancel = should_cancel or (lambda: False)
        self._engine = CostingEngine(self._policy.oversell_policy)
        self._ledger = ReceiptLedger(session, self._clock, actor_id)
        self._store = AllocationStore(session, actor_id)
        self._allocations = AllocationSelector(session)
        self._sales_lines = SalesLineSelector(session, self._policy.cancelled_statuses)
        self._state = RunState.PENDING_LINES

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def apply(
        self,
        start: date | datetime | str,
        end: date | datetime | str,
        method: CostingMethod | str | None = None,
    ) -> ApplyCOGSResult:
        costing_method = CostingMethod.parse(
            method if method is not None else self._policy.default_method
        )
        date_range = DateRange.of(start, end)

        started = time.monotonic()
        self._state = RunState.PENDING_LINES
        run = COGSRunModel(
            start_date=date_range.start,
            end_date=date_range.end,
            method=costing_method.value,
            state=self._state.value,
            policy_checksum=self._policy.checksum or None,
            started_at=self._clock.now(),
            created_by_id=self._actor_id,
        )
        self._session.add(run)
        self._session.commit()

        with LogContext.bind(run_id=str(run.id)):
            logger.info(
                "cogs_run_started",
                extra={
                    "start_date": date_range.start.isoformat(),
                    "end_date": date_range.end.isoformat(),
                    "method": costing_method.value,
                    "oversell_policy": self._policy.oversell_policy.value,
                },
            )
            tally = _RunTally()
            total_lines = 0
            try:
                resolver = BundleResolver(CatalogService(self._session).load_catalog())
                shipped = self._sales_lines.shipped_in_range(date_range)
                unshipped = self._sales_lines.unshipped_in_range(date_range)
                total_lines = len(shipped) + len(unshipped)
                run.total = total_lines
                run.eligible = len(shipped)
                self._session.commit()

                for line in unshipped:
                    self._record(run, tally, _LineOutcome(
                        item=RunItem(
                            order_id=line.order_id,
                            sku=line.sku,
                            quantity=line.quantity,
                            status=LineStatus.SKIPPED,
                            reason=SkipReason.NOT_SHIPPED.value,
                        ),
                        skip=SkipReason.NOT_SHIPPED,
                    ))

                for line in shipped:
                    if self._should_cancel():
                        self._transition(RunState.CANCELLED)
                        run.cancelled = True
                        logger.warning("cogs_run_cancelled", extra={"order_id": line.order_id})
                        break
                    with LogContext.bind(order_id=line.order_id, sku=line.sku):
                        outcome = self._process_line(run.id, line, costing_method, resolver)
                    self._record(run, tally, outcome)
                else:
                    self._transition(RunState.DONE)

            except (InventoryKernelError, SQLAlchemyError) as exc:
                self._session.rollback()
                self._state = RunState.FAILED
                run.failure_reason = f"{type(exc).__name__}: {exc}"
                logger.error("cogs_run_failed", exc_info=True)

            run.state = self._state.value
            run.completed_at = self._clock.now()
            self._write_counters(run, tally)
            self._session.commit()

            result = ApplyCOGSResult(
                run_id=run.id,
                method=costing_method.value,
                start_date=date_range.start,
                end_date=date_range.end,
                state=self._state,
                total_lines=total_lines,
                allocated_count=tally.allocated,
                already_allocated_count=tally.already_allocated,
                skipped_lines=tuple(tally.skipped),
                error_lines=tuple(tally.errors),
                allocated_amount=tally.amount,
                cancelled=run.cancelled,
                started_at=run.started_at,
                completed_at=run.completed_at,
            )
            logger.info(
                "cogs_run_completed",
                extra={
                    "state": result.state.value,
                    "total_lines": result.total_lines,
                    "allocated": result.allocated_count,
                    "already_allocated": result.already_allocated_count,
                    "skipped": result.skipped_count,
                    "errors": result.error_count,
                    "allocated_amount": result.allocated_amount,
                    "duration_ms": int((time.monotonic() - started) * 1000),
                },
            )
            return result

    # ------------------------------------------------------------------
    # Line processing
    # ------------------------------------------------------------------

    def _process_line(
        self,
        run_id: UUID,
        line: SalesLineDTO,
        method: CostingMethod,
        resolver: BundleResolver,
    ) -> _LineOutcome:
        self._transition(RunState.RESOLVING_BUNDLES)
        try:
            demands = resolver.resolve(line.sku, line.quantity)
        except UnknownSkuError as exc:
            return self._skipped(line, SkipReason.UNKNOWN_SKU, str(exc), missing=(exc.sku,))
        except InvalidBundleError as exc:
            return self._skipped(line, SkipReason.INVALID_BUNDLE, str(exc), missing=(exc.bundle_sku,))

        attempts = 0
        while True:
            try:
                return self._allocate_line(run_id, line, demands, method)
            except ConcurrentUpdateConflict as exc:
                if attempts < self._policy.conflict_retries:
                    attempts += 1
                    logger.info(
                        "cogs_line_conflict_retry",
                        extra={"attempt": attempts, "detail": str(exc)},
                    )
                    self._transition(RunState.RESOLVING_BUNDLES)
                    continue
                return self._failed(
                    line, demands, ErrorReason.CONCURRENT_UPDATE_CONFLICT, str(exc)
                )

    def _allocate_line(
        self,
        run_id: UUID,
        line: SalesLineDTO,
        demands: tuple[ComponentDemand, ...],
        method: CostingMethod,
    ) -> _LineOutcome:
        component_skus = [d.sku for d in demands]
        already: set[str] = set()
        pending = list(demands)
        savepoint = self._session.begin_nested()
        try:
            # Serialize writers on the same order line, then re-check.
            self._session.execute(
                select(SalesOrderLine.id)
                .where(SalesOrderLine.id == line.id)
                .with_for_update()
            )
            already = self._allocations.allocated_skus(line.order_id, component_skus)
            pending = [d for d in demands if d.sku not in already]
            if not pending:
                raise AlreadyAllocatedError(line.order_id, line.sku)

            self._transition(RunState.COSTING)
            plans = [self._plan(d, method) for d in pending]

            self._transition(RunState.PERSISTING)
            amount = _ZERO
            for plan, average_before in plans:
                amount += self._persist(run_id, line, method, plan, average_before)
            savepoint.commit()

        except AlreadyAllocatedError as exc:
            savepoint.rollback()
            logger.debug("cogs_line_already_allocated", extra={"error_code": exc.code})
            return _LineOutcome(
                item=RunItem(
                    order_id=line.order_id,
                    sku=line.sku,
                    quantity=line.quantity,
                    status=LineStatus.SKIPPED,
                    reason=SkipReason.ALREADY_ALLOCATED.value,
                    allocated_skus=tuple(component_skus),
                ),
                skip=SkipReason.ALREADY_ALLOCATED,
            )
        except InsufficientStockError as exc:
            savepoint.rollback()
            return self._skipped(
                line,
                SkipReason.INSUFFICIENT_STOCK,
                str(exc),
                allocated=tuple(s for s in component_skus if s in already),
                missing=tuple(d.sku for d in pending),
            )
        except ConcurrentUpdateConflict:
            savepoint.rollback()
            self._session.expire_all()
            raise
        except (InventoryKernelError, SQLAlchemyError) as exc:
            savepoint.rollback()
            reason = (
                ErrorReason.DATABASE_ERROR
                if isinstance(exc, SQLAlchemyError)
                else ErrorReason.KERNEL_ERROR
            )
            logger.error("cogs_line_failed", exc_info=True)
            return self._failed(line, demands, reason, str(exc))

        logger.info(
            "cogs_line_allocated",
            extra={
                "components": [(p.sku, p.total_quantity) for p, _ in plans],
                "amount": amount,
                "estimated": any(p.has_estimate for p, _ in plans),
            },
        )
        return _LineOutcome(
            item=RunItem(
                order_id=line.order_id,
                sku=line.sku,
                quantity=line.quantity,
                status=LineStatus.SUCCESSFUL,
                allocated_skus=tuple(component_skus),
            ),
            amount=amount,
        )

    def _plan(
        self, demand: ComponentDemand, method: CostingMethod
    ) -> tuple[CostingResult, AverageCost | None]:
        """Plan one component; AVG plans also return the state they were read from."""
        if method is CostingMethod.FIFO:
            fallback = None
            if self._policy.oversell_policy is OversellPolicy.ESTIMATE:
                fallback = self._ledger.last_unit_cost(demand.sku)
            plan = self._engine.cost(
                demand.sku,
                demand.quantity,
                method,
                layers=self._ledger.open_layers(demand.sku),
                fallback_unit_cost=fallback,
            )
            return plan, None
        before = self._ledger.average_state(demand.sku)
        return self._engine.cost(demand.sku, demand.quantity, method, average=before), before

    def _persist(
        self,
        run_id: UUID,
        line: SalesLineDTO,
        method: CostingMethod,
        plan: CostingResult,
        average_before: AverageCost | None,
    ) -> Decimal:
        if method is CostingMethod.FIFO:
            self._ledger.apply_decrements(plan.decrements)
        else:
            self._ledger.save_average(average_before, plan.average_after)

        amount = _ZERO
        for cost_line in plan.lines:
            self._store.append(
                order_id=line.order_id,
                sku=cost_line.sku,
                quantity=cost_line.quantity,
                unit_cost=cost_line.unit_cost,
                amount=cost_line.amount,
                method=method.value,
                shipped_at=line.shipped_at,
                layer_id=cost_line.layer_id,
                estimated=cost_line.estimated,
                batch_id=run_id,
            )
            amount += cost_line.amount
        return amount

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _transition(self, target: RunState) -> None:
        validate_transition(self._state, target)
        self._state = target

    def _skipped(
        self,
        line: SalesLineDTO,
        reason: SkipReason,
        detail: str,
        allocated: tuple[str, ...] = (),
        missing: tuple[str, ...] = (),
    ) -> _LineOutcome:
        logger.info("cogs_line_skipped", extra={"reason": reason.value, "detail": detail})
        return _LineOutcome(
            item=RunItem(
                order_id=line.order_id,
                sku=line.sku,
                quantity=line.quantity,
                status=LineStatus.PARTIAL if allocated else LineStatus.SKIPPED,
                reason=reason.value,
                allocated_skus=allocated,
                missing_skus=missing,
            ),
            skip=reason,
            detail=detail,
        )

    def _failed(
        self,
        line: SalesLineDTO,
        demands: tuple[ComponentDemand, ...],
        reason: ErrorReason,
        detail: str,
    ) -> _LineOutcome:
        skus = [d.sku for d in demands]
        allocated = self._allocations.allocated_skus(line.order_id, skus)
        logger.warning("cogs_line_error", extra={"reason": reason.value, "detail": detail})
        return _LineOutcome(
            item=RunItem(
                order_id=line.order_id,
                sku=line.sku,
                quantity=line.quantity,
                status=LineStatus.PARTIAL if allocated else LineStatus.FAILED,
                reason=reason.value,
                allocated_skus=tuple(s for s in skus if s in allocated),
                missing_skus=tuple(s for s in skus if s not in allocated),
            ),
            error=reason,
            detail=detail,
        )

    def _record(self, run: COGSRunModel, tally: _RunTally, outcome: _LineOutcome) -> None:
        item = outcome.item
        if outcome.error is not None:
            tally.errors.append(ErrorLine(item.order_id, item.sku, outcome.error, outcome.detail))
        elif outcome.skip is not None:
            tally.skipped.append(SkippedLine(item.order_id, item.sku, outcome.skip, outcome.detail))
            if outcome.skip is SkipReason.ALREADY_ALLOCATED:
                tally.already_allocated += 1
        else:
            tally.allocated += 1
            tally.amount += outcome.amount
        if item.status is LineStatus.PARTIAL:
            tally.partial += 1

        self._session.add(
            COGSRunItemModel.from_dto(run.id, tally.recorded, item, self._actor_id)
        )
        tally.recorded += 1
        self._session.commit()

    @staticmethod
    def _write_counters(run: COGSRunModel, tally: _RunTally) -> None:
        run.successful = tally.allocated
        run.already_allocated = tally.already_allocated
        run.skipped = len(tally.skipped)
        run.failed = len(tally.errors)
        run.partial = tally.partial
