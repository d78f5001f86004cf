"""
inventory_runs.domain.types -- Pure frozen dataclasses for COGS runs.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections.

Invariants enforced:
    - Run state moves only along VALID_RUN_TRANSITIONS.  FAILED, DONE and
      CANCELLED are terminal.
    - ApplyCOGSResult counts agree with its line tuples:
      skipped_count == len(skipped_lines), error_count == len(error_lines).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


# =============================================================================
# Status enums
# =============================================================================


class RunState(str, Enum):
    """Lifecycle of one COGS application run."""

    PENDING_LINES = "pending_lines"  # Fetching candidate order lines
    RESOLVING_BUNDLES = "resolving_bundles"  # Exploding a line into components
    COSTING = "costing"  # Pricing components against layers / average
    PERSISTING = "persisting"  # Writing rows, decrements, average state
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


VALID_RUN_TRANSITIONS: dict[RunState, frozenset[RunState]] = {
    RunState.PENDING_LINES: frozenset({
        RunState.RESOLVING_BUNDLES, RunState.DONE, RunState.FAILED, RunState.CANCELLED,
    }),
    RunState.RESOLVING_BUNDLES: frozenset({
        RunState.COSTING, RunState.RESOLVING_BUNDLES, RunState.DONE,
        RunState.FAILED, RunState.CANCELLED,
    }),
    RunState.COSTING: frozenset({
        RunState.PERSISTING, RunState.RESOLVING_BUNDLES, RunState.DONE,
        RunState.FAILED, RunState.CANCELLED,
    }),
    RunState.PERSISTING: frozenset({
        RunState.RESOLVING_BUNDLES, RunState.DONE, RunState.FAILED, RunState.CANCELLED,
    }),
    RunState.DONE: frozenset(),
    RunState.FAILED: frozenset(),
    RunState.CANCELLED: frozenset(),
}


def validate_transition(current: RunState, target: RunState) -> None:
    if target not in VALID_RUN_TRANSITIONS[current]:
        raise ValueError(f"Invalid run transition {current.value} -> {target.value}")


class LineStatus(str, Enum):
    """Outcome of one order line within a run (run log item status)."""

    SUCCESSFUL = "successful"
    SKIPPED = "skipped"
    FAILED = "failed"
    PARTIAL = "partial"  # Line failed but some components were already costed


class SkipReason(str, Enum):
    ALREADY_ALLOCATED = "already_allocated"
    INSUFFICIENT_STOCK = "insufficient_stock"
    UNKNOWN_SKU = "unknown_sku"
    NOT_SHIPPED = "not_shipped"
    INVALID_BUNDLE = "invalid_bundle"


class ErrorReason(str, Enum):
    CONCURRENT_UPDATE_CONFLICT = "concurrent_update_conflict"
    DATABASE_ERROR = "database_error"
    KERNEL_ERROR = "kernel_error"


# =============================================================================
# Result DTOs
# =============================================================================


@dataclass(frozen=True)
class SkippedLine:
    order_id: str
    sku: str
    reason: SkipReason
    detail: str = ""


@dataclass(frozen=True)
class ErrorLine:
    order_id: str
    sku: str
    reason: ErrorReason
    detail: str = ""


@dataclass(frozen=True)
class ApplyCOGSResult:
    """Immutable result of one ``apply_cogs`` run."""

    run_id: UUID
    method: str
    start_date: date
    end_date: date
    state: RunState
    total_lines: int
    allocated_count: int
    already_allocated_count: int
    skipped_lines: tuple[SkippedLine, ...] = ()
    error_lines: tuple[ErrorLine, ...] = ()
    allocated_amount: Decimal = Decimal("0")
    cancelled: bool = False
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def skipped_count(self) -> int:
        return len(self.skipped_lines)

    @property
    def error_count(self) -> int:
        return len(self.error_lines)

    def skipped_by_reason(self, reason: SkipReason) -> tuple[SkippedLine, ...]:
        return tuple(s for s in self.skipped_lines if s.reason == reason)


@dataclass(frozen=True)
class RunItem:
    """Run log entry for one order line."""

    order_id: str
    sku: str
    quantity: Decimal
    status: LineStatus
    reason: str | None = None
    allocated_skus: tuple[str, ...] = ()
    missing_skus: tuple[str, ...] = ()


@dataclass(frozen=True)
class RunSummary:
    """Run log header as stored."""

    run_id: UUID
    start_date: date
    end_date: date
    method: str
    state: RunState
    total: int
    eligible: int
    successful: int
    already_allocated: int
    skipped: int
    failed: int
    partial: int
    cancelled: bool
    failure_reason: str | None
    started_at: datetime | None
    completed_at: datetime | None
