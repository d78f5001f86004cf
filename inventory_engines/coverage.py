"""
inventory_engines.coverage -- COGS coverage math.

Responsibility:
    Compare the set of shipped order lines that should carry COGS with the
    allocation rows that exist, and report coverage, the missing lines and
    suspected duplicate allocations.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  CoverageAuditor feeds it
    from the selectors.

Invariants enforced:
    - missing_lines = expected_lines - allocated_lines.
    - coverage_percent = allocated / expected * 100, and 100.0 when nothing
      is expected.
    - An expected line is allocated only when every component it resolves
      to has an original allocation row for the order.  A line whose SKU
      cannot be resolved is never allocated.
    - A duplicate is an (order, sku) group with more original rows than
      distinct layers touched.  A layer is keyed by (layer_id, estimated): an
      average-cost line split into its covered part and an estimated
      shortfall touches two keys.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

_ZERO = Decimal("0")


@dataclass(frozen=True, slots=True)
class ExpectedLine:
    order_id: str
    sku: str
    quantity: Decimal
    shipped_at: datetime | None
    status: str


@dataclass(frozen=True, slots=True)
class AllocationKey:
    """The fields of an original allocation row that coverage looks at."""

    order_id: str
    sku: str
    layer_id: UUID | None
    estimated: bool = False


@dataclass(frozen=True, slots=True)
class MissingLine:
    order_id: str
    sku: str
    quantity: Decimal
    shipped_at: datetime | None
    status: str
    missing_components: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class DuplicateGroup:
    order_id: str
    sku: str
    row_count: int
    distinct_layers: int


@dataclass(frozen=True)
class CoverageStats:
    expected_lines: int
    allocated_lines: int
    missing_lines: int
    coverage_percent: float
    duplicate_count: int
    expected_quantity: Decimal
    allocated_quantity: Decimal


@dataclass(frozen=True)
class CoverageReport:
    stats: CoverageStats
    missing: tuple[MissingLine, ...]
    duplicates: tuple[DuplicateGroup, ...]


def coverage_percent(allocated: int, expected: int) -> float:
    if expected == 0:
        return 100.0
    return round(allocated / expected * 100, 2)


def find_duplicates(rows: Iterable[AllocationKey]) -> tuple[DuplicateGroup, ...]:
    counts: dict[tuple[str, str], int] = defaultdict(int)
    layers: dict[tuple[str, str], set[tuple[UUID | None, bool]]] = defaultdict(set)
    for row in rows:
        key = (row.order_id, row.sku)
        counts[key] += 1
        layers[key].add((row.layer_id, row.estimated))
    return tuple(
        DuplicateGroup(order_id, sku, counts[(order_id, sku)], len(layers[(order_id, sku)]))
        for order_id, sku in sorted(counts)
        if counts[(order_id, sku)] > len(layers[(order_id, sku)])
    )


def compute_coverage(
    expected: Iterable[ExpectedLine],
    allocations: Iterable[AllocationKey],
    components_of: Callable[[str], tuple[str, ...] | None],
) -> CoverageReport:
    """
    Build the coverage report.

    Args:
        expected: Shipped, non-cancelled order lines in the range.
        allocations: Original allocation rows in the range.
        components_of: SKU -> component SKUs, or None if it cannot be resolved.
    """
    allocation_rows = list(allocations)
    allocated_pairs = {(row.order_id, row.sku) for row in allocation_rows}

    # Distinct (order, sku); quantities of repeated lines are summed.
    lines: dict[tuple[str, str], ExpectedLine] = {}
    for line in expected:
        key = (line.order_id, line.sku)
        if key in lines:
            prior = lines[key]
            lines[key] = ExpectedLine(
                prior.order_id, prior.sku, prior.quantity + line.quantity,
                prior.shipped_at, prior.status,
            )
        else:
            lines[key] = line

    missing: list[MissingLine] = []
    expected_qty = _ZERO
    allocated_qty = _ZERO
    for (order_id, sku), line in lines.items():
        expected_qty += line.quantity
        components = components_of(sku)
        if components is None or not components:
            absent = (sku,)
        else:
            absent = tuple(c for c in components if (order_id, c) not in allocated_pairs)
        if absent:
            missing.append(
                MissingLine(
                    order_id=order_id,
                    sku=sku,
                    quantity=line.quantity,
                    shipped_at=line.shipped_at,
                    status=line.status,
                    missing_components=absent,
                )
            )
        else:
            allocated_qty += line.quantity

    duplicates = find_duplicates(allocation_rows)
    expected_count = len(lines)
    allocated_count = expected_count - len(missing)
    stats = CoverageStats(
        expected_lines=expected_count,
        allocated_lines=allocated_count,
        missing_lines=len(missing),
        coverage_percent=coverage_percent(allocated_count, expected_count),
        duplicate_count=len(duplicates),
        expected_quantity=expected_qty,
        allocated_quantity=allocated_qty,
    )
    return CoverageReport(stats=stats, missing=tuple(missing), duplicates=duplicates)
