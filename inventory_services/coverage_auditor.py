"""
inventory_services.coverage_auditor -- COGS completeness reconciliation.

Responsibility:
    Load the shipped order lines and original allocation rows for a date
    range, hand them to the pure coverage math, and shape the result for
    reporting and CSV export.

Architecture position:
    Services -- read-only orchestration over selectors and the catalog.

Invariants enforced:
    - Read only: never writes, flushes or commits.
    - Expected lines and allocation rows use the same inclusive UTC day
      range, keyed on shipped_at.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy.orm import Session

from inventory_config.schema import CostingPolicy
from inventory_engines.bundle import BundleResolver
from inventory_engines.coverage import (
    AllocationKey,
    CoverageReport,
    CoverageStats,
    ExpectedLine,
    compute_coverage,
)
from inventory_kernel.domain.values import DateRange
from inventory_kernel.exceptions import CatalogError
from inventory_kernel.logging_config import get_logger
from inventory_kernel.selectors.allocation_selector import AllocationSelector
from inventory_kernel.selectors.sales_line_selector import SalesLineSelector
from inventory_services.catalog_service import CatalogService

logger = get_logger("services.coverage_auditor")


@dataclass(frozen=True)
class MissingAllocationRow:
    """One expected order line with no (or incomplete) COGS."""

    order_id: str
    sku: str
    quantity: Decimal
    shipped_at: datetime | None
    status: str

    def as_csv_row(self) -> dict[str, str]:
        return {
            "order_id": self.order_id,
            "sku": self.sku,
            "quantity": format(self.quantity.normalize(), "f"),
            "shipped_at": self.shipped_at.isoformat() if self.shipped_at else "",
            "status": self.status,
        }


MISSING_ROW_FIELDS = ("order_id", "sku", "quantity", "shipped_at", "status")


class CoverageAuditor:
    """Compares expected order lines with allocated ones."""

    def __init__(self, session: Session, policy: CostingPolicy | None = None):
        self._session = session
        policy = policy or CostingPolicy()
        self._sales_lines = SalesLineSelector(session, policy.cancelled_statuses)
        self._allocations = AllocationSelector(session)

    def audit(
        self,
        start: date | datetime | str,
        end: date | datetime | str,
    ) -> CoverageReport:
        date_range = DateRange.of(start, end)
        resolver = BundleResolver(CatalogService(self._session).load_catalog())

        def components_of(sku: str) -> tuple[str, ...] | None:
            try:
                return resolver.component_skus(sku)
            except CatalogError:
                return None

        expected = [
            ExpectedLine(
                order_id=line.order_id,
                sku=line.sku,
                quantity=line.quantity,
                shipped_at=line.shipped_at,
                status=line.status,
            )
            for line in self._sales_lines.shipped_in_range(date_range)
        ]
        allocations = [
            AllocationKey(
                order_id=row.order_id,
                sku=row.sku,
                layer_id=row.layer_id,
                estimated=row.estimated,
            )
            for row in self._allocations.originals_in_range(date_range)
        ]
        report = compute_coverage(expected, allocations, components_of)

        stats = report.stats
        logger.info(
            "coverage_audited",
            extra={
                "start_date": date_range.start.isoformat(),
                "end_date": date_range.end.isoformat(),
                "expected_lines": stats.expected_lines,
                "allocated_lines": stats.allocated_lines,
                "missing_lines": stats.missing_lines,
                "coverage_percent": stats.coverage_percent,
                "duplicate_count": stats.duplicate_count,
            },
        )
        if report.duplicates:
            logger.warning(
                "coverage_duplicates_found",
                extra={
                    "groups": [(d.order_id, d.sku, d.row_count) for d in report.duplicates],
                },
            )
        return report

    def stats(self, start, end) -> CoverageStats:
        return self.audit(start, end).stats

    def missing_rows(self, start, end) -> list[MissingAllocationRow]:
        return [
            MissingAllocationRow(
                order_id=m.order_id,
                sku=m.sku,
                quantity=m.quantity,
                shipped_at=m.shipped_at,
                status=m.status,
            )
            for m in self.audit(start, end).missing
        ]
