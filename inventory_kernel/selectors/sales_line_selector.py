"""
Module: inventory_kernel.selectors.sales_line_selector
Responsibility: Read-only queries over sales-order lines for a reporting
    range: shipped lines that must carry COGS, and ordered-but-unshipped
    lines reported as not yet costable.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Range membership uses inclusive UTC calendar days (DateRange).
    - Lines with a cancelled status are never returned as expected.
    - Results are ordered by (shipped_at, order_id, sku) so a run processes
      lines deterministically.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from inventory_kernel.domain.values import DateRange
from inventory_kernel.models.sales_order import CANCELLED_STATUS, SalesOrderLine
from inventory_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class SalesLineDTO:
    """Data transfer object for a sales-order line."""

    id: UUID
    order_id: str
    sku: str
    quantity: Decimal
    ordered_at: datetime | None
    shipped_at: datetime | None
    status: str


class SalesLineSelector(BaseSelector):
    """Read access to sales-order lines."""

    def __init__(self, session, cancelled_statuses: tuple[str, ...] = (CANCELLED_STATUS,)):
        super().__init__(session)
        self._cancelled = tuple(s.lower() for s in cancelled_statuses)

    @staticmethod
    def _to_dto(row: SalesOrderLine) -> SalesLineDTO:
        return SalesLineDTO(
            id=row.id,
            order_id=row.order_id,
            sku=row.sku,
            quantity=row.quantity,
            ordered_at=row.ordered_at,
            shipped_at=row.shipped_at,
            status=row.status,
        )

    def _not_cancelled(self):
        return func.lower(SalesOrderLine.status).not_in(self._cancelled)

    def shipped_in_range(self, date_range: DateRange) -> list[SalesLineDTO]:
        """Lines shipped in the range and not cancelled (the expected set)."""
        rows = self.session.execute(
            select(SalesOrderLine)
            .where(
                SalesOrderLine.shipped_at.is_not(None),
                SalesOrderLine.shipped_at >= date_range.start_at,
                SalesOrderLine.shipped_at < date_range.end_before,
                self._not_cancelled(),
            )
            .order_by(
                SalesOrderLine.shipped_at,
                SalesOrderLine.order_id,
                SalesOrderLine.sku,
            )
        ).scalars()
        return [self._to_dto(r) for r in rows]

    def unshipped_in_range(self, date_range: DateRange) -> list[SalesLineDTO]:
        """Lines ordered in the range that have not shipped yet."""
        rows = self.session.execute(
            select(SalesOrderLine)
            .where(
                SalesOrderLine.shipped_at.is_(None),
                SalesOrderLine.ordered_at.is_not(None),
                SalesOrderLine.ordered_at >= date_range.start_at,
                SalesOrderLine.ordered_at < date_range.end_before,
                self._not_cancelled(),
            )
            .order_by(SalesOrderLine.ordered_at, SalesOrderLine.order_id, SalesOrderLine.sku)
        ).scalars()
        return [self._to_dto(r) for r in rows]
