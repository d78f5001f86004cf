"""
Module: inventory_kernel.selectors.allocation_selector
Responsibility: Read-only queries over COGS allocation rows: which components
    of an order are already costed, what remains reversible, and range
    aggregates for the coverage audit and daily totals.
Architecture position: Kernel > Selectors.  May import from models/ and
    selectors/base.py.

Invariants enforced:
    - Aggregates sum signed quantity/amount, so reversal rows are subtracted.
    - "Already allocated" looks at original rows only: a fully reversed line
      stays allocated and is never re-costed by a later run.
    - Rows come back in insertion order (seq).

Failure modes:
    - Returns empty collections when nothing matches (never raises on absence).
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from inventory_kernel.domain.values import DateRange
from inventory_kernel.models.cogs_allocation import COGSAllocation
from inventory_kernel.selectors.base import BaseSelector

_ZERO = Decimal("0")


@dataclass(frozen=True)
class AllocationDTO:
    """Data transfer object for one allocation or reversal row."""

    id: UUID
    order_id: str
    sku: str
    quantity: Decimal
    unit_cost: Decimal
    amount: Decimal
    method: str
    shipped_at: datetime
    layer_id: UUID | None
    is_reversal: bool
    reverses_allocation_id: UUID | None
    estimated: bool
    batch_id: UUID | None
    reason: str | None
    seq: int


def allocation_to_dto(row: COGSAllocation) -> AllocationDTO:
    return AllocationDTO(
        id=row.id,
        order_id=row.order_id,
        sku=row.sku,
        quantity=row.quantity,
        unit_cost=row.unit_cost,
        amount=row.amount,
        method=row.method,
        shipped_at=row.shipped_at,
        layer_id=row.layer_id,
        is_reversal=row.is_reversal,
        reverses_allocation_id=row.reverses_allocation_id,
        estimated=row.estimated,
        batch_id=row.batch_id,
        reason=row.reason,
        seq=row.seq,
    )


class AllocationSelector(BaseSelector):
    """Read access to the COGS allocation ledger."""

    def allocated_skus(self, order_id: str, skus: list[str] | None = None) -> set[str]:
        """SKUs of ``order_id`` that have at least one original allocation row."""
        stmt = select(COGSAllocation.sku).where(
            COGSAllocation.order_id == order_id,
            COGSAllocation.is_reversal.is_(False),
        )
        if skus is not None:
            stmt = stmt.where(COGSAllocation.sku.in_(skus))
        return set(self.session.execute(stmt.distinct()).scalars())

    def originals_for(self, order_id: str, sku: str) -> list[AllocationDTO]:
        """Original (non-reversal) rows for (order, sku) in insertion order."""
        rows = self.session.execute(
            select(COGSAllocation)
            .where(
                COGSAllocation.order_id == order_id,
                COGSAllocation.sku == sku,
                COGSAllocation.is_reversal.is_(False),
            )
            .order_by(COGSAllocation.seq)
        ).scalars()
        return [allocation_to_dto(r) for r in rows]

    def rows_for(self, order_id: str, sku: str | None = None) -> list[AllocationDTO]:
        """All rows (originals and reversals) for an order, in insertion order."""
        stmt = select(COGSAllocation).where(COGSAllocation.order_id == order_id)
        if sku is not None:
            stmt = stmt.where(COGSAllocation.sku == sku)
        rows = self.session.execute(stmt.order_by(COGSAllocation.seq)).scalars()
        return [allocation_to_dto(r) for r in rows]

    def reversed_quantities(self, original_ids: list[UUID]) -> dict[UUID, Decimal]:
        """Quantity already reversed per original row (positive numbers)."""
        if not original_ids:
            return {}
        rows = self.session.execute(
            select(
                COGSAllocation.reverses_allocation_id,
                func.sum(COGSAllocation.quantity),
            )
            .where(COGSAllocation.reverses_allocation_id.in_(original_ids))
            .group_by(COGSAllocation.reverses_allocation_id)
        ).all()
        return {orig_id: -(total or _ZERO) for orig_id, total in rows}

    def net_quantity(self, order_id: str, sku: str) -> Decimal:
        """Signed sum of quantity for (order, sku): allocated minus reversed."""
        total = self.session.execute(
            select(func.sum(COGSAllocation.quantity)).where(
                COGSAllocation.order_id == order_id,
                COGSAllocation.sku == sku,
            )
        ).scalar_one_or_none()
        return total or _ZERO

    def originals_in_range(self, date_range: DateRange) -> list[AllocationDTO]:
        """Original rows whose shipped_at falls in the range."""
        rows = self.session.execute(
            select(COGSAllocation)
            .where(
                COGSAllocation.is_reversal.is_(False),
                COGSAllocation.shipped_at >= date_range.start_at,
                COGSAllocation.shipped_at < date_range.end_before,
            )
            .order_by(COGSAllocation.seq)
        ).scalars()
        return [allocation_to_dto(r) for r in rows]

    def amount_between(self, start_at: datetime, end_before: datetime) -> Decimal:
        """Signed sum of amount for rows dated in [start_at, end_before)."""
        total = self.session.execute(
            select(func.sum(COGSAllocation.amount)).where(
                COGSAllocation.shipped_at >= start_at,
                COGSAllocation.shipped_at < end_before,
            )
        ).scalar_one_or_none()
        return total or _ZERO

    def count_rows(self, *, is_reversal: bool | None = None) -> int:
        stmt = select(func.count()).select_from(COGSAllocation)
        if is_reversal is not None:
            stmt = stmt.where(COGSAllocation.is_reversal.is_(is_reversal))
        return self.session.execute(stmt).scalar_one()
