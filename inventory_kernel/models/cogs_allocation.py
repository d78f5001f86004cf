"""
Module: inventory_kernel.models.cogs_allocation
Responsibility: ORM persistence for COGS allocation rows, the append-only
    record of the cost assigned to each shipped (order, component sku).
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Append-only: rows are never updated or deleted (ORM listeners in
      db/immutability.py).  Corrections are reversal rows.
    - amount = quantity * unit_cost.
    - Original rows have quantity > 0.  Reversal rows have quantity < 0,
      is_reversal = True and reverses_allocation_id pointing at an original.
    - FIFO rows carry the consumed layer_id; AVG rows carry none.

Failure modes:
    - IntegrityError on CHECK violation (zero quantity, sign mismatch).
    - ImmutabilityViolationError on UPDATE or DELETE.

Audit relevance:
    Signed sums over these rows give net COGS per order, per sku, per day.
    ``seq`` records insertion order, which is the order reversals walk.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import TrackedBase, UTCDateTime, UUIDString


class COGSAllocation(TrackedBase):
    """
    One costed slice of a shipped order line (or its reversal).

    Guarantees:
        - Never modified after INSERT.
        - seq is unique and strictly increasing in insertion order.
    """

    __tablename__ = "inventory_cogs_allocations"

    __table_args__ = (
        CheckConstraint("quantity <> 0", name="chk_alloc_qty_nonzero"),
        CheckConstraint(
            "(is_reversal AND quantity < 0) OR (NOT is_reversal AND quantity > 0)",
            name="chk_alloc_sign_matches_kind",
        ),
        CheckConstraint("method IN ('FIFO', 'AVG')", name="chk_alloc_method"),
        Index("idx_alloc_order_sku", "order_id", "sku"),
        Index("idx_alloc_shipped_at", "shipped_at"),
        Index("idx_alloc_layer", "layer_id"),
        Index("idx_alloc_reverses", "reverses_allocation_id"),
    )

    order_id: Mapped[str] = mapped_column(String(100), nullable=False)

    sku: Mapped[str] = mapped_column(String(100), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    unit_cost: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    method: Mapped[str] = mapped_column(String(10), nullable=False)

    shipped_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    layer_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("inventory_receipt_layers.id"),
        nullable=True,
    )

    is_reversal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    reverses_allocation_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("inventory_cogs_allocations.id"),
        nullable=True,
    )

    # Shortfall priced by the ESTIMATE oversell policy
    estimated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Run id for allocations, reversal id for reversal rows
    batch_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    reason: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    def __repr__(self) -> str:
        kind = "reversal" if self.is_reversal else "allocation"
        return (
            f"<COGSAllocation {kind} {self.order_id}/{self.sku}: "
            f"{self.quantity} @ {self.unit_cost} = {self.amount}>"
        )
