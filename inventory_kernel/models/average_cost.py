"""
Module: inventory_kernel.models.average_cost
Responsibility: ORM persistence for the per-SKU moving-average cost record
    (on-hand quantity, on-hand value, current weighted unit cost).
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - One row per sku.
    - ``revision`` increases by one on every change.  Writers update the row
      with ``WHERE revision = :expected`` so a concurrent change is detected
      instead of overwritten.
    - avg_unit_cost = on_hand_value / on_hand_qty, or 0 when on_hand_qty is 0.

Failure modes:
    - ConcurrentUpdateConflict raised by ReceiptLedger when the conditional
      UPDATE matches no row.

Audit relevance:
    The record is derived state.  Allocation rows carry the unit cost that was
    current when they were written, so history never depends on this row.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base, UTCDateTime


class AverageCostState(Base):
    """Moving-average cost record for one SKU."""

    __tablename__ = "inventory_average_costs"

    sku: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    on_hand_qty: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), nullable=False, default=Decimal("0")
    )

    on_hand_value: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), nullable=False, default=Decimal("0")
    )

    avg_unit_cost: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), nullable=False, default=Decimal("0")
    )

    revision: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<AverageCostState {self.sku}: {self.on_hand_qty} @ "
            f"{self.avg_unit_cost} (rev {self.revision})>"
        )
