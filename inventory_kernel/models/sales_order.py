"""
Module: inventory_kernel.models.sales_order
Responsibility: ORM mapping of sales-order lines as written by the order
    import pipeline.  The costing engine only reads these rows.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - A line is "expected" to carry COGS once shipped_at is set and status is
      not a cancelled status.
    - (order_id, sku) is unique: COGS idempotency is keyed on that pair.

Audit relevance:
    shipped_at is copied onto every allocation row and decides which reporting
    day the cost lands in.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Index, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base, UTCDateTime

CANCELLED_STATUS = "cancelled"


class SalesOrderLine(Base):
    """One SKU line on a marketplace sales order."""

    __tablename__ = "sales_order_lines"

    __table_args__ = (
        UniqueConstraint("order_id", "sku", name="uq_sales_line_order_sku"),
        Index("idx_sales_line_shipped_at", "shipped_at"),
        Index("idx_sales_line_ordered_at", "ordered_at"),
    )

    order_id: Mapped[str] = mapped_column(String(100), nullable=False)

    sku: Mapped[str] = mapped_column(String(100), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    ordered_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    shipped_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    status: Mapped[str] = mapped_column(String(30), nullable=False, default="open")

    def __repr__(self) -> str:
        return f"<SalesOrderLine {self.order_id}/{self.sku} x{self.quantity} [{self.status}]>"
