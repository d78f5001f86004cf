"""
Module: inventory_kernel.models.receipt_layer
Responsibility: ORM persistence for receipt layers: one row per stock receipt,
    carrying the received quantity, the quantity still unconsumed and the unit
    cost at which the units entered inventory.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - qty_received > 0 and unit_cost >= 0, fixed at creation.
    - 0 <= qty_remaining <= qty_received (CHECK constraint and conditional
      UPDATEs in ReceiptLedger).
    - qty_remaining only moves through ReceiptLedger: decrements for
      allocation, bounded credit-backs for restocking reversals.
    - Layers are never deleted (ORM listener in db/immutability.py).
    - (sku, received_at, seq) ordering is the FIFO consumption order; seq is
      drawn from the sequence counter table and breaks same-timestamp ties.

Failure modes:
    - IntegrityError on CHECK violation (negative remaining, zero receipt).
    - ImmutabilityViolationError on DELETE or on UPDATE of any column other
      than qty_remaining.

Audit relevance:
    Every FIFO allocation row points at the layer it consumed, and reversal
    rows point at the same layer, so stock movement is traceable per receipt.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import BigInteger, CheckConstraint, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import TrackedBase, UTCDateTime


class ReceiptRefType(str, Enum):
    """Kind of document that produced a receipt layer."""

    OPENING_BALANCE = "OPENING_BALANCE"
    PURCHASE = "PURCHASE"
    ADJUSTMENT = "ADJUSTMENT"
    RETURN = "RETURN"


class ReceiptLayer(TrackedBase):
    """
    One tranche of stock received at a single unit cost.

    Guarantees:
        - qty_received, unit_cost, sku, received_at are frozen at creation.
        - seq is unique and strictly increasing in insertion order.
    """

    __tablename__ = "inventory_receipt_layers"

    __table_args__ = (
        CheckConstraint("qty_received > 0", name="chk_layer_received_positive"),
        CheckConstraint("qty_remaining >= 0", name="chk_layer_remaining_nonneg"),
        CheckConstraint(
            "qty_remaining <= qty_received", name="chk_layer_remaining_le_received"
        ),
        CheckConstraint("unit_cost >= 0", name="chk_layer_unit_cost_nonneg"),
        # FIFO scan: open layers for a sku in consumption order
        Index("idx_layer_sku_fifo", "sku", "received_at", "seq"),
        Index("idx_layer_ref", "ref_type", "ref_id"),
    )

    sku: Mapped[str] = mapped_column(String(100), nullable=False)

    received_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    qty_received: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    # Only mutable column
    qty_remaining: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    unit_cost: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    ref_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=ReceiptRefType.PURCHASE.value,
    )

    ref_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    def __repr__(self) -> str:
        return (
            f"<ReceiptLayer {self.sku} #{self.seq}: "
            f"{self.qty_remaining}/{self.qty_received} @ {self.unit_cost}>"
        )
