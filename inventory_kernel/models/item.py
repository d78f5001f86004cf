"""
Module: inventory_kernel.models.item
Responsibility: ORM persistence for the item catalog: stock-keeping items and
    bundle recipes (which component SKUs, in which quantities, make up one
    bundle unit).
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - sku is stored in canonical form (trimmed, upper case) and is unique.
    - A recipe row has quantity > 0 and never names its own bundle.
    - (bundle_sku, component_sku) is unique; recipe order is ``position``.
    - Components are non-bundle items.  Checked by CatalogService when a
      recipe is written and again by the bundle resolver at run time.

Failure modes:
    - IntegrityError on duplicate sku or duplicate recipe row.

Audit relevance:
    The catalog is snapshotted once at the start of each COGS run, so every
    allocation of a run was exploded against the same recipe.
"""

from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import TrackedBase


class InventoryItem(TrackedBase):
    """
    One stock-keeping item (or bundle) in the catalog.

    Guarantees:
        - sku is canonical and unique.
        - base_cost_per_unit is informational; costing never reads it.
    """

    __tablename__ = "inventory_items"

    __table_args__ = (
        CheckConstraint("base_cost_per_unit >= 0", name="chk_item_base_cost_nonneg"),
    )

    sku: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    product_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    is_bundle: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    base_cost_per_unit: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
        default=Decimal("0"),
    )

    def __repr__(self) -> str:
        kind = "bundle" if self.is_bundle else "item"
        return f"<InventoryItem {self.sku} ({kind})>"


class BundleComponent(TrackedBase):
    """
    One line of a bundle recipe.

    Guarantees:
        - quantity is a positive whole number of component units per bundle.
        - position gives the recipe order used when exploding demand.
    """

    __tablename__ = "inventory_bundle_components"

    __table_args__ = (
        UniqueConstraint("bundle_sku", "component_sku", name="uq_bundle_component"),
        CheckConstraint("quantity > 0", name="chk_bundle_component_qty_positive"),
        CheckConstraint("bundle_sku <> component_sku", name="chk_bundle_not_self"),
        Index("idx_bundle_component_bundle", "bundle_sku", "position"),
    )

    bundle_sku: Mapped[str] = mapped_column(
        String(100),
        ForeignKey("inventory_items.sku"),
        nullable=False,
    )

    component_sku: Mapped[str] = mapped_column(
        String(100),
        ForeignKey("inventory_items.sku"),
        nullable=False,
    )

    quantity: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<BundleComponent {self.bundle_sku} -> {self.quantity} x {self.component_sku}>"
