"""
inventory_services.catalog_service -- Item catalog and bundle recipe upkeep.

Responsibility:
    Create and update catalog items, replace bundle recipes with validation,
    and load the immutable ItemCatalog snapshot a COGS run resolves against.

Architecture position:
    Services -- stateful orchestration over kernel models.

Invariants enforced:
    - SKUs are stored canonical (trimmed, upper case).
    - A recipe names only existing, non-bundle components, each once, each
      with a positive whole quantity, never the bundle itself.
    - An item that appears as a component cannot be turned into a bundle.

Failure modes:
    - UnknownSkuError for a bundle or component that does not exist.
    - InvalidBundleError for a recipe that breaks the rules above.
    - InvalidQuantityError for a non-positive or fractional component quantity.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from inventory_engines.catalog import CatalogItem, ItemCatalog, RecipeLine
from inventory_kernel.db.types import to_decimal
from inventory_kernel.domain.values import SYSTEM_ACTOR_ID, canonical_sku
from inventory_kernel.exceptions import (
    InvalidBundleError,
    InvalidQuantityError,
    UnknownSkuError,
)
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.item import BundleComponent, InventoryItem

logger = get_logger("services.catalog")


class CatalogService:
    """
    Maintains the item catalog.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(self, session: Session, actor_id: UUID = SYSTEM_ACTOR_ID):
        self._session = session
        self._actor_id = actor_id

    def get_item(self, sku: str) -> InventoryItem | None:
        return self._session.execute(
            select(InventoryItem).where(InventoryItem.sku == canonical_sku(sku))
        ).scalar_one_or_none()

    def upsert_item(
        self,
        sku: str,
        product_name: str = "",
        is_bundle: bool = False,
        base_cost_per_unit: Decimal | int | str = Decimal("0"),
    ) -> InventoryItem:
        key = canonical_sku(sku)
        if not key:
            raise UnknownSkuError(sku)
        base_cost = to_decimal(base_cost_per_unit)
        if base_cost < 0:
            raise InvalidQuantityError("base_cost_per_unit", base_cost)

        item = self.get_item(key)
        if item is None:
            item = InventoryItem(
                sku=key,
                product_name=product_name,
                is_bundle=is_bundle,
                base_cost_per_unit=base_cost,
                created_by_id=self._actor_id,
            )
            self._session.add(item)
            created = True
        else:
            if is_bundle and not item.is_bundle and self._is_component(key):
                raise InvalidBundleError(key, "item is a component of another bundle")
            item.product_name = product_name or item.product_name
            item.is_bundle = is_bundle
            item.base_cost_per_unit = base_cost
            item.updated_by_id = self._actor_id
            created = False

        self._session.flush()
        logger.info(
            "catalog_item_saved",
            extra={"sku": key, "is_bundle": is_bundle, "item_created": created},
        )
        return item

    def set_bundle_recipe(
        self,
        bundle_sku: str,
        components: list[tuple[str, Decimal | int | str]],
    ) -> list[BundleComponent]:
        """Replace the recipe of ``bundle_sku`` with ``components`` in order."""
        key = canonical_sku(bundle_sku)
        bundle = self.get_item(key)
        if bundle is None:
            raise UnknownSkuError(key)
        if not components:
            raise InvalidBundleError(key, "bundle has no components")
        if not bundle.is_bundle:
            if self._is_component(key):
                raise InvalidBundleError(key, "item is a component of another bundle")
            bundle.is_bundle = True

        seen: set[str] = set()
        validated: list[tuple[str, Decimal]] = []
        for component_sku, raw_qty in components:
            component_key = canonical_sku(component_sku)
            qty = to_decimal(raw_qty)
            if qty <= 0 or qty != qty.to_integral_value():
                raise InvalidQuantityError(f"quantity of {component_key}", qty)
            if component_key == key:
                raise InvalidBundleError(key, "bundle cannot contain itself")
            if component_key in seen:
                raise InvalidBundleError(key, f"component {component_key} listed twice")
            component = self.get_item(component_key)
            if component is None:
                raise UnknownSkuError(component_key, bundle_sku=key)
            if component.is_bundle:
                raise InvalidBundleError(key, f"component {component_key} is itself a bundle")
            seen.add(component_key)
            validated.append((component_key, qty))

        self._session.execute(
            delete(BundleComponent).where(BundleComponent.bundle_sku == key)
        )
        rows = [
            BundleComponent(
                bundle_sku=key,
                component_sku=component_key,
                quantity=qty,
                position=position,
                created_by_id=self._actor_id,
            )
            for position, (component_key, qty) in enumerate(validated)
        ]
        self._session.add_all(rows)
        self._session.flush()

        logger.info(
            "bundle_recipe_saved",
            extra={
                "bundle_sku": key,
                "components": [(c, q) for c, q in validated],
            },
        )
        return rows

    def load_catalog(self) -> ItemCatalog:
        """Snapshot every item and recipe."""
        recipes: dict[str, list[RecipeLine]] = {}
        for row in self._session.execute(
            select(BundleComponent).order_by(
                BundleComponent.bundle_sku, BundleComponent.position
            )
        ).scalars():
            recipes.setdefault(row.bundle_sku, []).append(
                RecipeLine(component_sku=row.component_sku, quantity=row.quantity)
            )

        items = [
            CatalogItem(
                sku=item.sku,
                is_bundle=item.is_bundle,
                recipe=tuple(recipes.get(item.sku, ())),
                product_name=item.product_name,
            )
            for item in self._session.execute(select(InventoryItem)).scalars()
        ]
        catalog = ItemCatalog.from_items(items)
        logger.debug(
            "catalog_loaded",
            extra={"items": len(catalog), "bundles": len(recipes)},
        )
        return catalog

    def _is_component(self, sku: str) -> bool:
        return (
            self._session.execute(
                select(BundleComponent.id)
                .where(BundleComponent.component_sku == sku)
                .limit(1)
            ).first()
            is not None
        )
