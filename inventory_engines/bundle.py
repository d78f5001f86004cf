"""
inventory_engines.bundle -- Bundle explosion.

Responsibility:
    Turn (sku, quantity) into the component demand that must be costed:
    a plain item demands itself; a bundle demands each recipe component
    times the bundle quantity, in recipe order.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Component demand is whole units (half-up rounding of qty * per-bundle).
    - Recipe order is preserved, so allocation rows are written in the same
      order on every run.
    - No nesting: a component that is itself a bundle is rejected.

Failure modes:
    - UnknownSkuError: sku or one of its components is not in the catalog.
    - InvalidBundleError: bundle with an empty recipe or a nested bundle.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from inventory_engines.catalog import ItemCatalog
from inventory_kernel.db.types import round_units
from inventory_kernel.domain.values import canonical_sku
from inventory_kernel.exceptions import InvalidBundleError, UnknownSkuError
from inventory_kernel.logging_config import get_logger

logger = get_logger("engines.bundle")


@dataclass(frozen=True, slots=True)
class ComponentDemand:
    """Quantity of one costable (non-bundle) SKU required by an order line."""

    sku: str
    quantity: Decimal


class BundleResolver:
    """
    Explodes order-line SKUs against a catalog snapshot.

    Contract:
        ``resolve`` is a pure function of the catalog and its arguments.

    Non-goals:
        - Does not check stock or allocation state.
    """

    def __init__(self, catalog: ItemCatalog):
        self._catalog = catalog

    def resolve(self, sku: str, quantity: Decimal) -> tuple[ComponentDemand, ...]:
        key = canonical_sku(sku)
        item = self._catalog.get(key)
        if item is None:
            raise UnknownSkuError(key)

        if not item.is_bundle:
            return (ComponentDemand(sku=key, quantity=quantity),)

        if not item.recipe:
            raise InvalidBundleError(key, "bundle has no components")

        demands: list[ComponentDemand] = []
        for line in item.recipe:
            component_key = canonical_sku(line.component_sku)
            component = self._catalog.get(component_key)
            if component is None:
                raise UnknownSkuError(component_key, bundle_sku=key)
            if component.is_bundle:
                raise InvalidBundleError(
                    key, f"component {component_key} is itself a bundle"
                )
            needed = round_units(quantity * line.quantity)
            if needed > 0:
                demands.append(ComponentDemand(sku=component_key, quantity=needed))

        logger.debug(
            "bundle_resolved",
            extra={
                "bundle_sku": key,
                "quantity": quantity,
                "components": [(d.sku, d.quantity) for d in demands],
            },
        )
        return tuple(demands)

    def component_skus(self, sku: str) -> tuple[str, ...]:
        """Component SKUs of ``sku`` (itself for a plain item)."""
        return tuple(d.sku for d in self.resolve(sku, Decimal("1")))
