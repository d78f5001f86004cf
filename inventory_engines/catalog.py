"""
inventory_engines.catalog -- Immutable snapshot of the item catalog.

Responsibility:
    Hold the items and bundle recipes a COGS run explodes demand against.
    Loaded once per run by CatalogService so every line of a run sees the
    same recipes.

Architecture position:
    Engines -- pure value objects, zero I/O.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType

from inventory_kernel.domain.values import canonical_sku


@dataclass(frozen=True, slots=True)
class RecipeLine:
    """``quantity`` units of ``component_sku`` per bundle unit."""

    component_sku: str
    quantity: Decimal


@dataclass(frozen=True, slots=True)
class CatalogItem:
    sku: str
    is_bundle: bool = False
    recipe: tuple[RecipeLine, ...] = ()
    product_name: str = ""


@dataclass(frozen=True)
class ItemCatalog:
    """Read-only lookup of catalog items by canonical SKU."""

    items: Mapping[str, CatalogItem] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "items", MappingProxyType(dict(self.items)))

    @classmethod
    def from_items(cls, items: Iterable[CatalogItem]) -> ItemCatalog:
        return cls({canonical_sku(i.sku): i for i in items})

    def get(self, sku: str) -> CatalogItem | None:
        return self.items.get(canonical_sku(sku))

    def __contains__(self, sku: object) -> bool:
        return isinstance(sku, str) and canonical_sku(sku) in self.items

    def __len__(self) -> int:
        return len(self.items)
