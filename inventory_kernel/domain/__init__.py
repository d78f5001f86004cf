"""Pure domain helpers for the inventory kernel."""

from inventory_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from inventory_kernel.domain.values import SYSTEM_ACTOR_ID, DateRange, canonical_sku

__all__ = [
    "Clock",
    "DateRange",
    "DeterministicClock",
    "SYSTEM_ACTOR_ID",
    "SystemClock",
    "canonical_sku",
]
