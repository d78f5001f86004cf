"""Kernel services - imperative shell infrastructure."""

from inventory_kernel.services.allocation_store import AllocationStore
from inventory_kernel.services.sequence_service import SequenceCounter, SequenceService

__all__ = ["AllocationStore", "SequenceCounter", "SequenceService"]
