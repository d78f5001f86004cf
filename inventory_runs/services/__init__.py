"""COGS run services."""

from inventory_runs.services.allocation_writer import AllocationWriter

__all__ = ["AllocationWriter"]
