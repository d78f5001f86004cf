"""Run log ORM models."""

from inventory_runs.models.run import COGSRunItemModel, COGSRunModel

__all__ = ["COGSRunItemModel", "COGSRunModel"]
