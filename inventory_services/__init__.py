"""
Inventory services: stateful orchestration over the kernel.

Services own sessions, read and write through kernel models, and call the
pure engines for all calculation.
"""

from inventory_services.catalog_service import CatalogService
from inventory_services.cogs_service import COGSService
from inventory_services.coverage_auditor import CoverageAuditor, MissingAllocationRow
from inventory_services.receipt_ledger import ReceiptDTO, ReceiptLedger
from inventory_services.reversal_writer import ReversalRecord, ReversalWriter

__all__ = [
    "COGSService",
    "CatalogService",
    "CoverageAuditor",
    "MissingAllocationRow",
    "ReceiptDTO",
    "ReceiptLedger",
    "ReversalRecord",
    "ReversalWriter",
]
