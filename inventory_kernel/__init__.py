"""
Inventory Kernel

Persistence and ledger core for inventory costing:
- Append-only receipt layers and COGS allocation rows
- Moving-average cost records with optimistic versioning
- Typed exceptions with machine-readable codes
- Structured JSON logging
"""

__version__ = "0.1.0"
