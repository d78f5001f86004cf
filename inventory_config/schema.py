"""
Configuration Schema (``inventory_config.schema``).

Frozen dataclasses describing the costing policy.  Pure data, zero I/O.
Parsing and validation live in ``inventory_config.loader``.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from inventory_engines.costing.types import CostingMethod, OversellPolicy


@dataclass(frozen=True)
class CostingPolicy:
    """
    Costing behaviour for COGS runs and reversals.

    Attributes:
        name: Label of the configuration set (logged with every run).
        default_method: Method used when a caller does not name one.
        oversell_policy: BLOCK refuses a short shipment; ESTIMATE prices
            the shortfall and flags the row.
        restock_on_reversal: Default for returning reversed quantity to
            stock (layer credit-back under FIFO, average blend under AVG).
        conflict_retries: Times an order line is retried after a
            concurrent layer/average update before it is reported.
        cancelled_statuses: Order-line statuses that never carry COGS.
        checksum: SHA-256 of the source document, for audit.
    """

    name: str = "default"
    default_method: CostingMethod = CostingMethod.FIFO
    oversell_policy: OversellPolicy = OversellPolicy.BLOCK
    restock_on_reversal: bool = True
    conflict_retries: int = 1
    cancelled_statuses: tuple[str, ...] = field(default=("cancelled",))
    checksum: str = ""
