"""
AllocationStore -- insert-only access to the COGS allocation ledger.

Responsibility:
    The single write path for allocation and reversal rows.  Stamps each
    row with the next allocation sequence number and the acting user.

Architecture position:
    Kernel > Services.  Used by the allocation writer and the reversal
    writer; reads go through AllocationSelector.

Invariants enforced:
    - Insert only.  There is no update or delete method, and the ORM
      listeners in db/immutability.py refuse both.
    - amount is computed here as quantity * unit_cost when not given.
    - Reversal rows must be negative and must name the row they reverse.

Failure modes:
    - ValueError for a sign/kind mismatch (caught before the CHECK
      constraint would reject it).
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from inventory_kernel.db.types import quantize_stored
from inventory_kernel.domain.values import SYSTEM_ACTOR_ID
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.cogs_allocation import COGSAllocation
from inventory_kernel.selectors.allocation_selector import AllocationDTO, allocation_to_dto
from inventory_kernel.services.sequence_service import SequenceService

logger = get_logger("services.allocation_store")


class AllocationStore:
    """
    Appends allocation rows.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(self, session: Session, actor_id: UUID = SYSTEM_ACTOR_ID):
        self._session = session
        self._actor_id = actor_id
        self._sequences = SequenceService(session)

    def append(
        self,
        *,
        order_id: str,
        sku: str,
        quantity: Decimal,
        unit_cost: Decimal,
        method: str,
        shipped_at: datetime,
        amount: Decimal | None = None,
        layer_id: UUID | None = None,
        is_reversal: bool = False,
        reverses_allocation_id: UUID | None = None,
        estimated: bool = False,
        batch_id: UUID | None = None,
        reason: str | None = None,
    ) -> AllocationDTO:
        if is_reversal:
            if quantity >= 0 or reverses_allocation_id is None:
                raise ValueError("reversal rows need a negative quantity and an original row")
        elif quantity <= 0:
            raise ValueError("allocation rows need a positive quantity")

        row = COGSAllocation(
            order_id=order_id,
            sku=sku,
            quantity=quantity,
            unit_cost=unit_cost,
            amount=amount if amount is not None else quantize_stored(quantity * unit_cost),
            method=method,
            shipped_at=shipped_at,
            layer_id=layer_id,
            is_reversal=is_reversal,
            reverses_allocation_id=reverses_allocation_id,
            estimated=estimated,
            batch_id=batch_id,
            reason=reason,
            seq=self._sequences.next_value(SequenceService.COGS_ALLOCATION),
            created_by_id=self._actor_id,
        )
        self._session.add(row)
        self._session.flush()

        logger.debug(
            "allocation_row_appended",
            extra={
                "allocation_id": str(row.id),
                "order_id": order_id,
                "sku": sku,
                "quantity": quantity,
                "amount": row.amount,
                "is_reversal": is_reversal,
                "seq": row.seq,
            },
        )
        return allocation_to_dto(row)
