"""
inventory_services.receipt_ledger -- Receipt layers and moving-average state.

Responsibility:
    Append receipt layers, read open layers in FIFO order, and apply the
    costing engine's plans: layer decrements, bounded credit-backs, and
    moving-average state changes.

Architecture position:
    Services -- stateful orchestration over kernel models and the pure
    costing engine.

Invariants enforced:
    - A receipt appends exactly one layer and blends the same quantity and
      cost into the SKU's moving-average state.
    - Layer decrements are conditional UPDATEs
      (``WHERE qty_remaining >= :quantity``); a layer can never go negative,
      and a stale plan fails instead of overdrawing.
    - Credit-backs are conditional UPDATEs bounded by qty_received.
    - Average-state writes are conditional on the revision that was read.

Failure modes:
    - UnknownSkuError / InvalidBundleError when receiving an item that is
      not in the catalog, or a bundle (bundles hold no stock).
    - InvalidQuantityError for quantity <= 0 or unit cost < 0.
    - ConcurrentUpdateConflict when a conditional UPDATE matches no row.
    - LayerCreditOverflowError when a credit-back exceeds what was consumed.

Audit relevance:
    Every layer carries ref_type/ref_id back to the source document, and a
    sequence number that fixes its place in FIFO order.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from inventory_engines.costing.moving_average import blend_receipt
from inventory_engines.costing.types import AverageCost, LayerDecrement, LayerSnapshot
from inventory_kernel.db.types import to_decimal
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.values import SYSTEM_ACTOR_ID, canonical_sku
from inventory_kernel.exceptions import (
    ConcurrentUpdateConflict,
    InvalidBundleError,
    InvalidQuantityError,
    LayerCreditOverflowError,
    UnknownSkuError,
)
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.average_cost import AverageCostState
from inventory_kernel.models.item import InventoryItem
from inventory_kernel.models.receipt_layer import ReceiptLayer, ReceiptRefType
from inventory_kernel.services.sequence_service import SequenceService

logger = get_logger("services.receipt_ledger")

_ZERO = Decimal("0")


@dataclass(frozen=True)
class ReceiptDTO:
    """A receipt layer as stored."""

    layer_id: UUID
    sku: str
    received_at: datetime
    qty_received: Decimal
    qty_remaining: Decimal
    unit_cost: Decimal
    ref_type: str
    ref_id: str | None
    seq: int

    def to_snapshot(self) -> LayerSnapshot:
        return LayerSnapshot(
            layer_id=self.layer_id,
            sku=self.sku,
            received_at=self.received_at,
            seq=self.seq,
            remaining=self.qty_remaining,
            unit_cost=self.unit_cost,
        )


def _to_dto(layer: ReceiptLayer) -> ReceiptDTO:
    return ReceiptDTO(
        layer_id=layer.id,
        sku=layer.sku,
        received_at=layer.received_at,
        qty_received=layer.qty_received,
        qty_remaining=layer.qty_remaining,
        unit_cost=layer.unit_cost,
        ref_type=layer.ref_type,
        ref_id=layer.ref_id,
        seq=layer.seq,
    )


class ReceiptLedger:
    """
    The depletable cost ledger.

    Contract:
        All changes to layer balances and average state go through this
        class.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT decide what to consume; CostingEngine plans that.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._actor_id = actor_id
        self._sequences = SequenceService(session)

    # ------------------------------------------------------------------
    # Receipts
    # ------------------------------------------------------------------

    def record_receipt(
        self,
        sku: str,
        quantity: Decimal | int | str,
        unit_cost: Decimal | int | str,
        received_at: datetime | None = None,
        ref_type: ReceiptRefType | str = ReceiptRefType.PURCHASE,
        ref_id: str | None = None,
    ) -> ReceiptDTO:
        """Append a receipt layer and blend it into the average state."""
        key = canonical_sku(sku)
        qty = to_decimal(quantity)
        cost = to_decimal(unit_cost)
        if qty <= _ZERO:
            raise InvalidQuantityError("quantity", qty)
        if cost < _ZERO:
            raise InvalidQuantityError("unit_cost", cost)
        self._require_stock_item(key)
        ref = ReceiptRefType(ref_type)

        layer = ReceiptLayer(
            sku=key,
            received_at=received_at or self._clock.now(),
            qty_received=qty,
            qty_remaining=qty,
            unit_cost=cost,
            ref_type=ref.value,
            ref_id=ref_id,
            seq=self._sequences.next_value(SequenceService.RECEIPT_LAYER),
            created_by_id=self._actor_id,
        )
        self._session.add(layer)
        self._session.flush()

        before = self.average_state(key)
        self.save_average(before, blend_receipt(before, qty, cost))

        logger.info(
            "receipt_layer_recorded",
            extra={
                "layer_id": str(layer.id),
                "sku": key,
                "quantity": qty,
                "unit_cost": cost,
                "ref_type": ref.value,
                "ref_id": ref_id,
                "seq": layer.seq,
            },
        )
        return _to_dto(layer)

    def record_opening_balance(
        self,
        sku: str,
        quantity: Decimal | int | str,
        unit_cost: Decimal | int | str,
        as_of: datetime | None = None,
        ref_id: str | None = None,
    ) -> ReceiptDTO:
        """Seed stock on hand at go-live as an OPENING_BALANCE layer."""
        return self.record_receipt(
            sku,
            quantity,
            unit_cost,
            received_at=as_of,
            ref_type=ReceiptRefType.OPENING_BALANCE,
            ref_id=ref_id or "opening-balance",
        )

    def _require_stock_item(self, sku: str) -> None:
        is_bundle = self._session.execute(
            select(InventoryItem.is_bundle).where(InventoryItem.sku == sku)
        ).scalar_one_or_none()
        if is_bundle is None:
            raise UnknownSkuError(sku)
        if is_bundle:
            raise InvalidBundleError(sku, "bundles hold no stock of their own")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_layer(self, layer_id: UUID) -> ReceiptDTO | None:
        layer = self._session.execute(
            select(ReceiptLayer)
            .where(ReceiptLayer.id == layer_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        return _to_dto(layer) if layer is not None else None

    def layers(self, sku: str, *, open_only: bool = False) -> list[ReceiptDTO]:
        """Layers for ``sku`` in FIFO order (received_at, seq)."""
        stmt = select(ReceiptLayer).where(ReceiptLayer.sku == canonical_sku(sku))
        if open_only:
            stmt = stmt.where(ReceiptLayer.qty_remaining > 0)
        rows = self._session.execute(
            stmt.order_by(ReceiptLayer.received_at, ReceiptLayer.seq)
            .execution_options(populate_existing=True)
        ).scalars()
        return [_to_dto(r) for r in rows]

    def open_layers(self, sku: str) -> list[LayerSnapshot]:
        return [dto.to_snapshot() for dto in self.layers(sku, open_only=True)]

    def last_unit_cost(self, sku: str) -> Decimal | None:
        """Unit cost of the most recently received layer, depleted or not."""
        return self._session.execute(
            select(ReceiptLayer.unit_cost)
            .where(ReceiptLayer.sku == canonical_sku(sku))
            .order_by(ReceiptLayer.received_at.desc(), ReceiptLayer.seq.desc())
            .limit(1)
        ).scalar_one_or_none()

    def on_hand(self, sku: str) -> Decimal:
        """Sum of remaining quantity across all layers of ``sku``."""
        total = self._session.execute(
            select(func.sum(ReceiptLayer.qty_remaining)).where(
                ReceiptLayer.sku == canonical_sku(sku)
            )
        ).scalar_one_or_none()
        return total or _ZERO

    def average_state(self, sku: str) -> AverageCost:
        key = canonical_sku(sku)
        row = self._session.execute(
            select(AverageCostState)
            .where(AverageCostState.sku == key)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if row is None:
            return AverageCost(sku=key)
        return AverageCost(
            sku=key,
            on_hand_qty=row.on_hand_qty,
            on_hand_value=row.on_hand_value,
            avg_unit_cost=row.avg_unit_cost,
            revision=row.revision,
        )

    # ------------------------------------------------------------------
    # Plan application
    # ------------------------------------------------------------------

    def apply_decrements(self, decrements: Iterable[LayerDecrement]) -> None:
        """Apply FIFO layer decrements; all or nothing within the caller's savepoint."""
        for dec in decrements:
            result = self._session.execute(
                update(ReceiptLayer)
                .where(
                    ReceiptLayer.id == dec.layer_id,
                    ReceiptLayer.qty_remaining >= dec.quantity,
                )
                .values(qty_remaining=ReceiptLayer.qty_remaining - dec.quantity)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                logger.warning(
                    "layer_decrement_conflict",
                    extra={
                        "layer_id": str(dec.layer_id),
                        "quantity": dec.quantity,
                        "expected_remaining": dec.expected_remaining,
                    },
                )
                raise ConcurrentUpdateConflict(
                    "ReceiptLayer",
                    str(dec.layer_id),
                    f"fewer than {dec.quantity} units remain",
                )
            logger.debug(
                "layer_decremented",
                extra={"layer_id": str(dec.layer_id), "quantity": dec.quantity},
            )

    def credit_layer(self, layer_id: UUID, quantity: Decimal) -> None:
        """Return ``quantity`` units to a layer, never above qty_received."""
        if quantity <= _ZERO:
            raise InvalidQuantityError("quantity", quantity)
        result = self._session.execute(
            update(ReceiptLayer)
            .where(
                ReceiptLayer.id == layer_id,
                ReceiptLayer.qty_remaining + quantity <= ReceiptLayer.qty_received,
            )
            .values(qty_remaining=ReceiptLayer.qty_remaining + quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            layer = self.get_layer(layer_id)
            if layer is None:
                raise ConcurrentUpdateConflict("ReceiptLayer", str(layer_id), "layer not found")
            raise LayerCreditOverflowError(
                str(layer_id), quantity, layer.qty_received - layer.qty_remaining
            )
        logger.debug(
            "layer_credited",
            extra={"layer_id": str(layer_id), "quantity": quantity},
        )

    def save_average(self, before: AverageCost, after: AverageCost) -> None:
        """
        Persist ``after`` if the stored revision still equals ``before.revision``.

        A SKU with no stored record has revision 0; its first write inserts.
        """
        values = {
            "on_hand_qty": after.on_hand_qty,
            "on_hand_value": after.on_hand_value,
            "avg_unit_cost": after.avg_unit_cost,
            "revision": before.revision + 1,
            "updated_at": self._clock.now(),
        }
        result = self._session.execute(
            update(AverageCostState)
            .where(
                AverageCostState.sku == before.sku,
                AverageCostState.revision == before.revision,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return

        if before.revision == 0:
            savepoint = self._session.begin_nested()
            try:
                self._session.add(AverageCostState(sku=before.sku, **values))
                self._session.flush()
                savepoint.commit()
                return
            except IntegrityError:
                savepoint.rollback()

        logger.warning(
            "average_cost_conflict",
            extra={"sku": before.sku, "expected_revision": before.revision},
        )
        raise ConcurrentUpdateConflict(
            "AverageCostState",
            before.sku,
            f"revision moved past {before.revision}",
        )
