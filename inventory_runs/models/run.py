"""
ORM models for the COGS run log.

Contract:
    COGSRunModel stores one row per ``apply_cogs`` call with its range,
    method, final state and counters.  COGSRunItemModel stores one row per
    order line the run looked at.  Both convert to frozen DTOs via
    ``to_dto()``.

Architecture: inventory_runs/models.  Imports from inventory_kernel.db only.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import JSON, Boolean, Date, ForeignKey, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import TrackedBase, UTCDateTime, UUIDString
from inventory_runs.domain.types import LineStatus, RunItem, RunState, RunSummary


class COGSRunModel(TrackedBase):
    """Persistent run header."""

    __tablename__ = "inventory_cogs_runs"

    __table_args__ = (
        Index("ix_cogs_runs_started_at", "started_at"),
        Index("ix_cogs_runs_state", "state"),
    )

    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    method: Mapped[str] = mapped_column(String(10), nullable=False)
    state: Mapped[str] = mapped_column(String(30), nullable=False)
    policy_checksum: Mapped[str | None] = mapped_column(String(64), nullable=True)
    total: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    eligible: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    successful: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    already_allocated: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    skipped: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    partial: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cancelled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    failure_reason: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def to_dto(self) -> RunSummary:
        return RunSummary(
            run_id=self.id,
            start_date=self.start_date,
            end_date=self.end_date,
            method=self.method,
            state=RunState(self.state),
            total=self.total,
            eligible=self.eligible,
            successful=self.successful,
            already_allocated=self.already_allocated,
            skipped=self.skipped,
            failed=self.failed,
            partial=self.partial,
            cancelled=self.cancelled,
            failure_reason=self.failure_reason,
            started_at=self.started_at,
            completed_at=self.completed_at,
        )


class COGSRunItemModel(TrackedBase):
    """Per-line outcome within a run."""

    __tablename__ = "inventory_cogs_run_items"

    __table_args__ = (
        Index("ix_cogs_run_items_run", "run_id", "position"),
        Index("ix_cogs_run_items_order", "order_id", "sku"),
    )

    run_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("inventory_cogs_runs.id"), nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    order_id: Mapped[str] = mapped_column(String(100), nullable=False)
    sku: Mapped[str] = mapped_column(String(100), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    allocated_skus: Mapped[list | None] = mapped_column(JSON, nullable=True)
    missing_skus: Mapped[list | None] = mapped_column(JSON, nullable=True)

    def to_dto(self) -> RunItem:
        return RunItem(
            order_id=self.order_id,
            sku=self.sku,
            quantity=self.quantity,
            status=LineStatus(self.status),
            reason=self.reason,
            allocated_skus=tuple(self.allocated_skus or ()),
            missing_skus=tuple(self.missing_skus or ()),
        )

    @classmethod
    def from_dto(
        cls, run_id: UUID, position: int, item: RunItem, created_by_id: UUID,
    ) -> COGSRunItemModel:
        return cls(
            run_id=run_id,
            position=position,
            order_id=item.order_id,
            sku=item.sku,
            quantity=item.quantity,
            status=item.status.value,
            reason=item.reason,
            allocated_skus=list(item.allocated_skus),
            missing_skus=list(item.missing_skus),
            created_by_id=created_by_id,
        )
