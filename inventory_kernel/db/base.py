"""
Declarative base and column types shared by every inventory model.

Conventions fixed here:
    - Primary keys are uuid4 values stored as String(36), so the same schema
      works on PostgreSQL and SQLite.
    - ``Decimal`` annotations map to Numeric(38, 9).  Quantities, unit costs
      and amounts are never floats.
    - ``datetime`` annotations map to ``UTCDateTime``: written as UTC, read
      back timezone-aware, including on SQLite which stores naive values.

Only the column types and the two base classes live here; nothing in this
module imports models or services.

``TrackedBase`` records who appended a ledger row and when.  The
``updated_*`` columns are bookkeeping and may move even on rows that are
otherwise append-only.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """uuid.UUID in Python, String(36) in the database."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else PyUUID(str(value))


class UTCDateTime(TypeDecorator):
    """
    Timestamp column that always round-trips as an aware UTC datetime.

    Contract:
        Naive values are taken to be UTC.  Aware values are converted to UTC
        before storage.  Backends without timezone support (SQLite) store the
        naive UTC wall time so that lexical comparison matches time order.

    Guarantees:
        - Values read back carry tzinfo=UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Adds creation and modification stamps.

    ``created_at`` comes from the database clock on INSERT; ``created_by_id``
    is mandatory so every row names the actor that wrote it.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), onupdate=func.now(), nullable=False
    )
    created_by_id: Mapped[PyUUID] = mapped_column(UUIDString(), nullable=False)
    updated_by_id: Mapped[PyUUID | None] = mapped_column(UUIDString(), nullable=True)


UUID = PyUUID
