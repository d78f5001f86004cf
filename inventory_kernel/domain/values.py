"""
Value objects shared across the kernel, engines and services.

Pure, zero I/O.  SKU canonicalization and the inclusive reporting date
range live here so every layer agrees on them.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from uuid import UUID

from inventory_kernel.exceptions import InvalidDateRangeError


def canonical_sku(sku: str) -> str:
    """Canonical SKU form: surrounding whitespace removed, upper case."""
    return sku.strip().upper()


@dataclass(frozen=True, slots=True)
class DateRange:
    """
    Inclusive range of UTC calendar days.

    ``start_at`` is midnight UTC of ``start``; ``end_before`` is midnight UTC
    of the day after ``end``, so a timestamp ``t`` is in range when
    ``start_at <= t < end_before``.
    """

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise InvalidDateRangeError(self.start.isoformat(), self.end.isoformat())

    @classmethod
    def of(cls, start: date | datetime | str, end: date | datetime | str) -> DateRange:
        """Build a range from dates, datetimes or ISO date strings."""
        try:
            bounds = _as_date(start), _as_date(end)
        except (AttributeError, TypeError, ValueError) as exc:
            raise InvalidDateRangeError(str(start), str(end), detail=str(exc)) from exc
        return cls(*bounds)

    @property
    def start_at(self) -> datetime:
        return datetime.combine(self.start, time.min, tzinfo=timezone.utc)

    @property
    def end_before(self) -> datetime:
        return datetime.combine(
            self.end + timedelta(days=1), time.min, tzinfo=timezone.utc
        )

    def contains(self, moment: datetime) -> bool:
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return self.start_at <= moment < self.end_before


def _as_date(value: date | datetime | str) -> date:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value.strip()[:10])


# Actor recorded on rows written by unattended jobs (CLI runs, schedulers).
SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000001")
