"""
Named monotonic counters backed by locked rows.

Receipt layers take their ``seq`` (the FIFO tie-breaker between layers with
the same ``received_at``) from here, and COGS allocation rows take theirs
(the order reversals walk in).  A counter row is read ``FOR UPDATE`` and
bumped inside the caller's transaction, so concurrent writers queue on it
and a rolled-back savepoint gives the number back.  ``MAX(seq) + 1`` is
never used.

Nothing here commits; transaction boundaries belong to the caller.
"""

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from inventory_kernel.db.base import Base
from inventory_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class SequenceService:
    RECEIPT_LAYER = "receipt_layer"
    COGS_ALLOCATION = "cogs_allocation"

    def __init__(self, session: Session):
        self._session = session

    def next_value(self, sequence_name: str) -> int:
        """Increment ``sequence_name`` and return the new value (first value is 1)."""
        counter = self._locked(sequence_name) or self._create(sequence_name)
        counter.current_value += 1
        self._session.flush()

        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def _create(self, sequence_name: str) -> SequenceCounter:
        # Two writers can both miss the row; the loser's INSERT fails inside
        # its savepoint and it locks the winner's row instead.
        savepoint = self._session.begin_nested()
        try:
            counter = SequenceCounter(name=sequence_name, current_value=0)
            self._session.add(counter)
            self._session.flush()
        except IntegrityError:
            savepoint.rollback()
            logger.debug(
                "sequence_counter_race", extra={"sequence_name": sequence_name}
            )
            counter = self._locked(sequence_name)
            if counter is None:
                raise
            return counter
        savepoint.commit()
        return counter

    def _locked(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
