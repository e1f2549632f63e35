"""
SequenceService -- monotonic sequence numbers from counter rows.

Responsibility:
    Hand out strictly increasing integers per sequence name.  Audit
    entries and integration events carry one so that records written in
    the same instant still have a total order.

Architecture position:
    Kernel > Services.  May import from models/, db/.

Invariants enforced:
    - The counter row is the only source of the next value; nothing is
      derived from ``MAX(seq) + 1``.
    - The increment is an ``UPDATE ... SET current_value = current_value + 1``
      so concurrent callers serialize on the row lock (PostgreSQL) or the
      database write lock (SQLite).
    - The increment commits or rolls back with the caller's transaction.

Failure modes:
    - Two callers creating the same counter concurrently: the insert is
      ``ON CONFLICT DO NOTHING`` and both fall through to the increment.
"""

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from procurement_kernel.logging_config import get_logger
from procurement_kernel.models.sequence import SequenceCounterModel

logger = get_logger("services.sequence")


class SequenceService:
    """Transactional sequence allocation.

    Does NOT commit; the caller's session owns the transaction.
    """

    AUDIT_ENTRY = "audit_entry"
    INTEGRATION_EVENT = "integration_event"

    def __init__(self, session: Session):
        self._session = session

    def next_value(self, sequence_name: str) -> int:
        """Increment ``sequence_name`` and return the new value (>= 1)."""
        if not self._increment(sequence_name):
            self._create_counter(sequence_name)
            if not self._increment(sequence_name):
                raise RuntimeError(f"sequence counter {sequence_name!r} is missing")

        value = self._session.execute(
            select(SequenceCounterModel.current_value)
            .where(SequenceCounterModel.name == sequence_name)
        ).scalar_one()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": value},
        )
        return value

    def current_value(self, sequence_name: str) -> int | None:
        return self._session.execute(
            select(SequenceCounterModel.current_value)
            .where(SequenceCounterModel.name == sequence_name)
        ).scalar_one_or_none()

    def _increment(self, sequence_name: str) -> bool:
        result = self._session.execute(
            update(SequenceCounterModel)
            .where(SequenceCounterModel.name == sequence_name)
            .values(current_value=SequenceCounterModel.current_value + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _create_counter(self, sequence_name: str) -> None:
        dialect = self._session.get_bind().dialect.name
        insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
        self._session.execute(
            insert(SequenceCounterModel)
            .values(name=sequence_name, current_value=0)
            .on_conflict_do_nothing(index_elements=["name"])
        )
        logger.debug("sequence_counter_created", extra={"sequence_name": sequence_name})
