"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Provides strictly increasing sequence numbers for approval history
    rows.  Each instance owns its own named counter, so history ordering
    never depends on timestamp resolution or on insertion order of rows
    sharing a timestamp.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by HistoryLog.

Invariants enforced:
    - Monotonicity: the locked counter row is the sole source of truth for
      the next value.  Aggregate-max-plus-one over the history table is
      never used.
    - Transactional: the increment is visible only after the caller's
      transaction commits.  A rollback returns the value.

Failure modes:
    - IntegrityError if two transactions create the same counter name
      concurrently.  History counter names embed a freshly generated
      instance id and later allocations run under the instance lock, so
      this does not occur through ApprovalEngine.
"""

from uuid import UUID

from sqlalchemy import String, select
from sqlalchemy.orm import Mapped, Session, mapped_column

from approval_kernel.db.base import Base
from approval_kernel.logging_config import get_logger
from approval_kernel.services.base import BaseService

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row represents a named sequence with its current value.
    Row-level locking keeps allocation monotonic under concurrency.
    """

    __tablename__ = "sequence_counters"

    # Sequence name (e.g., "approval_history:<instance uuid>")
    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        nullable=False,
        default=0,
    )


def history_sequence_name(instance_id: UUID) -> str:
    """Counter name for one instance's history rows."""
    return f"approval_history:{instance_id}"


class SequenceService(BaseService):
    """
    Service for generating transactional sequence numbers.

    Guarantees:
        - Strictly increasing values per name via a locked counter row
          (``SELECT ... FOR UPDATE`` on PostgreSQL).
        - Gap-free under normal operation.

    Non-goals:
        - Does NOT call ``session.commit()``.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self.session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Get the next value for a named sequence.

        Postconditions:
            - Returns an integer > 0 strictly greater than any value
              previously returned for ``sequence_name``.
            - The counter row is locked until the transaction completes.
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            counter = SequenceCounter(name=sequence_name, current_value=1)
            self.session.add(counter)
            self.session.flush()
            logger.debug(
                "sequence_allocated",
                extra={"sequence_name": sequence_name, "value": 1},
            )
            return 1

        counter.current_value += 1
        self.session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value of a sequence without incrementing, or None."""
        counter = self.session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()

        return counter.current_value if counter else None
