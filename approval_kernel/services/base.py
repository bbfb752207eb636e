"""
BaseService -- common constructor for kernel write services.

Responsibility:
    Holds the SQLAlchemy ``Session`` and the injected ``Clock`` every write
    service needs.  Services persist with ``session.flush()`` and leave
    commit/rollback to the caller.

Architecture position:
    Kernel > Services.  ``ApprovalEngine`` is the only service that owns a
    transaction boundary (``auto_commit``); the collaborators it builds
    (WorkItemLedger, HistoryLog, SequenceService) extend this class.
"""

from sqlalchemy.orm import Session

from approval_kernel.domain.clock import Clock, SystemClock


class BaseService:
    """
    Base class for flush-only services.

    Contract:
        Uses ``session.flush()`` within the caller's transaction.

    Non-goals:
        - Does NOT call ``session.commit()`` or ``session.rollback()``.
        - Does NOT provide read-side listings; those live in
          ``approval_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()
