"""
HistoryLog -- append-only approval audit trail.

Responsibility:
    Writes one ``approval_history`` row per state change, numbered from the
    instance's own sequence counter.  Rows are written in the same flush
    as the change they describe, so a rolled-back operation leaves no
    history behind.

Architecture position:
    Kernel > Services.  Called only by ApprovalEngine.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from approval_kernel.domain.approval import HistoryAction
from approval_kernel.domain.clock import Clock
from approval_kernel.logging_config import get_logger
from approval_kernel.models.history import ApprovalHistoryModel
from approval_kernel.services.base import BaseService
from approval_kernel.services.sequence_service import (
    SequenceService,
    history_sequence_name,
)

logger = get_logger("services.history_log")


class HistoryLog(BaseService):
    """Flush-only writer for ``approval_history``."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        sequence_service: SequenceService | None = None,
    ):
        super().__init__(session, clock)
        self._sequences = sequence_service or SequenceService(session)

    def append(
        self,
        tenant_id: UUID,
        instance_id: UUID,
        actor_id: UUID,
        action: HistoryAction,
        step_number: int | None = None,
        comment: str | None = None,
    ) -> ApprovalHistoryModel:
        seq = self._sequences.next_value(history_sequence_name(instance_id))
        row = ApprovalHistoryModel(
            tenant_id=tenant_id,
            instance_id=instance_id,
            seq=seq,
            actor_id=actor_id,
            action=action.value,
            step_number=step_number,
            comment=comment,
            created_at=self.clock.now(),
        )
        self.session.add(row)
        self.session.flush()

        logger.debug(
            "history_appended",
            extra={
                "instance_id": str(instance_id),
                "seq": seq,
                "action": action.value,
                "step_number": step_number,
            },
        )
        return row
