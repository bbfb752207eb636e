"""
Module: approval_kernel.models.history
Responsibility: ORM persistence for the approval audit trail.

Architecture position: Kernel > Models.  May import from db/base.py,
    domain/ and exceptions only.

Invariants enforced:
    - Append-only: no UPDATE, no DELETE (listeners below).
    - ``seq`` is unique per instance and allocated from a locked counter
      row, so history order never depends on timestamp resolution.

Audit relevance:
    Every state change of an instance or work item produces exactly one
    row here, in the same transaction as the change itself.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UUIDString
from approval_kernel.domain.approval import ApprovalHistoryEntry, HistoryAction
from approval_kernel.exceptions import ImmutabilityViolationError
from approval_kernel.logging_config import get_logger

logger = get_logger("models.history")


class ApprovalHistoryModel(Base):
    """Persistent approval history row.  Append-only."""

    __tablename__ = "approval_history"

    __table_args__ = (
        CheckConstraint(
            "action IN ('submit', 'approve', 'reject', 'reassign', 'recall')",
            name="ck_approval_history_valid_action",
        ),
        UniqueConstraint("instance_id", "seq", name="uq_approval_history_instance_seq"),
        Index("ix_approval_history_instance", "tenant_id", "instance_id", "seq"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    instance_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_instances.id"),
        nullable=False,
    )
    seq: Mapped[int] = mapped_column(nullable=False)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    step_number: Mapped[int | None] = mapped_column(nullable=True)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<ApprovalHistory {self.instance_id}#{self.seq} "
            f"{self.action} by {self.actor_id}>"
        )

    def to_dto(self, actor_name: str | None = None) -> ApprovalHistoryEntry:
        """Convert ORM model to frozen domain DTO."""
        return ApprovalHistoryEntry(
            id=self.id,
            tenant_id=self.tenant_id,
            instance_id=self.instance_id,
            seq=self.seq,
            actor_id=self.actor_id,
            action=HistoryAction(self.action),
            created_at=self.created_at,
            step_number=self.step_number,
            comment=self.comment,
            actor_name=actor_name,
        )


@event.listens_for(ApprovalHistoryModel, "before_update")
def prevent_history_update(mapper, connection, target):
    """Prevent updates to approval history rows."""
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "ApprovalHistory",
            "entity_id": str(target.id),
            "operation": "UPDATE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="ApprovalHistory",
        entity_id=str(target.id),
        reason="Approval history is append-only -- cannot modify",
    )


@event.listens_for(ApprovalHistoryModel, "before_delete")
def prevent_history_delete(mapper, connection, target):
    """Prevent deletion of approval history rows."""
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "ApprovalHistory",
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="ApprovalHistory",
        entity_id=str(target.id),
        reason="Approval history is append-only -- cannot delete",
    )
