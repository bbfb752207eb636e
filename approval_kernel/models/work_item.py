"""
Module: approval_kernel.models.work_item
Responsibility: ORM persistence for approval work items, one approver's task
    within one step of one instance.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - Valid status values: DB check constraint.
    - A work item leaves ``pending`` at most once; once resolved it is
      frozen (ORM guard in db/immutability.py).
    - ``original_approver_id`` records the first approver ever bound to the
      item and is never overwritten by later reassignments.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UUIDString
from approval_kernel.domain.approval import ApprovalWorkItem, WorkItemStatus


class ApprovalWorkItemModel(Base):
    """Persistent approval work item."""

    __tablename__ = "approval_work_items"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'reassigned', 'withdrawn')",
            name="ck_approval_work_items_valid_status",
        ),
        # Step-resolution count
        Index(
            "ix_approval_work_items_step_status",
            "instance_id", "step_number", "status",
        ),
        # "My work items"
        Index(
            "ix_approval_work_items_approver",
            "tenant_id", "approver_id", "status", "created_at",
        ),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    instance_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_instances.id"),
        nullable=False,
    )
    step_number: Mapped[int] = mapped_column(nullable=False)
    approver_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=WorkItemStatus.PENDING.value,
    )
    assigned_at: Mapped[datetime] = mapped_column(nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    original_approver_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    reassigned_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    reassigned_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<ApprovalWorkItem {self.id} instance={self.instance_id} "
            f"step={self.step_number} approver={self.approver_id} status={self.status}>"
        )

    @property
    def is_pending(self) -> bool:
        return self.status == WorkItemStatus.PENDING.value

    def to_dto(self, **display: object) -> ApprovalWorkItem:
        """Convert ORM model to frozen domain DTO.

        ``display`` carries optional joined fields (approver_name,
        target_object_type, target_record_id, process_name).
        """
        return ApprovalWorkItem(
            id=self.id,
            tenant_id=self.tenant_id,
            instance_id=self.instance_id,
            step_number=self.step_number,
            approver_id=self.approver_id,
            status=WorkItemStatus(self.status),
            assigned_at=self.assigned_at,
            created_at=self.created_at,
            completed_at=self.completed_at,
            comment=self.comment,
            original_approver_id=self.original_approver_id,
            reassigned_by=self.reassigned_by,
            reassigned_at=self.reassigned_at,
            **display,
        )
