"""
Module: approval_kernel.models.instance
Responsibility: ORM persistence for approval instances, one approval attempt
    of one target record under one process definition.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - At most one pending instance per (tenant, target type, record id):
      partial unique index ``ix_approval_instances_pending_target``
      (PostgreSQL ``postgresql_where``, SQLite ``sqlite_where``).
    - Valid status values: DB check constraint.
    - Optimistic concurrency: ``concurrency_token`` is the mapper's
      ``version_id_col`` and is bumped on every UPDATE.
    - Completion fields and terminal immutability are re-checked by the ORM
      guards in db/immutability.py.

Failure modes:
    - IntegrityError on a second pending instance for the same target.
    - StaleDataError when the row changed under a stale concurrency token.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, CheckConstraint, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UUIDString
from approval_kernel.domain.approval import (
    ApprovalInstance,
    ApprovalStep,
    InstanceStatus,
    steps_from_snapshot,
)

_PENDING_ONLY = text("status = 'pending'")


class ApprovalInstanceModel(Base):
    """
    Persistent approval instance.

    Contract:
        ``ApprovalEngine`` is the only writer of ``status`` and
        ``current_step``.  ``step_snapshot`` is the step list captured at
        submission; advancement reads it instead of the live definition.
    """

    __tablename__ = "approval_instances"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'recalled')",
            name="ck_approval_instances_valid_status",
        ),
        CheckConstraint(
            "current_step >= 1",
            name="ck_approval_instances_step_positive",
        ),
        Index(
            "ix_approval_instances_pending_target",
            "tenant_id", "target_object_type", "target_record_id",
            unique=True,
            postgresql_where=_PENDING_ONLY,
            sqlite_where=_PENDING_ONLY,
        ),
        Index(
            "ix_approval_instances_tenant_created",
            "tenant_id", "created_at", "id",
        ),
        Index(
            "ix_approval_instances_target",
            "tenant_id", "target_object_type", "target_record_id", "status",
        ),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    process_definition_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    target_object_type: Mapped[str] = mapped_column(String(100), nullable=False)
    target_record_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InstanceStatus.PENDING.value,
    )
    current_step: Mapped[int] = mapped_column(nullable=False, default=1)
    submitted_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(nullable=False)
    completed_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    concurrency_token: Mapped[int] = mapped_column(nullable=False)
    definition_version: Mapped[int] = mapped_column(nullable=False, default=1)
    step_snapshot: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    __mapper_args__ = {"version_id_col": concurrency_token}

    def __repr__(self) -> str:
        return (
            f"<ApprovalInstance {self.id} {self.target_object_type}/"
            f"{self.target_record_id} status={self.status} step={self.current_step}>"
        )

    @property
    def instance_status(self) -> InstanceStatus:
        return InstanceStatus(self.status)

    @property
    def is_pending(self) -> bool:
        return self.status == InstanceStatus.PENDING.value

    def snapshot_steps(self) -> tuple[ApprovalStep, ...]:
        return steps_from_snapshot(self.step_snapshot)

    def to_dto(
        self,
        process_name: str | None = None,
        submitter_name: str | None = None,
    ) -> ApprovalInstance:
        """Convert ORM model to frozen domain DTO."""
        return ApprovalInstance(
            id=self.id,
            tenant_id=self.tenant_id,
            process_definition_id=self.process_definition_id,
            target_object_type=self.target_object_type,
            target_record_id=self.target_record_id,
            status=InstanceStatus(self.status),
            current_step=self.current_step,
            submitted_by=self.submitted_by,
            submitted_at=self.submitted_at,
            created_at=self.created_at,
            concurrency_token=self.concurrency_token,
            definition_version=self.definition_version,
            completed_by=self.completed_by,
            completed_at=self.completed_at,
            process_name=process_name,
            submitter_name=submitter_name,
        )
