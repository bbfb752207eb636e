"""
Module: approval_kernel.models.process
Responsibility: ORM persistence for approval process definitions.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - Steps are stored as an ordered JSON list of
      ``{"name", "approvers": [uuid, ...], "criteria"}`` objects.
    - ``version`` increases every time the step list is replaced; instances
      record the version they snapshotted.

Failure modes:
    - ValueError from ``to_definition()`` if a stored approver id is not a UUID.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import TrackedBase, UUIDString
from approval_kernel.domain.approval import (
    ProcessDefinition,
    steps_from_snapshot,
    steps_to_snapshot,
)


class ApprovalProcess(TrackedBase):
    """
    An approval process definition row.

    Contract:
        ``object_name`` is the target object type the process applies to.
        Inactive processes stay readable but cannot accept submissions.
    """

    __tablename__ = "approval_processes"

    __table_args__ = (
        Index("ix_approval_processes_tenant_object", "tenant_id", "object_name"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    object_name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    version: Mapped[int] = mapped_column(nullable=False, default=1)
    entry_criteria: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    steps: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    def __repr__(self) -> str:
        return (
            f"<ApprovalProcess {self.id} {self.name!r} "
            f"object={self.object_name} v{self.version} active={self.is_active}>"
        )

    def to_definition(self) -> ProcessDefinition:
        """Convert ORM row to the frozen domain definition."""
        return ProcessDefinition(
            process_id=self.id,
            tenant_id=self.tenant_id,
            name=self.name,
            target_object_type=self.object_name,
            steps=steps_from_snapshot(self.steps),
            is_active=self.is_active,
            entry_criteria=self.entry_criteria,
            version=self.version,
            description=self.description,
        )

    @classmethod
    def from_definition(cls, definition: ProcessDefinition, actor_id: UUID) -> ApprovalProcess:
        """Create ORM row from a domain definition."""
        return cls(
            id=definition.process_id,
            tenant_id=definition.tenant_id,
            name=definition.name,
            object_name=definition.target_object_type,
            description=definition.description,
            is_active=definition.is_active,
            version=definition.version,
            entry_criteria=definition.entry_criteria,
            steps=steps_to_snapshot(definition.steps),
            created_by_id=actor_id,
        )
