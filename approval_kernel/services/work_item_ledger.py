"""
WorkItemLedger -- work item persistence for the approval engine.

Responsibility:
    Creates one pending work item per approver when a step activates,
    records decisions, counts unresolved items for step resolution,
    withdraws open items on recall and rebinds items on reassignment.

Architecture position:
    Kernel > Services.  Called only by ApprovalEngine, which holds the
    instance serialization lock around every call that mutates items.

Invariants enforced:
    - A work item leaves ``pending`` at most once (checked here and
      re-checked by the ORM guard in db/immutability.py).
    - ``original_approver_id`` keeps the first approver bound to an item;
      later reassignments never overwrite it.
    - Duplicate approver ids in one step produce a single item.

Failure modes:
    - NotPendingError when a resolved item is decided or reassigned.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select

from approval_kernel.domain.approval import (
    Decision,
    WorkItemStatus,
    unique_approvers,
)
from approval_kernel.exceptions import NotPendingError
from approval_kernel.logging_config import get_logger
from approval_kernel.models.instance import ApprovalInstanceModel
from approval_kernel.models.work_item import ApprovalWorkItemModel
from approval_kernel.services.base import BaseService

logger = get_logger("services.work_item_ledger")

_PENDING = WorkItemStatus.PENDING.value


class WorkItemLedger(BaseService):
    """Flush-only writer for ``approval_work_items``."""

    def create_items(
        self,
        instance: ApprovalInstanceModel,
        step_number: int,
        approver_ids: tuple[UUID, ...],
    ) -> list[ApprovalWorkItemModel]:
        """Fan out one pending item per distinct approver of a step."""
        now = self.clock.now()
        items = [
            ApprovalWorkItemModel(
                tenant_id=instance.tenant_id,
                instance_id=instance.id,
                step_number=step_number,
                approver_id=approver_id,
                status=_PENDING,
                assigned_at=now,
                created_at=now,
            )
            for approver_id in unique_approvers(approver_ids)
        ]
        self.session.add_all(items)
        self.session.flush()

        logger.info(
            "work_items_created",
            extra={
                "instance_id": str(instance.id),
                "step_number": step_number,
                "item_count": len(items),
            },
        )
        return items

    def get(self, tenant_id: UUID, work_item_id: UUID) -> ApprovalWorkItemModel | None:
        """Load a work item for update, refreshing any cached state."""
        return self.session.execute(
            select(ApprovalWorkItemModel)
            .where(
                ApprovalWorkItemModel.tenant_id == tenant_id,
                ApprovalWorkItemModel.id == work_item_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _require_pending(self, item: ApprovalWorkItemModel) -> None:
        if not item.is_pending:
            raise NotPendingError("Work item", str(item.id), item.status)

    def record_decision(
        self,
        item: ApprovalWorkItemModel,
        decision: Decision,
        comment: str | None = None,
    ) -> ApprovalWorkItemModel:
        """Resolve a pending item as approved or rejected."""
        self._require_pending(item)
        item.status = decision.work_item_status.value
        item.completed_at = self.clock.now()
        item.comment = comment
        self.session.flush()

        logger.info(
            "work_item_decided",
            extra={
                "work_item_id": str(item.id),
                "decision": decision.value,
                "step_number": item.step_number,
            },
        )
        return item

    def count_pending(self, instance_id: UUID, step_number: int) -> int:
        """Number of unresolved items at one step of one instance."""
        return self.session.execute(
            select(func.count())
            .select_from(ApprovalWorkItemModel)
            .where(
                ApprovalWorkItemModel.instance_id == instance_id,
                ApprovalWorkItemModel.step_number == step_number,
                ApprovalWorkItemModel.status == _PENDING,
            )
        ).scalar_one()

    def withdraw_pending(self, instance_id: UUID) -> int:
        """Move every pending item of an instance to ``withdrawn``."""
        items = self.session.execute(
            select(ApprovalWorkItemModel)
            .where(
                ApprovalWorkItemModel.instance_id == instance_id,
                ApprovalWorkItemModel.status == _PENDING,
            )
            .execution_options(populate_existing=True)
        ).scalars().all()

        now = self.clock.now()
        for item in items:
            item.status = WorkItemStatus.WITHDRAWN.value
            item.completed_at = now
        self.session.flush()

        logger.info(
            "work_items_withdrawn",
            extra={"instance_id": str(instance_id), "item_count": len(items)},
        )
        return len(items)

    def reassign_in_place(
        self,
        item: ApprovalWorkItemModel,
        new_approver_id: UUID,
        actor_id: UUID,
        comment: str | None = None,
    ) -> ApprovalWorkItemModel:
        """Rebind a pending item to a new approver, keeping it pending."""
        self._require_pending(item)
        previous = item.approver_id
        if item.original_approver_id is None:
            item.original_approver_id = previous
        item.approver_id = new_approver_id
        item.reassigned_by = actor_id
        item.reassigned_at = self.clock.now()
        item.comment = comment
        self.session.flush()

        logger.info(
            "work_item_reassigned",
            extra={
                "work_item_id": str(item.id),
                "mode": "in_place",
                "from_approver_id": str(previous),
                "to_approver_id": str(new_approver_id),
            },
        )
        return item

    def supersede(
        self,
        item: ApprovalWorkItemModel,
        new_approver_id: UUID,
        actor_id: UUID,
        comment: str | None = None,
    ) -> ApprovalWorkItemModel:
        """
        Retire a pending item as ``reassigned`` and open a replacement.

        The replacement is pending at the same step, bound to
        ``new_approver_id``, and inherits the retired item's original
        approver.
        """
        self._require_pending(item)
        now = self.clock.now()
        original = item.original_approver_id or item.approver_id

        item.status = WorkItemStatus.REASSIGNED.value
        item.completed_at = now
        item.reassigned_by = actor_id
        item.reassigned_at = now
        item.comment = comment

        replacement = ApprovalWorkItemModel(
            tenant_id=item.tenant_id,
            instance_id=item.instance_id,
            step_number=item.step_number,
            approver_id=new_approver_id,
            status=_PENDING,
            assigned_at=now,
            created_at=now,
            original_approver_id=original,
            reassigned_by=actor_id,
            reassigned_at=now,
        )
        self.session.add(replacement)
        self.session.flush()

        logger.info(
            "work_item_reassigned",
            extra={
                "work_item_id": str(item.id),
                "replacement_id": str(replacement.id),
                "mode": "supersede",
                "from_approver_id": str(item.approver_id),
                "to_approver_id": str(new_approver_id),
            },
        )
        return replacement

