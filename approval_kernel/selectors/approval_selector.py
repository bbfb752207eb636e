"""
Module: approval_kernel.selectors.approval_selector
Responsibility: Read-only access to approval instances, work items and
    history, with display fields joined in and keyset cursor pagination.
Architecture position: Kernel > Selectors.  May import from models/,
    domain/ and selectors/base.py.

Invariants enforced:
    - Tenant scoping: every query filters on tenant_id.
    - Listing order: created_at descending, then id descending.  Cursors
      encode the last row's (created_at, id), so rows sharing a timestamp
      are neither skipped nor repeated across pages.
    - History order: ascending ``seq``, the per-instance allocation order.
    - ``total_size`` counts the filtered rows ignoring the cursor.

Failure modes:
    - ``find_*`` return None on absence; ``get_*`` raise the matching
      NotFoundError subclass.
    - InvalidCursorError for undecodable cursors; ValidationError (field
      ``status``) for an unknown status filter.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from approval_kernel.domain.approval import (
    ApprovalHistoryEntry,
    ApprovalInstance,
    ApprovalWorkItem,
    InstanceStatus,
    Page,
    WorkItemStatus,
)
from approval_kernel.domain.directory import UserDirectory
from approval_kernel.domain.pagination import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    clamp_limit,
    decode_cursor,
    encode_cursor,
)
from approval_kernel.exceptions import (
    InstanceNotFoundError,
    ValidationError,
    WorkItemNotFoundError,
)
from approval_kernel.models.history import ApprovalHistoryModel
from approval_kernel.models.instance import ApprovalInstanceModel
from approval_kernel.models.process import ApprovalProcess
from approval_kernel.models.work_item import ApprovalWorkItemModel
from approval_kernel.selectors.base import BaseSelector


class ApprovalSelector(BaseSelector[ApprovalInstanceModel]):
    """
    Selector for approval reads.

    Contract:
        Returns ``ApprovalInstance``, ``ApprovalWorkItem`` and
        ``ApprovalHistoryEntry`` DTOs.  User display names come from the
        injected ``UserDirectory`` and are ``None`` when unresolved.
    """

    def __init__(
        self,
        session: Session,
        directory: UserDirectory | None = None,
        default_page_size: int = DEFAULT_PAGE_SIZE,
        max_page_size: int = MAX_PAGE_SIZE,
    ):
        super().__init__(session)
        self._directory = directory
        self._default_page_size = default_page_size
        self._max_page_size = max_page_size

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _status_value(enum_cls: type[InstanceStatus] | type[WorkItemStatus], status: Any) -> str:
        try:
            return enum_cls(status).value
        except ValueError:
            allowed = ", ".join(s.value for s in enum_cls)
            raise ValidationError(
                "status", f"Unknown status {status!r}; expected one of {allowed}",
            ) from None

    def _name(self, tenant_id: UUID, user_id: UUID | None) -> str | None:
        if self._directory is None or user_id is None:
            return None
        return self._directory.display_name(tenant_id, user_id)

    def _instance_query(self):
        return select(ApprovalInstanceModel, ApprovalProcess.name).outerjoin(
            ApprovalProcess,
            ApprovalProcess.id == ApprovalInstanceModel.process_definition_id,
        )

    def _instance_dto(self, model: ApprovalInstanceModel, process_name: str | None) -> ApprovalInstance:
        return model.to_dto(
            process_name=process_name,
            submitter_name=self._name(model.tenant_id, model.submitted_by),
        )

    def _work_item_query(self):
        return (
            select(
                ApprovalWorkItemModel,
                ApprovalInstanceModel.target_object_type,
                ApprovalInstanceModel.target_record_id,
                ApprovalProcess.name,
            )
            .join(
                ApprovalInstanceModel,
                ApprovalInstanceModel.id == ApprovalWorkItemModel.instance_id,
            )
            .outerjoin(
                ApprovalProcess,
                ApprovalProcess.id == ApprovalInstanceModel.process_definition_id,
            )
        )

    def _work_item_dto(self, row: Any) -> ApprovalWorkItem:
        item, target_object_type, target_record_id, process_name = row
        return item.to_dto(
            approver_name=self._name(item.tenant_id, item.approver_id),
            target_object_type=target_object_type,
            target_record_id=target_record_id,
            process_name=process_name,
        )

    def _page(self, model, stmt, count_stmt, limit, cursor, to_dto) -> Page:
        size = clamp_limit(limit, self._default_page_size, self._max_page_size)
        total = self.session.execute(count_stmt).scalar_one()

        if cursor:
            position = decode_cursor(cursor)
            stmt = stmt.where(
                or_(
                    model.created_at < position.created_at,
                    and_(
                        model.created_at == position.created_at,
                        model.id < position.id,
                    ),
                )
            )

        rows = self.session.execute(
            stmt.order_by(model.created_at.desc(), model.id.desc()).limit(size + 1)
        ).all()

        has_more = len(rows) > size
        rows = rows[:size]
        next_cursor = None
        if has_more:
            last = rows[-1][0]
            next_cursor = encode_cursor(last.created_at, last.id)

        return Page(
            records=tuple(to_dto(row) for row in rows),
            total_size=total,
            next_cursor=next_cursor,
            has_more=has_more,
        )

    # ------------------------------------------------------------------
    # Instances
    # ------------------------------------------------------------------

    def find_instance_by_id(self, tenant_id: UUID, instance_id: UUID) -> ApprovalInstance | None:
        row = self.session.execute(
            self._instance_query().where(
                ApprovalInstanceModel.tenant_id == tenant_id,
                ApprovalInstanceModel.id == instance_id,
            )
        ).first()
        if row is None:
            return None
        return self._instance_dto(row[0], row[1])

    def get_instance(self, tenant_id: UUID, instance_id: UUID) -> ApprovalInstance:
        instance = self.find_instance_by_id(tenant_id, instance_id)
        if instance is None:
            raise InstanceNotFoundError(str(instance_id))
        return instance

    def list_instances(
        self,
        tenant_id: UUID,
        status: InstanceStatus | None = None,
        target_object_type: str | None = None,
        target_record_id: UUID | None = None,
        submitted_by: UUID | None = None,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> Page[ApprovalInstance]:
        """List instances newest first, optionally filtered."""
        conditions = [ApprovalInstanceModel.tenant_id == tenant_id]
        if status is not None:
            conditions.append(
                ApprovalInstanceModel.status == self._status_value(InstanceStatus, status)
            )
        if target_object_type is not None:
            conditions.append(ApprovalInstanceModel.target_object_type == target_object_type)
        if target_record_id is not None:
            conditions.append(ApprovalInstanceModel.target_record_id == target_record_id)
        if submitted_by is not None:
            conditions.append(ApprovalInstanceModel.submitted_by == submitted_by)

        count_stmt = (
            select(func.count())
            .select_from(ApprovalInstanceModel)
            .where(*conditions)
        )
        return self._page(
            ApprovalInstanceModel,
            self._instance_query().where(*conditions),
            count_stmt,
            limit,
            cursor,
            lambda row: self._instance_dto(row[0], row[1]),
        )

    # ------------------------------------------------------------------
    # Work items
    # ------------------------------------------------------------------

    def find_work_item_by_id(self, tenant_id: UUID, work_item_id: UUID) -> ApprovalWorkItem | None:
        row = self.session.execute(
            self._work_item_query().where(
                ApprovalWorkItemModel.tenant_id == tenant_id,
                ApprovalWorkItemModel.id == work_item_id,
            )
        ).first()
        return self._work_item_dto(row) if row is not None else None

    def get_work_item(self, tenant_id: UUID, work_item_id: UUID) -> ApprovalWorkItem:
        item = self.find_work_item_by_id(tenant_id, work_item_id)
        if item is None:
            raise WorkItemNotFoundError(str(work_item_id))
        return item

    def list_my_work_items(
        self,
        tenant_id: UUID,
        approver_id: UUID,
        status: WorkItemStatus | None = WorkItemStatus.PENDING,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> Page[ApprovalWorkItem]:
        """An approver's work items, newest first.  Pending only by default."""
        conditions = [
            ApprovalWorkItemModel.tenant_id == tenant_id,
            ApprovalWorkItemModel.approver_id == approver_id,
        ]
        if status is not None:
            conditions.append(
                ApprovalWorkItemModel.status == self._status_value(WorkItemStatus, status)
            )

        count_stmt = (
            select(func.count())
            .select_from(ApprovalWorkItemModel)
            .where(*conditions)
        )
        return self._page(
            ApprovalWorkItemModel,
            self._work_item_query().where(*conditions),
            count_stmt,
            limit,
            cursor,
            self._work_item_dto,
        )

    def list_work_items_for_instance(
        self, tenant_id: UUID, instance_id: UUID,
    ) -> list[ApprovalWorkItem]:
        """Every work item of one instance, by step then assignment order."""
        rows = self.session.execute(
            self._work_item_query()
            .where(
                ApprovalWorkItemModel.tenant_id == tenant_id,
                ApprovalWorkItemModel.instance_id == instance_id,
            )
            .order_by(
                ApprovalWorkItemModel.step_number,
                ApprovalWorkItemModel.assigned_at,
                ApprovalWorkItemModel.id,
            )
        ).all()
        return [self._work_item_dto(row) for row in rows]

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def get_history(self, tenant_id: UUID, instance_id: UUID) -> list[ApprovalHistoryEntry]:
        """Chronological history of one instance; empty if none."""
        rows = self.session.execute(
            select(ApprovalHistoryModel)
            .where(
                ApprovalHistoryModel.tenant_id == tenant_id,
                ApprovalHistoryModel.instance_id == instance_id,
            )
            .order_by(ApprovalHistoryModel.seq)
        ).scalars().all()
        return [row.to_dto(actor_name=self._name(row.tenant_id, row.actor_id)) for row in rows]
