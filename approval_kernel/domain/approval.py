"""
Approval domain types (``approval_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the approval workflow engine.  Defines the instance
and work item lifecycle state machines, process definition/step data,
read-side DTOs, and the step-selection helper used at submission and at
step advancement.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Instance lifecycle -- ``INSTANCE_TRANSITIONS`` defines the only valid
  status transitions.  Terminal states have no outgoing edges.
* Work item lifecycle -- ``WORK_ITEM_TRANSITIONS``: a work item leaves
  ``pending`` at most once.
* Step numbering -- steps are 1-based; ``ProcessDefinition.step(n)``
  returns ``None`` outside ``1..step_count``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Generic, TypeVar
from uuid import UUID

T = TypeVar("T")


# =========================================================================
# Lifecycles
# =========================================================================


class InstanceStatus(str, Enum):
    """Approval instance lifecycle states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    RECALLED = "recalled"


INSTANCE_TRANSITIONS: dict[InstanceStatus, frozenset[InstanceStatus]] = {
    InstanceStatus.PENDING: frozenset({
        InstanceStatus.APPROVED,
        InstanceStatus.REJECTED,
        InstanceStatus.RECALLED,
    }),
    InstanceStatus.APPROVED: frozenset(),
    InstanceStatus.REJECTED: frozenset(),
    InstanceStatus.RECALLED: frozenset(),
}

TERMINAL_INSTANCE_STATUSES: frozenset[InstanceStatus] = frozenset({
    InstanceStatus.APPROVED,
    InstanceStatus.REJECTED,
    InstanceStatus.RECALLED,
})


class WorkItemStatus(str, Enum):
    """Work item lifecycle states.

    ``REASSIGNED`` marks an item retired by a superseding reassignment;
    ``WITHDRAWN`` marks an item taken out of play by a recall.
    """

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    REASSIGNED = "reassigned"
    WITHDRAWN = "withdrawn"


WORK_ITEM_TRANSITIONS: dict[WorkItemStatus, frozenset[WorkItemStatus]] = {
    WorkItemStatus.PENDING: frozenset({
        WorkItemStatus.APPROVED,
        WorkItemStatus.REJECTED,
        WorkItemStatus.REASSIGNED,
        WorkItemStatus.WITHDRAWN,
    }),
    WorkItemStatus.APPROVED: frozenset(),
    WorkItemStatus.REJECTED: frozenset(),
    WorkItemStatus.REASSIGNED: frozenset(),
    WorkItemStatus.WITHDRAWN: frozenset(),
}


class HistoryAction(str, Enum):
    """Actions recorded in the approval history."""

    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    REASSIGN = "reassign"
    RECALL = "recall"


class Decision(str, Enum):
    """Decisions an approver can make on a work item."""

    APPROVE = "approve"
    REJECT = "reject"

    @property
    def work_item_status(self) -> WorkItemStatus:
        if self is Decision.APPROVE:
            return WorkItemStatus.APPROVED
        return WorkItemStatus.REJECTED

    @property
    def history_action(self) -> HistoryAction:
        if self is Decision.APPROVE:
            return HistoryAction.APPROVE
        return HistoryAction.REJECT


class ReassignmentMode(str, Enum):
    """How ``reassign`` rebinds a pending work item.

    ``IN_PLACE`` updates the approver on the existing item.  ``SUPERSEDE``
    retires the existing item as ``reassigned`` and opens a new pending
    item for the new approver at the same step.
    """

    IN_PLACE = "in_place"
    SUPERSEDE = "supersede"


# =========================================================================
# Process definitions
# =========================================================================


@dataclass(frozen=True)
class ApprovalStep:
    """One ordered stage of a process.

    ``approver_ids`` are concrete user ids; role or queue resolution has
    already happened upstream.  ``criteria`` is opaque to the kernel and is
    handed to the injected ``CriteriaEvaluator``.
    """

    name: str
    approver_ids: tuple[UUID, ...]
    criteria: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "approvers": [str(a) for a in self.approver_ids],
            "criteria": self.criteria,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ApprovalStep:
        return cls(
            name=data.get("name", ""),
            approver_ids=tuple(UUID(str(a)) for a in data.get("approvers") or ()),
            criteria=data.get("criteria"),
        )


@dataclass(frozen=True)
class ProcessDefinition:
    """An approval process for one target object type."""

    process_id: UUID
    tenant_id: UUID
    name: str
    target_object_type: str
    steps: tuple[ApprovalStep, ...]
    is_active: bool = True
    entry_criteria: dict[str, Any] | None = None
    version: int = 1
    description: str | None = None

    @property
    def step_count(self) -> int:
        return len(self.steps)

    def step(self, number: int) -> ApprovalStep | None:
        """Return the 1-based step ``number`` or ``None``."""
        if 1 <= number <= len(self.steps):
            return self.steps[number - 1]
        return None


def steps_to_snapshot(steps: tuple[ApprovalStep, ...]) -> list[dict[str, Any]]:
    """Serialize a step list for JSON storage."""
    return [s.to_dict() for s in steps]


def steps_from_snapshot(snapshot: list[dict[str, Any]] | None) -> tuple[ApprovalStep, ...]:
    """Rebuild a step list from JSON storage."""
    return tuple(ApprovalStep.from_dict(s) for s in snapshot or ())


def next_applicable_step(
    steps: tuple[ApprovalStep, ...],
    after: int,
    is_applicable: Callable[[ApprovalStep], bool],
) -> int | None:
    """Return the first 1-based step number greater than ``after`` that applies.

    Steps whose criteria do not apply to the record are skipped.  Returns
    ``None`` when no later step applies, which means the instance is
    fully approved.
    """
    for number in range(after + 1, len(steps) + 1):
        if is_applicable(steps[number - 1]):
            return number
    return None


def unique_approvers(approver_ids: tuple[UUID, ...]) -> tuple[UUID, ...]:
    """Collapse duplicate approver ids, keeping first-seen order."""
    return tuple(dict.fromkeys(approver_ids))


# =========================================================================
# Read-side DTOs
# =========================================================================


@dataclass(frozen=True)
class ApprovalInstance:
    """Snapshot of one approval attempt for one target record."""

    id: UUID
    tenant_id: UUID
    process_definition_id: UUID
    target_object_type: str
    target_record_id: UUID
    status: InstanceStatus
    current_step: int
    submitted_by: UUID
    submitted_at: datetime
    created_at: datetime
    concurrency_token: int
    definition_version: int
    completed_by: UUID | None = None
    completed_at: datetime | None = None
    process_name: str | None = None
    submitter_name: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.status is InstanceStatus.PENDING


@dataclass(frozen=True)
class ApprovalWorkItem:
    """Snapshot of one approver's task within one step."""

    id: UUID
    tenant_id: UUID
    instance_id: UUID
    step_number: int
    approver_id: UUID
    status: WorkItemStatus
    assigned_at: datetime
    created_at: datetime
    completed_at: datetime | None = None
    comment: str | None = None
    original_approver_id: UUID | None = None
    reassigned_by: UUID | None = None
    reassigned_at: datetime | None = None
    approver_name: str | None = None
    target_object_type: str | None = None
    target_record_id: UUID | None = None
    process_name: str | None = None


@dataclass(frozen=True)
class ApprovalHistoryEntry:
    """One append-only audit row."""

    id: UUID
    tenant_id: UUID
    instance_id: UUID
    seq: int
    actor_id: UUID
    action: HistoryAction
    created_at: datetime
    step_number: int | None = None
    comment: str | None = None
    actor_name: str | None = None


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of a cursor-paginated listing."""

    records: tuple[T, ...]
    total_size: int
    next_cursor: str | None = None
    has_more: bool = False
    extras: dict[str, Any] = field(default_factory=dict)
