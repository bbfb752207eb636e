"""
Pure domain layer.

Value objects, lifecycle tables and collaborator protocols for the approval
kernel.  Nothing here touches the ORM, the database or the system clock
(``SystemClock`` aside).
"""

from approval_kernel.domain.approval import (
    INSTANCE_TRANSITIONS,
    TERMINAL_INSTANCE_STATUSES,
    WORK_ITEM_TRANSITIONS,
    ApprovalHistoryEntry,
    ApprovalInstance,
    ApprovalStep,
    ApprovalWorkItem,
    Decision,
    HistoryAction,
    InstanceStatus,
    Page,
    ProcessDefinition,
    ReassignmentMode,
    WorkItemStatus,
    next_applicable_step,
    unique_approvers,
)
from approval_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from approval_kernel.domain.criteria import (
    AlwaysTrueEvaluator,
    CriteriaEvaluator,
    StaticCriteriaEvaluator,
)
from approval_kernel.domain.directory import InMemoryUserDirectory, UserDirectory
from approval_kernel.domain.pagination import (
    CursorPosition,
    clamp_limit,
    decode_cursor,
    encode_cursor,
)

__all__ = [
    # Lifecycles
    "InstanceStatus",
    "WorkItemStatus",
    "HistoryAction",
    "Decision",
    "ReassignmentMode",
    "INSTANCE_TRANSITIONS",
    "WORK_ITEM_TRANSITIONS",
    "TERMINAL_INSTANCE_STATUSES",
    # Definitions
    "ApprovalStep",
    "ProcessDefinition",
    "next_applicable_step",
    "unique_approvers",
    # DTOs
    "ApprovalInstance",
    "ApprovalWorkItem",
    "ApprovalHistoryEntry",
    "Page",
    # Collaborators
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "CriteriaEvaluator",
    "AlwaysTrueEvaluator",
    "StaticCriteriaEvaluator",
    "UserDirectory",
    "InMemoryUserDirectory",
    # Pagination
    "CursorPosition",
    "encode_cursor",
    "decode_cursor",
    "clamp_limit",
]
