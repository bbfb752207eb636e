"""ORM models for the approval kernel."""

from approval_kernel.models.history import ApprovalHistoryModel
from approval_kernel.models.instance import ApprovalInstanceModel
from approval_kernel.models.process import ApprovalProcess
from approval_kernel.models.work_item import ApprovalWorkItemModel

__all__ = [
    "ApprovalProcess",
    "ApprovalInstanceModel",
    "ApprovalWorkItemModel",
    "ApprovalHistoryModel",
]
