"""Read-only selectors for approval data."""

from approval_kernel.selectors.approval_selector import ApprovalSelector
from approval_kernel.selectors.base import BaseSelector

__all__ = [
    "BaseSelector",
    "ApprovalSelector",
]
