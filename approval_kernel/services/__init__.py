"""Kernel services - the approval engine and its write-side collaborators."""

from approval_kernel.services.approval_engine import DEFAULT_REASSIGN_ROLES, ApprovalEngine
from approval_kernel.services.history_log import HistoryLog
from approval_kernel.services.instance_locks import (
    InstanceLockRegistry,
    default_lock_registry,
)
from approval_kernel.services.process_definition_store import (
    InMemoryProcessDefinitionStore,
    ProcessDefinitionStore,
    SqlProcessDefinitionStore,
)
from approval_kernel.services.sequence_service import SequenceCounter, SequenceService
from approval_kernel.services.work_item_ledger import WorkItemLedger

__all__ = [
    "ApprovalEngine",
    "DEFAULT_REASSIGN_ROLES",
    "WorkItemLedger",
    "HistoryLog",
    "SequenceService",
    "SequenceCounter",
    "InstanceLockRegistry",
    "default_lock_registry",
    "ProcessDefinitionStore",
    "SqlProcessDefinitionStore",
    "InMemoryProcessDefinitionStore",
]
