"""
Typed Exception Hierarchy for the Approval Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Approval outcomes such as "this record already has a pending approval" or
"you are not the assigned approver" are expected, frequent results, not
defects.  Callers (an HTTP layer, a batch job, a test) must be able to tell
them apart without parsing message strings.

Every exception therefore has:
  1. A TYPED class (catch by type, not message)
  2. A CODE class attribute (machine-readable, API-safe)
  3. Structured DATA attributes (ids, field names, statuses)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from ApprovalKernelError:

    ApprovalKernelError (base)
    |
    +-- NotFoundError
    |   +-- InstanceNotFoundError
    |   +-- WorkItemNotFoundError
    |   +-- ProcessNotFoundError
    |
    +-- ValidationError
    |   +-- AlreadyPendingError
    |   +-- InvalidProcessError
    |   +-- EntryCriteriaNotMetError
    |   +-- NotPendingError
    |   +-- NotAssignedApproverError
    |   +-- NotSubmitterError
    |   +-- ReassignNotAuthorizedError
    |   +-- InvalidCursorError
    |   +-- InvalidTransitionError
    |
    +-- ConflictError
    |   +-- ConcurrencyConflictError
    |
    +-- ConcurrencyError
    |   +-- LockTimeoutError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                          | When Raised
----------------|-------------------------------|----------------------------------------
Not found       | APPROVAL_INSTANCE_NOT_FOUND   | Instance id absent for tenant
                | WORK_ITEM_NOT_FOUND           | Work item id absent for tenant
                | APPROVAL_PROCESS_NOT_FOUND    | Process id absent for tenant
----------------|-------------------------------|----------------------------------------
Validation      | ALREADY_PENDING               | Record already has a pending approval
                | INVALID_PROCESS               | Process missing, inactive or stepless
                | ENTRY_CRITERIA_NOT_MET        | Record fails the process entry criteria
                | NOT_PENDING                   | Item or instance already resolved
                | NOT_ASSIGNED_APPROVER         | Actor is not the item's approver
                | NOT_SUBMITTER                 | Recall by someone other than submitter
                | REASSIGN_NOT_AUTHORIZED       | Actor may not reassign this item
                | INVALID_CURSOR                | Pagination cursor cannot be decoded
                | INVALID_TRANSITION            | Status change not in transition table
----------------|-------------------------------|----------------------------------------
Conflict        | CONCURRENCY_CONFLICT          | Concurrency token mismatch
----------------|-------------------------------|----------------------------------------
Concurrency     | LOCK_TIMEOUT                  | Instance lock not acquired in time
----------------|-------------------------------|----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION        | Modifying history or a resolved row

===============================================================================
HANDLING PATTERNS
===============================================================================

    try:
        engine.decide(tenant_id, actor_id, item_id, Decision.APPROVE)
    except NotPendingError as e:
        respond(409, code=e.code, details=e.details)
    except ValidationError as e:
        respond(400, code=e.code, details=e.details)
    except NotFoundError as e:
        respond(404, code=e.code)

ConflictError is the only category a client should retry, and only after
re-fetching the record.  Nothing in the kernel retries internally.
"""

from typing import Any


class ApprovalKernelError(Exception):
    """
    Base exception for all approval kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "APPROVAL_KERNEL_ERROR"


# Not-found exceptions


class NotFoundError(ApprovalKernelError):
    """A tenant-scoped record does not exist."""

    code: str = "NOT_FOUND"

    def __init__(self, resource: str, resource_id: str):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} with id {resource_id} not found")


class InstanceNotFoundError(NotFoundError):
    """Approval instance not found."""

    code: str = "APPROVAL_INSTANCE_NOT_FOUND"

    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__("approval_instances", instance_id)


class WorkItemNotFoundError(NotFoundError):
    """Approval work item not found."""

    code: str = "WORK_ITEM_NOT_FOUND"

    def __init__(self, work_item_id: str):
        self.work_item_id = work_item_id
        super().__init__("approval_work_items", work_item_id)


class ProcessNotFoundError(NotFoundError):
    """Approval process definition not found."""

    code: str = "APPROVAL_PROCESS_NOT_FOUND"

    def __init__(self, process_id: str):
        self.process_id = process_id
        super().__init__("approval_processes", process_id)


# Validation exceptions


class ValidationError(ApprovalKernelError):
    """
    Business-rule violation.

    Field-tagged: ``field`` names the offending input and ``details``
    carries ``[{"field": ..., "message": ...}]`` for API responses.
    """

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, message: str):
        self.field = field
        self.details: list[dict[str, Any]] = [{"field": field, "message": message}]
        super().__init__(message)


class AlreadyPendingError(ValidationError):
    """The target record already has a pending approval instance."""

    code: str = "ALREADY_PENDING"

    def __init__(self, target_object_type: str, target_record_id: str):
        self.target_object_type = target_object_type
        self.target_record_id = target_record_id
        super().__init__(
            "targetRecordId",
            f"{target_object_type} {target_record_id} already has a pending "
            "approval request",
        )


class InvalidProcessError(ValidationError):
    """The process definition cannot be used for a submission."""

    code: str = "INVALID_PROCESS"

    def __init__(self, process_id: str, reason: str, field: str = "processDefinitionId"):
        self.process_id = process_id
        self.reason = reason
        super().__init__(field, f"Approval process {process_id}: {reason}")


class EntryCriteriaNotMetError(ValidationError):
    """The target record does not satisfy the process entry criteria."""

    code: str = "ENTRY_CRITERIA_NOT_MET"

    def __init__(self, process_id: str, target_record_id: str):
        self.process_id = process_id
        self.target_record_id = target_record_id
        super().__init__(
            "targetRecordId",
            f"Record {target_record_id} does not meet the entry criteria of "
            f"approval process {process_id}",
        )


class NotPendingError(ValidationError):
    """The work item or instance has already left the pending state."""

    code: str = "NOT_PENDING"

    def __init__(self, entity_type: str, entity_id: str, status: str, field: str = "status"):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.status = status
        super().__init__(
            field,
            f"{entity_type} {entity_id} is no longer pending (status={status})",
        )


class NotAssignedApproverError(ValidationError):
    """The actor is not the approver currently bound to the work item."""

    code: str = "NOT_ASSIGNED_APPROVER"

    def __init__(self, work_item_id: str, actor_id: str):
        self.work_item_id = work_item_id
        self.actor_id = actor_id
        super().__init__(
            "approverId",
            f"Actor {actor_id} is not the assigned approver for work item "
            f"{work_item_id}",
        )


class NotSubmitterError(ValidationError):
    """Only the original submitter may recall an approval instance."""

    code: str = "NOT_SUBMITTER"

    def __init__(self, instance_id: str, actor_id: str):
        self.instance_id = instance_id
        self.actor_id = actor_id
        super().__init__(
            "submittedBy",
            f"Actor {actor_id} did not submit approval instance {instance_id}",
        )


class ReassignNotAuthorizedError(ValidationError):
    """The actor is neither the current approver nor holds a reassign role."""

    code: str = "REASSIGN_NOT_AUTHORIZED"

    def __init__(self, work_item_id: str, actor_id: str):
        self.work_item_id = work_item_id
        self.actor_id = actor_id
        super().__init__(
            "actorId",
            f"Actor {actor_id} is not allowed to reassign work item {work_item_id}",
        )


class InvalidCursorError(ValidationError):
    """Pagination cursor could not be decoded."""

    code: str = "INVALID_CURSOR"

    def __init__(self, cursor: str):
        self.cursor = cursor
        super().__init__("cursor", f"Invalid pagination cursor: {cursor!r}")


class InvalidTransitionError(ValidationError):
    """A status change is not permitted by the lifecycle tables."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, entity_type: str, from_status: str, to_status: str):
        self.entity_type = entity_type
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            "status",
            f"{entity_type} cannot move from {from_status} to {to_status}",
        )


# Conflict exceptions


class ConflictError(ApprovalKernelError):
    """The record was modified by another request; re-fetch and retry."""

    code: str = "CONFLICT"

    def __init__(self, message: str = "Record was modified by another user"):
        super().__init__(message)


class ConcurrencyConflictError(ConflictError):
    """Concurrency token mismatch on an approval instance."""

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        expected_token: int | None = None,
        actual_token: int | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_token = expected_token
        self.actual_token = actual_token
        super().__init__(
            f"Concurrency conflict on {entity_type} {entity_id}: "
            f"expected token {expected_token}, found {actual_token}"
        )


# Concurrency exceptions


class ConcurrencyError(ApprovalKernelError):
    """Base exception for lock acquisition failures."""

    code: str = "CONCURRENCY_ERROR"


class LockTimeoutError(ConcurrencyError):
    """A serialization lock could not be acquired within the timeout."""

    code: str = "LOCK_TIMEOUT"

    def __init__(self, lock_key: str, timeout_seconds: float):
        self.lock_key = lock_key
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Timed out after {timeout_seconds}s waiting for lock {lock_key}"
        )


# Immutability exceptions


class ImmutabilityError(ApprovalKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    History rows are always immutable.  Work items are immutable once
    resolved (except reassignment bookkeeping), and instances once terminal.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
