"""
ORM-Level Immutability Enforcement for approval records.

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events and check the lifecycle
rules of the approval tables:

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |                                                        ^
         v                                                        |
    [before_delete event] --> _check_*_delete() -----------------+
         |
         v
    SQL sent to database (only if checks pass)

If a check fails, ImmutabilityViolationError is raised, the flush aborts and
the database is never modified.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                 | When Immutable                     | Rule
-----------------------|------------------------------------|-----------------------------------
ApprovalInstanceModel  | After status leaves pending        | Terminal instances are frozen
ApprovalInstanceModel  | Always                             | completed_* set iff not pending
ApprovalWorkItemModel  | After status leaves pending        | Resolved items are frozen
ApprovalHistoryModel   | ALWAYS (from creation)             | See models/history.py

Status changes themselves must follow the transition tables in
``approval_kernel.domain.approval``.

===============================================================================
USAGE
===============================================================================

Called automatically by ``init_engine_from_url``:

    from approval_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
    # ... forbidden operation ...
    register_immutability_listeners()
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from approval_kernel.exceptions import (
    ImmutabilityViolationError,
    InvalidTransitionError,
)
from approval_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

# Maintained by the mapper, never by application code.
_MAPPER_MANAGED_FIELDS = frozenset({"concurrency_token"})


def _previous_value(target, key):
    """Value of ``key`` as loaded from the database before this flush."""
    hist = get_history(target, key)
    if hist.deleted:
        return hist.deleted[0]
    if hist.unchanged:
        return hist.unchanged[0]
    return getattr(target, key)


def _block(entity_type, target, field, reason):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": "UPDATE",
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _changed_fields(target):
    insp = inspect(target)
    return [
        attr.key
        for attr in insp.attrs
        if attr.key not in _MAPPER_MANAGED_FIELDS and attr.history.has_changes()
    ]


def _check_transition(entity_type, target, transitions, status_enum):
    hist = get_history(target, "status")
    if not hist.added or not hist.deleted:
        return
    old, new = status_enum(hist.deleted[0]), status_enum(hist.added[0])
    if old == new:
        return
    if new not in transitions[old]:
        logger.error(
            "invalid_transition_blocked",
            extra={
                "entity_type": entity_type,
                "entity_id": str(target.id),
                "from_status": old.value,
                "to_status": new.value,
            },
        )
        raise InvalidTransitionError(entity_type, old.value, new.value)


def _check_instance_immutability(mapper, connection, target):
    """
    Freeze terminal instances and keep completion fields consistent.

    A pending instance may move to a terminal status in the same flush that
    sets completed_by/completed_at.  Once the stored status is terminal,
    no field may change.
    """
    from approval_kernel.domain.approval import INSTANCE_TRANSITIONS, InstanceStatus
    from approval_kernel.models.instance import ApprovalInstanceModel

    if not isinstance(target, ApprovalInstanceModel):
        return

    was_terminal = _previous_value(target, "status") != InstanceStatus.PENDING.value
    if was_terminal:
        changed = _changed_fields(target)
        if changed:
            _block(
                "ApprovalInstance",
                target,
                changed[0],
                f"Cannot modify field '{changed[0]}' on {target.status} approval instance",
            )
        return

    _check_transition("ApprovalInstance", target, INSTANCE_TRANSITIONS, InstanceStatus)

    is_pending = target.status == InstanceStatus.PENDING.value
    has_completion = target.completed_at is not None or target.completed_by is not None
    has_full_completion = target.completed_at is not None and target.completed_by is not None
    if is_pending and has_completion:
        _block(
            "ApprovalInstance",
            target,
            "completed_at",
            "Pending approval instance cannot carry completion fields",
        )
    if not is_pending and not has_full_completion:
        _block(
            "ApprovalInstance",
            target,
            "completed_at",
            "Terminal approval instance must record completed_by and completed_at",
        )


def _check_instance_delete(mapper, connection, target):
    """Approval instances are never deleted; recall them instead."""
    from approval_kernel.models.instance import ApprovalInstanceModel

    if not isinstance(target, ApprovalInstanceModel):
        return

    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "ApprovalInstance",
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="ApprovalInstance",
        entity_id=str(target.id),
        reason="Approval instances cannot be deleted",
    )


def _check_work_item_immutability(mapper, connection, target):
    """Resolved work items are frozen; pending ones follow the transition table."""
    from approval_kernel.domain.approval import WORK_ITEM_TRANSITIONS, WorkItemStatus
    from approval_kernel.models.work_item import ApprovalWorkItemModel

    if not isinstance(target, ApprovalWorkItemModel):
        return

    was_resolved = _previous_value(target, "status") != WorkItemStatus.PENDING.value
    if was_resolved:
        changed = _changed_fields(target)
        if changed:
            _block(
                "ApprovalWorkItem",
                target,
                changed[0],
                f"Cannot modify field '{changed[0]}' on {target.status} work item",
            )
        return

    _check_transition("ApprovalWorkItem", target, WORK_ITEM_TRANSITIONS, WorkItemStatus)


def _check_work_item_delete(mapper, connection, target):
    """Work items are never deleted."""
    from approval_kernel.models.work_item import ApprovalWorkItemModel

    if not isinstance(target, ApprovalWorkItemModel):
        return

    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "ApprovalWorkItem",
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="ApprovalWorkItem",
        entity_id=str(target.id),
        reason="Approval work items cannot be deleted",
    )


def _listeners():
    from approval_kernel.models.instance import ApprovalInstanceModel
    from approval_kernel.models.work_item import ApprovalWorkItemModel

    return (
        (ApprovalInstanceModel, "before_update", _check_instance_immutability),
        (ApprovalInstanceModel, "before_delete", _check_instance_delete),
        (ApprovalWorkItemModel, "before_update", _check_work_item_immutability),
        (ApprovalWorkItemModel, "before_delete", _check_work_item_delete),
    )


def register_immutability_listeners():
    """
    Register the approval immutability listeners.

    Safe to call more than once; a listener already registered is skipped.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove the approval immutability listeners.

    WARNING: Only use this in tests that must write a forbidden change to
    verify detection.  History rows stay protected regardless.
    """
    for target, event_name, listener_fn in _listeners():
        _safe_remove_listener(target, event_name, listener_fn)
