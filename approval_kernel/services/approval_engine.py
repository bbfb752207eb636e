"""
ApprovalEngine -- submit, decide, recall and reassign approval requests.

Responsibility:
    Drives one target record through the ordered steps of an approval
    process.  The engine is the only writer of instance ``status`` and
    ``current_step``; work item and history writes are delegated to
    WorkItemLedger and HistoryLog within the same transaction.

Architecture position:
    Kernel > Services -- the public entry point of the kernel.  Reads are
    delegated to ApprovalSelector.

Pipeline per mutating call:
    1. Bind LogContext (correlation id, tenant, actor, operation).
    2. Resolve the serialization key (per target for submit, per instance
       otherwise; work item calls look up their instance first) and
       acquire it from the InstanceLockRegistry.
    3. Reload the instance with ``SELECT ... FOR UPDATE`` and
       ``populate_existing`` so decisions are made on committed state.
    4. Validate, mutate through the ledger/history collaborators, flush.
    5. Build the result DTO, then commit (``auto_commit=True``) before the
       lock is released.  Any failure rolls back.

Invariants enforced:
    - At most one pending instance per (tenant, target type, record id):
      check-then-insert under the target lock, backed by the partial
      unique index.
    - Step advancement happens exactly once per step: the pending-count
      read and the advance-or-finalize write run under the instance lock
      and the instance row lock.
    - Rejection by any approver is terminal for the instance; sibling
      pending items are left as they are.
    - Every state change appends exactly one history row.

Failure modes:
    - InvalidProcessError / EntryCriteriaNotMetError / AlreadyPendingError
      on submit.
    - WorkItemNotFoundError / InstanceNotFoundError for unknown ids.
    - NotPendingError, NotAssignedApproverError, NotSubmitterError,
      ReassignNotAuthorizedError, ValidationError on rule violations.
    - ConcurrencyConflictError on a stale ``expected_token`` or a
      concurrent update detected by the instance version counter.
    - LockTimeoutError if the serialization lock is not acquired in time.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Hashable, Iterable, TypeVar
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from approval_kernel.domain.approval import (
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
    steps_to_snapshot,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.criteria import AlwaysTrueEvaluator, CriteriaEvaluator
from approval_kernel.domain.directory import UserDirectory
from approval_kernel.domain.pagination import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from approval_kernel.exceptions import (
    AlreadyPendingError,
    ApprovalKernelError,
    ConcurrencyConflictError,
    EntryCriteriaNotMetError,
    InstanceNotFoundError,
    InvalidProcessError,
    NotAssignedApproverError,
    NotPendingError,
    NotSubmitterError,
    ReassignNotAuthorizedError,
    ValidationError,
    WorkItemNotFoundError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.instance import ApprovalInstanceModel
from approval_kernel.models.work_item import ApprovalWorkItemModel
from approval_kernel.selectors.approval_selector import ApprovalSelector
from approval_kernel.services.history_log import HistoryLog
from approval_kernel.services.instance_locks import (
    InstanceLockRegistry,
    default_lock_registry,
    instance_key,
    target_key,
)
from approval_kernel.services.process_definition_store import ProcessDefinitionStore
from approval_kernel.services.work_item_ledger import WorkItemLedger

logger = get_logger("services.approval_engine")

T = TypeVar("T")

DEFAULT_REASSIGN_ROLES: frozenset[str] = frozenset({"administrator", "delegated_manager"})


class ApprovalEngine:
    """
    Multi-step approval workflow engine.

    Contract:
        Every mutating method takes the tenant and the acting user
        explicitly and returns a freshly loaded DTO.

    Guarantees:
        - With ``auto_commit=True`` (default) each call is one committed
          transaction, committed while the serialization lock is held, or
          rolled back on any exception.
        - With ``auto_commit=False`` the caller owns commit/rollback; the
          database row lock then carries serialization until commit.

    Non-goals:
        - Does NOT resolve roles or queues to approvers.
        - Does NOT send notifications.
        - Does NOT retry on conflict.
    """

    def __init__(
        self,
        session: Session,
        definitions: ProcessDefinitionStore,
        clock: Clock | None = None,
        criteria: CriteriaEvaluator | None = None,
        directory: UserDirectory | None = None,
        locks: InstanceLockRegistry | None = None,
        auto_commit: bool = True,
        reassignment_mode: ReassignmentMode = ReassignmentMode.IN_PLACE,
        reassign_roles: Iterable[str] = DEFAULT_REASSIGN_ROLES,
        lock_timeout_seconds: float | None = None,
        default_page_size: int = DEFAULT_PAGE_SIZE,
        max_page_size: int = MAX_PAGE_SIZE,
    ):
        self._session = session
        self._definitions = definitions
        self._clock = clock or SystemClock()
        self._criteria = criteria or AlwaysTrueEvaluator()
        self._locks = locks if locks is not None else default_lock_registry
        self._auto_commit = auto_commit
        self._reassignment_mode = ReassignmentMode(reassignment_mode)
        self._reassign_roles = frozenset(reassign_roles)
        self._lock_timeout = lock_timeout_seconds

        self._ledger = WorkItemLedger(session, self._clock)
        self._history = HistoryLog(session, self._clock)
        self._selector = ApprovalSelector(
            session,
            directory=directory,
            default_page_size=default_page_size,
            max_page_size=max_page_size,
        )

    @classmethod
    def from_settings(
        cls,
        session: Session,
        definitions: ProcessDefinitionStore,
        settings: Any,
        **kwargs: Any,
    ) -> ApprovalEngine:
        """Build an engine from an ``approval_config.EngineSettings``."""
        return cls(
            session,
            definitions,
            reassignment_mode=settings.reassignment_mode,
            reassign_roles=settings.reassign_roles,
            lock_timeout_seconds=settings.lock_timeout_seconds,
            default_page_size=settings.default_page_size,
            max_page_size=settings.max_page_size,
            **kwargs,
        )

    @property
    def selector(self) -> ApprovalSelector:
        return self._selector

    # ------------------------------------------------------------------
    # Transaction / lock / logging envelope
    # ------------------------------------------------------------------

    def _run(
        self,
        operation: str,
        locate: Callable[[], tuple[Hashable, dict[str, str]]],
        body: Callable[[], T],
        context: dict[str, str],
        log_fields: dict[str, Any],
    ) -> T:
        with LogContext.bind(correlation_id=str(uuid4()), operation=operation, **context):
            logger.info(f"{operation}_started", extra=log_fields)
            t0 = time.monotonic()
            try:
                try:
                    lock_key, located = locate()
                except Exception:
                    if self._auto_commit:
                        self._session.rollback()
                    raise
                conflict_id = located.get("instance_id") or context.get("instance_id")
                with LogContext.bind(**located), self._locks.hold(
                    lock_key, timeout=self._lock_timeout,
                ):
                    try:
                        result = body()
                        if self._auto_commit:
                            self._session.commit()
                    except StaleDataError as exc:
                        if self._auto_commit:
                            self._session.rollback()
                        raise ConcurrencyConflictError(
                            "ApprovalInstance", conflict_id or "unknown",
                        ) from exc
                    except Exception:
                        if self._auto_commit:
                            self._session.rollback()
                        raise
            except ApprovalKernelError as exc:
                duration_ms = round((time.monotonic() - t0) * 1000, 2)
                logger.warning(
                    f"{operation}_failed",
                    extra={
                        "duration_ms": duration_ms,
                        "error_code": exc.code,
                        "error_message": str(exc),
                    },
                )
                raise
            except Exception:
                duration_ms = round((time.monotonic() - t0) * 1000, 2)
                logger.error(
                    f"{operation}_failed",
                    extra={"duration_ms": duration_ms},
                    exc_info=True,
                )
                raise

            duration_ms = round((time.monotonic() - t0) * 1000, 2)
            logger.info(f"{operation}_completed", extra={"duration_ms": duration_ms})
            return result

    def _load_instance(self, tenant_id: UUID, instance_id: UUID) -> ApprovalInstanceModel | None:
        return self._session.execute(
            select(ApprovalInstanceModel)
            .where(
                ApprovalInstanceModel.tenant_id == tenant_id,
                ApprovalInstanceModel.id == instance_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _instance_id_of(self, tenant_id: UUID, work_item_id: UUID) -> UUID:
        instance_id = self._session.execute(
            select(ApprovalWorkItemModel.instance_id).where(
                ApprovalWorkItemModel.tenant_id == tenant_id,
                ApprovalWorkItemModel.id == work_item_id,
            )
        ).scalar_one_or_none()
        if instance_id is None:
            raise WorkItemNotFoundError(str(work_item_id))
        return instance_id

    def _locate_work_item(
        self, tenant_id: UUID, work_item_id: UUID,
    ) -> tuple[Hashable, dict[str, str]]:
        instance_id = self._instance_id_of(tenant_id, work_item_id)
        return instance_key(instance_id), {"instance_id": str(instance_id)}

    def _applies(self, target: tuple[UUID, str, UUID]) -> Callable[[ApprovalStep], bool]:
        tenant_id, target_object_type, target_record_id = target

        def applies(step: ApprovalStep) -> bool:
            if not step.criteria:
                return True
            return self._criteria.evaluate(
                tenant_id, target_object_type, target_record_id, step.criteria,
            )

        return applies

    @staticmethod
    def _check_token(instance: ApprovalInstanceModel, expected_token: int | None) -> None:
        if expected_token is not None and expected_token != instance.concurrency_token:
            raise ConcurrencyConflictError(
                "ApprovalInstance",
                str(instance.id),
                expected_token=expected_token,
                actual_token=instance.concurrency_token,
            )

    def _complete(
        self,
        instance: ApprovalInstanceModel,
        status: InstanceStatus,
        actor_id: UUID,
    ) -> None:
        instance.status = status.value
        instance.completed_by = actor_id
        instance.completed_at = self._clock.now()
        self._session.flush()

    # ------------------------------------------------------------------
    # submit
    # ------------------------------------------------------------------

    def submit(
        self,
        tenant_id: UUID,
        submitter_id: UUID,
        target_object_type: str,
        target_record_id: UUID,
        process_definition_id: UUID,
        comment: str | None = None,
    ) -> ApprovalInstance:
        """
        Start an approval for a target record.

        Preconditions:
            - No pending instance exists for the target.
            - The definition exists for the tenant, is active, applies to
              ``target_object_type``, and every step lists an approver.

        Postconditions:
            - One pending instance at the first applicable step, one pending
              work item per distinct approver of that step, and one
              ``submit`` history row.

        Raises:
            AlreadyPendingError, InvalidProcessError, EntryCriteriaNotMetError.
        """
        return self._run(
            "approval_submit",
            lambda: (target_key(tenant_id, target_object_type, target_record_id), {}),
            lambda: self._do_submit(
                tenant_id,
                submitter_id,
                target_object_type,
                target_record_id,
                process_definition_id,
                comment,
            ),
            context={"tenant_id": str(tenant_id), "actor_id": str(submitter_id)},
            log_fields={
                "target_object_type": target_object_type,
                "target_record_id": str(target_record_id),
                "process_definition_id": str(process_definition_id),
            },
        )

    def _validate_definition(
        self,
        definition: ProcessDefinition | None,
        process_definition_id: UUID,
        target_object_type: str,
    ) -> ProcessDefinition:
        pid = str(process_definition_id)
        if definition is None:
            raise InvalidProcessError(pid, "process definition not found")
        if not definition.is_active:
            raise InvalidProcessError(pid, "process definition is inactive")
        if definition.target_object_type != target_object_type:
            raise InvalidProcessError(
                pid,
                f"process applies to {definition.target_object_type}, "
                f"not {target_object_type}",
            )
        if not definition.steps:
            raise InvalidProcessError(pid, "process definition has no steps", field="steps")
        for number, step in enumerate(definition.steps, start=1):
            if not step.approver_ids:
                raise InvalidProcessError(pid, f"step {number} has no approvers", field="steps")
        return definition

    def _do_submit(
        self,
        tenant_id: UUID,
        submitter_id: UUID,
        target_object_type: str,
        target_record_id: UUID,
        process_definition_id: UUID,
        comment: str | None,
    ) -> ApprovalInstance:
        existing = self._session.execute(
            select(ApprovalInstanceModel.id).where(
                ApprovalInstanceModel.tenant_id == tenant_id,
                ApprovalInstanceModel.target_object_type == target_object_type,
                ApprovalInstanceModel.target_record_id == target_record_id,
                ApprovalInstanceModel.status == InstanceStatus.PENDING.value,
            )
        ).first()
        if existing is not None:
            raise AlreadyPendingError(target_object_type, str(target_record_id))

        definition = self._validate_definition(
            self._definitions.get_definition(tenant_id, process_definition_id),
            process_definition_id,
            target_object_type,
        )

        if definition.entry_criteria and not self._criteria.evaluate(
            tenant_id, target_object_type, target_record_id, definition.entry_criteria,
        ):
            raise EntryCriteriaNotMetError(str(process_definition_id), str(target_record_id))

        applies = self._applies((tenant_id, target_object_type, target_record_id))
        start = next_applicable_step(definition.steps, 0, applies)
        if start is None:
            raise InvalidProcessError(
                str(process_definition_id),
                "no step applies to the record",
                field="steps",
            )

        now = self._clock.now()
        instance = ApprovalInstanceModel(
            tenant_id=tenant_id,
            process_definition_id=definition.process_id,
            target_object_type=target_object_type,
            target_record_id=target_record_id,
            status=InstanceStatus.PENDING.value,
            current_step=start,
            submitted_by=submitter_id,
            submitted_at=now,
            definition_version=definition.version,
            step_snapshot=steps_to_snapshot(definition.steps),
            created_at=now,
        )
        self._session.add(instance)
        try:
            self._session.flush()
        except IntegrityError as exc:
            raise AlreadyPendingError(target_object_type, str(target_record_id)) from exc

        self._ledger.create_items(instance, start, definition.steps[start - 1].approver_ids)
        self._history.append(
            tenant_id,
            instance.id,
            submitter_id,
            HistoryAction.SUBMIT,
            step_number=start,
            comment=comment,
        )

        logger.info(
            "approval_submitted",
            extra={
                "instance_id": str(instance.id),
                "process_definition_id": str(definition.process_id),
                "definition_version": definition.version,
                "current_step": start,
            },
        )
        return self._selector.get_instance(tenant_id, instance.id)

    # ------------------------------------------------------------------
    # decide
    # ------------------------------------------------------------------

    def decide(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        work_item_id: UUID,
        decision: Decision,
        comment: str | None = None,
        expected_token: int | None = None,
    ) -> ApprovalWorkItem:
        """
        Record an approver's decision and advance or finalize the instance.

        Rejection is terminal for the instance.  Approval advances to the
        next applicable step once no item of the current step is pending,
        or approves the instance when no later step applies.

        Raises:
            WorkItemNotFoundError, NotPendingError, NotAssignedApproverError,
            ConcurrencyConflictError.
        """
        decision = Decision(decision)
        return self._run(
            "approval_decide",
            lambda: self._locate_work_item(tenant_id, work_item_id),
            lambda: self._do_decide(
                tenant_id, actor_id, work_item_id, decision, comment, expected_token,
            ),
            context={
                "tenant_id": str(tenant_id),
                "actor_id": str(actor_id),
                "work_item_id": str(work_item_id),
            },
            log_fields={"decision": decision.value},
        )

    def _do_decide(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        work_item_id: UUID,
        decision: Decision,
        comment: str | None,
        expected_token: int | None,
    ) -> ApprovalWorkItem:
        instance_id = self._instance_id_of(tenant_id, work_item_id)
        instance = self._load_instance(tenant_id, instance_id)
        item = self._ledger.get(tenant_id, work_item_id)
        if instance is None or item is None:
            raise WorkItemNotFoundError(str(work_item_id))

        if not item.is_pending:
            raise NotPendingError("Work item", str(item.id), item.status)
        if item.approver_id != actor_id:
            raise NotAssignedApproverError(str(item.id), str(actor_id))
        if not instance.is_pending:
            raise NotPendingError(
                "Approval instance", str(instance.id), instance.status, field="instance",
            )
        self._check_token(instance, expected_token)

        self._ledger.record_decision(item, decision, comment)
        self._history.append(
            tenant_id,
            instance.id,
            actor_id,
            decision.history_action,
            step_number=item.step_number,
            comment=comment,
        )

        if decision is Decision.REJECT:
            self._complete(instance, InstanceStatus.REJECTED, actor_id)
            logger.info(
                "approval_completed",
                extra={
                    "status": InstanceStatus.REJECTED.value,
                    "step_number": item.step_number,
                },
            )
        elif self._ledger.count_pending(instance.id, instance.current_step) == 0:
            self._advance(instance, actor_id)

        return self._selector.get_work_item(tenant_id, item.id)

    def _advance(self, instance: ApprovalInstanceModel, actor_id: UUID) -> None:
        """Move a fully resolved instance to its next applicable step, or approve it."""
        steps = instance.snapshot_steps()
        applies = self._applies(
            (instance.tenant_id, instance.target_object_type, instance.target_record_id)
        )
        from_step = instance.current_step
        next_step = next_applicable_step(steps, from_step, applies)

        if next_step is None:
            self._complete(instance, InstanceStatus.APPROVED, actor_id)
            logger.info(
                "approval_completed",
                extra={"status": InstanceStatus.APPROVED.value, "step_number": from_step},
            )
            return

        instance.current_step = next_step
        self._session.flush()
        self._ledger.create_items(instance, next_step, steps[next_step - 1].approver_ids)
        logger.info(
            "approval_step_advanced",
            extra={"from_step": from_step, "to_step": next_step},
        )

    # ------------------------------------------------------------------
    # recall
    # ------------------------------------------------------------------

    def recall(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        instance_id: UUID,
        comment: str | None = None,
        expected_token: int | None = None,
    ) -> ApprovalInstance:
        """
        Withdraw a pending instance.  Only the submitter may recall.

        Raises:
            InstanceNotFoundError, NotPendingError, NotSubmitterError,
            ConcurrencyConflictError.
        """
        return self._run(
            "approval_recall",
            lambda: (instance_key(instance_id), {}),
            lambda: self._do_recall(tenant_id, actor_id, instance_id, comment, expected_token),
            context={
                "tenant_id": str(tenant_id),
                "actor_id": str(actor_id),
                "instance_id": str(instance_id),
            },
            log_fields={},
        )

    def _do_recall(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        instance_id: UUID,
        comment: str | None,
        expected_token: int | None,
    ) -> ApprovalInstance:
        instance = self._load_instance(tenant_id, instance_id)
        if instance is None:
            raise InstanceNotFoundError(str(instance_id))
        if not instance.is_pending:
            raise NotPendingError("Approval instance", str(instance.id), instance.status)
        if instance.submitted_by != actor_id:
            raise NotSubmitterError(str(instance.id), str(actor_id))
        self._check_token(instance, expected_token)

        withdrawn = self._ledger.withdraw_pending(instance.id)
        self._complete(instance, InstanceStatus.RECALLED, actor_id)
        self._history.append(
            tenant_id,
            instance.id,
            actor_id,
            HistoryAction.RECALL,
            step_number=instance.current_step,
            comment=comment,
        )

        logger.info(
            "approval_recalled",
            extra={"step_number": instance.current_step, "withdrawn_count": withdrawn},
        )
        return self._selector.get_instance(tenant_id, instance.id)

    # ------------------------------------------------------------------
    # reassign
    # ------------------------------------------------------------------

    def reassign(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        work_item_id: UUID,
        new_approver_id: UUID,
        comment: str | None = None,
        actor_roles: Iterable[str] = frozenset(),
    ) -> ApprovalWorkItem:
        """
        Hand a pending work item to a different approver.

        The actor must be the item's current approver or hold one of the
        configured reassignment roles.  ``actor_roles`` are resolved by the
        caller.  Returns the rebound item (``in_place``) or the replacement
        item (``supersede``).

        Raises:
            WorkItemNotFoundError, NotPendingError, ReassignNotAuthorizedError,
            ValidationError.
        """
        roles = frozenset(actor_roles)
        return self._run(
            "approval_reassign",
            lambda: self._locate_work_item(tenant_id, work_item_id),
            lambda: self._do_reassign(
                tenant_id, actor_id, work_item_id, new_approver_id, comment, roles,
            ),
            context={
                "tenant_id": str(tenant_id),
                "actor_id": str(actor_id),
                "work_item_id": str(work_item_id),
            },
            log_fields={
                "new_approver_id": str(new_approver_id),
                "mode": self._reassignment_mode.value,
            },
        )

    def _do_reassign(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        work_item_id: UUID,
        new_approver_id: UUID,
        comment: str | None,
        actor_roles: frozenset[str],
    ) -> ApprovalWorkItem:
        instance_id = self._instance_id_of(tenant_id, work_item_id)
        instance = self._load_instance(tenant_id, instance_id)
        item = self._ledger.get(tenant_id, work_item_id)
        if instance is None or item is None:
            raise WorkItemNotFoundError(str(work_item_id))

        if not item.is_pending:
            raise NotPendingError("Work item", str(item.id), item.status)
        if item.approver_id != actor_id and not (actor_roles & self._reassign_roles):
            raise ReassignNotAuthorizedError(str(item.id), str(actor_id))
        if not instance.is_pending:
            raise NotPendingError(
                "Approval instance", str(instance.id), instance.status, field="instance",
            )
        if new_approver_id == item.approver_id:
            raise ValidationError(
                "newApproverId",
                f"Work item {item.id} is already assigned to {new_approver_id}",
            )

        if self._reassignment_mode is ReassignmentMode.SUPERSEDE:
            result = self._ledger.supersede(item, new_approver_id, actor_id, comment)
        else:
            result = self._ledger.reassign_in_place(item, new_approver_id, actor_id, comment)

        self._history.append(
            tenant_id,
            instance.id,
            actor_id,
            HistoryAction.REASSIGN,
            step_number=item.step_number,
            comment=comment,
        )
        return self._selector.get_work_item(tenant_id, result.id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find_instance_by_id(self, tenant_id: UUID, instance_id: UUID) -> ApprovalInstance | None:
        return self._selector.find_instance_by_id(tenant_id, instance_id)

    def get_instance(self, tenant_id: UUID, instance_id: UUID) -> ApprovalInstance:
        return self._selector.get_instance(tenant_id, instance_id)

    def list_instances(self, tenant_id: UUID, **filters: Any) -> Page[ApprovalInstance]:
        return self._selector.list_instances(tenant_id, **filters)

    def find_work_item_by_id(self, tenant_id: UUID, work_item_id: UUID) -> ApprovalWorkItem | None:
        return self._selector.find_work_item_by_id(tenant_id, work_item_id)

    def get_work_item(self, tenant_id: UUID, work_item_id: UUID) -> ApprovalWorkItem:
        return self._selector.get_work_item(tenant_id, work_item_id)

    def list_my_work_items(
        self,
        tenant_id: UUID,
        approver_id: UUID,
        status: WorkItemStatus | None = WorkItemStatus.PENDING,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> Page[ApprovalWorkItem]:
        return self._selector.list_my_work_items(
            tenant_id, approver_id, status=status, limit=limit, cursor=cursor,
        )

    def list_work_items_for_instance(
        self, tenant_id: UUID, instance_id: UUID,
    ) -> list[ApprovalWorkItem]:
        return self._selector.list_work_items_for_instance(tenant_id, instance_id)

    def get_history(self, tenant_id: UUID, instance_id: UUID) -> list[ApprovalHistoryEntry]:
        return self._selector.get_history(tenant_id, instance_id)
