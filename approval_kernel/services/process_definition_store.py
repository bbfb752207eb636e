"""
ProcessDefinitionStore -- where approval process definitions come from.

Responsibility:
    Defines the read contract the engine depends on (``get_definition``)
    and a SQL implementation over ``approval_processes`` that also supports
    registering definitions (seeding from YAML) and toggling activation.

Architecture position:
    Kernel > Services.  ApprovalEngine depends on the protocol only; tests
    and hosts may supply an in-memory store.

Invariants enforced:
    - Definitions are tenant scoped: a definition is never returned for a
      tenant other than its own.
    - Replacing a definition bumps ``version``; instances submitted earlier
      keep the step snapshot they captured.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_kernel.domain.approval import ProcessDefinition, steps_to_snapshot
from approval_kernel.exceptions import ProcessNotFoundError
from approval_kernel.logging_config import get_logger
from approval_kernel.models.process import ApprovalProcess

logger = get_logger("services.process_definition_store")


@runtime_checkable
class ProcessDefinitionStore(Protocol):
    """Read contract used by ApprovalEngine."""

    def get_definition(self, tenant_id: UUID, process_id: UUID) -> ProcessDefinition | None:
        ...


class InMemoryProcessDefinitionStore:
    """Dictionary-backed store for hosts without an ``approval_processes`` table."""

    def __init__(self, definitions: list[ProcessDefinition] | None = None):
        self._definitions: dict[tuple[UUID, UUID], ProcessDefinition] = {}
        for definition in definitions or ():
            self.register(definition)

    def register(self, definition: ProcessDefinition) -> ProcessDefinition:
        self._definitions[(definition.tenant_id, definition.process_id)] = definition
        return definition

    def get_definition(self, tenant_id: UUID, process_id: UUID) -> ProcessDefinition | None:
        return self._definitions.get((tenant_id, process_id))


class SqlProcessDefinitionStore:
    """
    Store backed by the ``approval_processes`` table.

    Non-goals:
        - Does NOT commit.  Callers seeding definitions own the transaction.
    """

    def __init__(self, session: Session):
        self._session = session

    def _row(self, tenant_id: UUID, process_id: UUID) -> ApprovalProcess | None:
        return self._session.execute(
            select(ApprovalProcess).where(
                ApprovalProcess.tenant_id == tenant_id,
                ApprovalProcess.id == process_id,
            )
        ).scalar_one_or_none()

    def get_definition(self, tenant_id: UUID, process_id: UUID) -> ProcessDefinition | None:
        """Return the definition, active or not, or ``None``."""
        row = self._row(tenant_id, process_id)
        return row.to_definition() if row else None

    def get_name(self, tenant_id: UUID, process_id: UUID) -> str | None:
        row = self._row(tenant_id, process_id)
        return row.name if row else None

    def register(self, definition: ProcessDefinition, actor_id: UUID) -> ProcessDefinition:
        """
        Insert a definition, or replace the stored one with the same id.

        Replacing bumps ``version`` past the stored value.
        """
        row = self._row(definition.tenant_id, definition.process_id)
        if row is None:
            row = ApprovalProcess.from_definition(definition, actor_id)
            self._session.add(row)
            self._session.flush()
            logger.info(
                "approval_process_registered",
                extra={
                    "process_id": str(row.id),
                    "process_name": row.name,
                    "object_name": row.object_name,
                    "step_count": definition.step_count,
                },
            )
            return row.to_definition()

        row.name = definition.name
        row.object_name = definition.target_object_type
        row.description = definition.description
        row.is_active = definition.is_active
        row.entry_criteria = definition.entry_criteria
        row.steps = steps_to_snapshot(definition.steps)
        row.version = row.version + 1
        row.updated_by_id = actor_id
        self._session.flush()

        logger.info(
            "approval_process_replaced",
            extra={
                "process_id": str(row.id),
                "process_name": row.name,
                "version": row.version,
            },
        )
        return row.to_definition()

    def set_active(
        self,
        tenant_id: UUID,
        process_id: UUID,
        is_active: bool,
        actor_id: UUID,
    ) -> ProcessDefinition:
        """
        Toggle whether a process accepts new submissions.

        Raises:
            ProcessNotFoundError: No such process for the tenant.
        """
        row = self._row(tenant_id, process_id)
        if row is None:
            raise ProcessNotFoundError(str(process_id))

        row.is_active = is_active
        row.updated_by_id = actor_id
        self._session.flush()

        logger.info(
            "approval_process_activation_changed",
            extra={"process_id": str(process_id), "is_active": is_active},
        )
        return row.to_definition()

    def list_definitions(
        self,
        tenant_id: UUID,
        active_only: bool = False,
    ) -> list[ProcessDefinition]:
        stmt = select(ApprovalProcess).where(ApprovalProcess.tenant_id == tenant_id)
        if active_only:
            stmt = stmt.where(ApprovalProcess.is_active.is_(True))
        stmt = stmt.order_by(ApprovalProcess.name, ApprovalProcess.id)
        return [row.to_definition() for row in self._session.execute(stmt).scalars()]

