"""Tests for the process definition stores."""

from uuid import uuid4

import pytest

from approval_kernel.domain.approval import ApprovalStep
from approval_kernel.exceptions import ProcessNotFoundError
from approval_kernel.services.process_definition_store import (
    InMemoryProcessDefinitionStore,
    ProcessDefinitionStore,
    SqlProcessDefinitionStore,
)

from tests.conftest import make_definition


@pytest.fixture
def store(session):
    return SqlProcessDefinitionStore(session)


class TestSqlProcessDefinitionStore:

    def test_satisfies_protocol(self, store):
        assert isinstance(store, ProcessDefinitionStore)

    def test_register_and_get(self, store, tenant_id, admin_id, approvers):
        definition = make_definition(
            tenant_id,
            [
                ApprovalStep(name="Manager", approver_ids=(approvers[0],)),
                ApprovalStep(name="Finance", approver_ids=(approvers[1], approvers[2]), criteria={"key": "x"}),
            ],
            entry_criteria={"key": "eligible"},
        )

        registered = store.register(definition, admin_id)
        loaded = store.get_definition(tenant_id, definition.process_id)

        assert registered == definition
        assert loaded == definition
        assert store.get_name(tenant_id, definition.process_id) == "Discount Approval"

    def test_definitions_are_tenant_scoped(self, store, tenant_id, admin_id, approvers):
        definition = make_definition(tenant_id, [[approvers[0]]])
        store.register(definition, admin_id)

        assert store.get_definition(uuid4(), definition.process_id) is None
        assert store.get_name(uuid4(), definition.process_id) is None

    def test_replace_bumps_version(self, store, tenant_id, admin_id, approvers):
        original = make_definition(tenant_id, [[approvers[0]]])
        store.register(original, admin_id)

        edited = make_definition(
            tenant_id, [[approvers[1]], [approvers[2]]],
            name="Discount Approval v2", process_id=original.process_id,
        )
        replaced = store.register(edited, admin_id)

        assert replaced.version == 2
        assert replaced.step_count == 2
        assert replaced.name == "Discount Approval v2"

    def test_set_active(self, store, tenant_id, admin_id, approvers):
        definition = make_definition(tenant_id, [[approvers[0]]])
        store.register(definition, admin_id)

        deactivated = store.set_active(tenant_id, definition.process_id, False, admin_id)

        assert deactivated.is_active is False
        assert store.get_definition(tenant_id, definition.process_id).is_active is False
        assert store.list_definitions(tenant_id, active_only=True) == []

    def test_set_active_unknown_process(self, store, tenant_id, admin_id):
        with pytest.raises(ProcessNotFoundError) as exc_info:
            store.set_active(tenant_id, uuid4(), True, admin_id)
        assert exc_info.value.code == "APPROVAL_PROCESS_NOT_FOUND"

    def test_list_definitions_ordered_by_name(self, store, tenant_id, admin_id, approvers):
        store.register(make_definition(tenant_id, [[approvers[0]]], name="Zeta"), admin_id)
        store.register(make_definition(tenant_id, [[approvers[0]]], name="Alpha"), admin_id)
        store.register(make_definition(uuid4(), [[approvers[0]]], name="Other tenant"), admin_id)

        assert [d.name for d in store.list_definitions(tenant_id)] == ["Alpha", "Zeta"]


class TestInMemoryProcessDefinitionStore:

    def test_get_definition(self, tenant_id, approvers):
        definition = make_definition(tenant_id, [[approvers[0]]])
        store = InMemoryProcessDefinitionStore([definition])

        assert isinstance(store, ProcessDefinitionStore)
        assert store.get_definition(tenant_id, definition.process_id) is definition
        assert store.get_definition(uuid4(), definition.process_id) is None

    def test_engine_runs_on_in_memory_store(
        self, session, deterministic_clock, lock_registry, tenant_id, submitter_id, approvers,
    ):
        from approval_kernel.services.approval_engine import ApprovalEngine

        definition = make_definition(tenant_id, [[approvers[0]]])
        engine = ApprovalEngine(
            session,
            InMemoryProcessDefinitionStore([definition]),
            clock=deterministic_clock,
            locks=lock_registry,
        )

        instance = engine.submit(tenant_id, submitter_id, "opportunity", uuid4(), definition.process_id)

        assert instance.process_name is None
        assert instance.submitter_name is None
        assert instance.process_definition_id == definition.process_id
