"""
Tests for approval_config.bootstrap -- settings applied to logging and the
database, process seeding and the approval-seed command.
"""

import logging
from uuid import UUID, uuid4

import pytest
import yaml
from sqlalchemy import inspect

from approval_config import CONFIG_PATH_ENV, DATABASE_URL_ENV, SETS_DIR
from approval_config.bootstrap import bootstrap, build_engine, main, seed_processes
from approval_config.loader import parse_engine_settings
from approval_kernel.db.engine import get_session, reset_engine
from approval_kernel.domain.approval import InstanceStatus, ReassignmentMode
from approval_kernel.domain.clock import DeterministicClock
from approval_kernel.logging_config import reset_logging
from approval_kernel.services.instance_locks import InstanceLockRegistry
from approval_kernel.services.process_definition_store import SqlProcessDefinitionStore

DISCOUNT_APPROVAL_ID = UUID("3b1f6d2e-8c4a-4f51-9a7e-2d6c0b9e4a10")
SALES_MANAGER_ID = UUID("0d9f4c1a-6b2e-4e8d-8f3a-51c7a2b9e601")


@pytest.fixture(autouse=True)
def fresh_runtime(monkeypatch):
    """Bootstrap owns the global engine and logger; restore both afterwards."""
    monkeypatch.delenv(CONFIG_PATH_ENV, raising=False)
    monkeypatch.delenv(DATABASE_URL_ENV, raising=False)
    reset_logging()
    yield
    reset_engine()
    reset_logging()


@pytest.fixture
def settings(tmp_path):
    return parse_engine_settings({
        "database_url": f"sqlite:///{tmp_path / 'approvals.db'}",
        "log_level": "WARNING",
        "reassignment_mode": "supersede",
        "default_page_size": 5,
        "max_page_size": 10,
    })


class TestBootstrap:

    def test_applies_database_and_logging_settings(self, settings, tmp_path):
        engine = bootstrap(settings)

        assert engine.url.database == str(tmp_path / "approvals.db")
        assert engine.echo is False
        assert logging.getLogger("approval_kernel").level == logging.WARNING
        assert {"approval_instances", "approval_work_items", "approval_history"} <= set(
            inspect(engine).get_table_names()
        )

    def test_echo_sql(self, tmp_path):
        echoing = parse_engine_settings({
            "database_url": f"sqlite:///{tmp_path / 'echo.db'}",
            "echo_sql": True,
        })
        assert bootstrap(echoing, create_schema=False).echo is True

    def test_without_schema(self, settings):
        engine = bootstrap(settings, create_schema=False)
        assert inspect(engine).get_table_names() == []


class TestSeedProcesses:

    def test_seeds_shipped_processes(self, settings):
        bootstrap(settings)
        tenant_id, actor_id = uuid4(), uuid4()

        registered = seed_processes(SETS_DIR / "processes.yaml", tenant_id, actor_id)

        assert sorted(d.name for d in registered) == ["Contract Review", "Discount Approval"]
        session = get_session()
        try:
            names = [d.name for d in SqlProcessDefinitionStore(session).list_definitions(tenant_id)]
        finally:
            session.close()
        assert names == ["Contract Review", "Discount Approval"]

    def test_reseeding_bumps_versions(self, settings):
        bootstrap(settings)
        tenant_id, actor_id = uuid4(), uuid4()
        seed_processes(SETS_DIR / "processes.yaml", tenant_id, actor_id)

        again = seed_processes(SETS_DIR / "processes.yaml", tenant_id, actor_id)

        assert {d.version for d in again} == {2}

    def test_seeded_process_runs_with_configured_engine(self, settings):
        bootstrap(settings)
        tenant_id = uuid4()
        seed_processes(SETS_DIR / "processes.yaml", tenant_id, uuid4())

        session = get_session()
        try:
            engine = build_engine(
                session, settings,
                clock=DeterministicClock(), locks=InstanceLockRegistry(),
            )
            instance = engine.submit(tenant_id, uuid4(), "opportunity", uuid4(), DISCOUNT_APPROVAL_ID)
            item = engine.list_work_items_for_instance(tenant_id, instance.id)[0]
            replacement = engine.reassign(tenant_id, SALES_MANAGER_ID, item.id, uuid4())
            page = engine.list_instances(tenant_id, limit=50)
        finally:
            session.close()

        assert instance.status is InstanceStatus.PENDING
        assert item.approver_id == SALES_MANAGER_ID
        # supersede mode comes from the settings
        assert replacement.id != item.id
        assert settings.reassignment_mode is ReassignmentMode.SUPERSEDE
        assert page.total_size == 1


class TestSeedCommand:

    def test_main_seeds_from_config_file(self, tmp_path, capsys):
        db_path = tmp_path / "cli.db"
        config = tmp_path / "engine.yaml"
        config.write_text(yaml.safe_dump({"engine": {"database_url": f"sqlite:///{db_path}"}}))
        tenant_id = uuid4()

        exit_code = main([
            "--config", str(config),
            "--tenant-id", str(tenant_id),
            "--actor-id", str(uuid4()),
        ])

        assert exit_code == 0
        assert "Seeded 2 process(es)" in capsys.readouterr().out
        session = get_session()
        try:
            assert len(SqlProcessDefinitionStore(session).list_definitions(tenant_id)) == 2
        finally:
            session.close()

    def test_database_url_from_environment(self, tmp_path, monkeypatch):
        db_path = tmp_path / "from-env.db"
        monkeypatch.setenv(DATABASE_URL_ENV, f"sqlite:///{db_path}")

        main(["--tenant-id", str(uuid4()), "--actor-id", str(uuid4())])

        assert db_path.exists()

    def test_tenant_id_is_required(self):
        with pytest.raises(SystemExit):
            main(["--actor-id", str(uuid4())])
