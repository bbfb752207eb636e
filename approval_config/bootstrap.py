"""
Runtime bootstrap -- apply EngineSettings to logging and the database, and
seed process definitions.

Usage:
    approval-seed --tenant-id <uuid> --actor-id <uuid> [--config engine.yaml]
                  [--processes processes.yaml]

``bootstrap`` is the one place ``log_level``, ``database_url`` and
``echo_sql`` take effect; ``build_engine`` wires the remaining settings
into ``ApprovalEngine``.
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from approval_config import SETS_DIR, get_active_config, load_process_definitions
from approval_config.schema import EngineSettings
from approval_kernel.db.engine import create_tables, init_engine_from_url, session_scope
from approval_kernel.domain.approval import ProcessDefinition
from approval_kernel.logging_config import configure_logging, get_logger
from approval_kernel.services.approval_engine import ApprovalEngine
from approval_kernel.services.process_definition_store import SqlProcessDefinitionStore

_logger = get_logger("config.bootstrap")


def bootstrap(settings: EngineSettings, *, create_schema: bool = True) -> Engine:
    """
    Configure logging and initialize the database engine from ``settings``.

    Postconditions: the approval_kernel logger runs at ``settings.log_level``
        (unless logging was configured earlier) and the module-level engine
        points at ``settings.database_url``.
    """
    configure_logging(level=settings.log_level)
    engine = init_engine_from_url(settings.database_url, echo=settings.echo_sql)
    if create_schema:
        create_tables()
    return engine


def build_engine(session: Session, settings: EngineSettings, **kwargs: Any) -> ApprovalEngine:
    """An ApprovalEngine over the SQL definition store, tuned by ``settings``."""
    return ApprovalEngine.from_settings(
        session, SqlProcessDefinitionStore(session), settings, **kwargs,
    )


def seed_processes(
    path: str | Path, tenant_id: UUID, actor_id: UUID,
) -> list[ProcessDefinition]:
    """
    Register every process in a seed file for one tenant, in one transaction.

    Reseeding replaces existing definitions and bumps their version.
    Requires ``bootstrap`` (or ``init_engine_from_url``) to have run.
    """
    definitions = load_process_definitions(path, tenant_id)
    with session_scope() as session:
        store = SqlProcessDefinitionStore(session)
        registered = [store.register(d, actor_id) for d in definitions]

    _logger.info(
        "processes_seeded",
        extra={
            "tenant_id": str(tenant_id),
            "source": str(path),
            "process_count": len(registered),
        },
    )
    return registered


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Seed approval process definitions")
    parser.add_argument("--config", help="engine settings YAML (default: APPROVAL_CONFIG_PATH)")
    parser.add_argument(
        "--processes",
        default=str(SETS_DIR / "processes.yaml"),
        help="process seed YAML",
    )
    parser.add_argument("--tenant-id", type=UUID, required=True)
    parser.add_argument("--actor-id", type=UUID, required=True)
    args = parser.parse_args(argv)

    settings = get_active_config(args.config)
    bootstrap(settings)
    registered = seed_processes(args.processes, args.tenant_id, args.actor_id)

    for definition in registered:
        print(f"  {definition.process_id}  v{definition.version}  {definition.name}")
    print(f"  Seeded {len(registered)} process(es) for tenant {args.tenant_id}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
