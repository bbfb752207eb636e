"""
approval_config -- single public entrypoint for approval engine configuration.

Responsibility:
    Provides ``get_active_config()`` for runtime settings and
    ``load_process_definitions()`` for seeding process definitions from
    YAML.  Nothing else in the project reads configuration files or
    environment variables.

Architecture position:
    Configuration -- sits above ``approval_kernel``.  The kernel never
    imports from ``approval_config``; ``ApprovalEngine.from_settings``
    accepts the settings object it produces.

Resolution order for ``get_active_config``:
    1. Explicit ``path`` argument.
    2. ``APPROVAL_CONFIG_PATH`` environment variable.
    3. Built-in defaults (``EngineSettings()``).
    ``APPROVAL_DATABASE_URL``, when set, overrides ``database_url``.

Failure modes:
    - ``FileNotFoundError`` -- the configured file does not exist.
    - ``ValueError`` -- validation failure; the message names the key.

Audit relevance:
    Every successful ``get_active_config()`` call emits an
    ``APPROVAL_CONFIG_TRACE`` log entry with the source and checksum.
"""

from __future__ import annotations

import os
from dataclasses import replace
from pathlib import Path
from uuid import UUID

from approval_config.loader import (
    compute_checksum,
    load_yaml_file,
    parse_engine_settings,
    parse_process_definition,
)
from approval_config.schema import EngineSettings
from approval_kernel.domain.approval import ProcessDefinition
from approval_kernel.logging_config import get_logger

_logger = get_logger("config")

CONFIG_PATH_ENV = "APPROVAL_CONFIG_PATH"
DATABASE_URL_ENV = "APPROVAL_DATABASE_URL"

# Example configuration shipped with the package
SETS_DIR = Path(__file__).parent / "sets"


def get_active_config(path: str | Path | None = None) -> EngineSettings:
    """
    The public settings entrypoint.

    Args:
        path: YAML file with an ``engine`` mapping.  Falls back to
            ``APPROVAL_CONFIG_PATH``, then to built-in defaults.

    Raises:
        FileNotFoundError: If the resolved file does not exist.
        ValueError: If a setting is unknown or invalid.
    """
    resolved = path if path is not None else os.environ.get(CONFIG_PATH_ENV)

    if resolved:
        data = load_yaml_file(Path(resolved))
        engine_data = data.get("engine", {})
        if not isinstance(engine_data, dict):
            raise ValueError("engine must be a mapping")
        settings = parse_engine_settings(engine_data)
        source = str(resolved)
    else:
        settings = EngineSettings()
        source = "defaults"

    database_url = os.environ.get(DATABASE_URL_ENV)
    if database_url:
        settings = replace(settings, database_url=database_url)

    _logger.info(
        "APPROVAL_CONFIG_TRACE",
        extra={
            "trace_type": "APPROVAL_CONFIG_TRACE",
            "config_source": source,
            "checksum": compute_checksum(settings),
            "reassignment_mode": settings.reassignment_mode.value,
            "database_url_overridden": bool(database_url),
        },
    )
    return settings


def load_process_definitions(path: str | Path, tenant_id: UUID) -> list[ProcessDefinition]:
    """
    Parse a YAML seed file into process definitions for one tenant.

    The file holds a ``processes`` list; see ``sets/processes.yaml``.

    Raises:
        FileNotFoundError, KeyError, ValueError.
    """
    data = load_yaml_file(Path(path))
    processes = data.get("processes", [])
    if not isinstance(processes, list):
        raise ValueError("processes must be a list")
    return [parse_process_definition(p, tenant_id) for p in processes]


__all__ = [
    "EngineSettings",
    "get_active_config",
    "load_process_definitions",
    "compute_checksum",
    "CONFIG_PATH_ENV",
    "DATABASE_URL_ENV",
    "SETS_DIR",
]
