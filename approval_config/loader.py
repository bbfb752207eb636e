"""
Configuration Loader (``approval_config.loader``).

Responsibility
--------------
Loads YAML files and parses them into ``EngineSettings`` and kernel
``ProcessDefinition`` objects.  Runtime callers go through
``approval_config.get_active_config()`` and
``approval_config.load_process_definitions()``.

Invariants enforced
-------------------
* Every parse error raises ``ValueError`` naming the offending key; no
  silent defaults for malformed values.
* Unknown keys in the engine section are rejected.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any
from uuid import NAMESPACE_URL, UUID, uuid5

import yaml

from approval_config.schema import EngineSettings
from approval_kernel.domain.approval import (
    ApprovalStep,
    ProcessDefinition,
    ReassignmentMode,
)

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})
_ENGINE_KEYS = frozenset(EngineSettings.__dataclass_fields__)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top-level YAML document must be a mapping")
    return data


def _positive_int(data: dict[str, Any], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"{key} must be a positive integer, got {value!r}")
    return value


def parse_engine_settings(data: dict[str, Any]) -> EngineSettings:
    """
    Parse ``EngineSettings`` from the ``engine`` mapping of a config file.

    Raises:
        ValueError: unknown key or invalid value; the message names the key.
    """
    unknown = sorted(set(data) - _ENGINE_KEYS)
    if unknown:
        raise ValueError(f"Unknown engine setting(s): {', '.join(unknown)}")

    defaults = EngineSettings()

    database_url = data.get("database_url", defaults.database_url)
    if not isinstance(database_url, str) or not database_url:
        raise ValueError(f"database_url must be a non-empty string, got {database_url!r}")

    echo_sql = data.get("echo_sql", defaults.echo_sql)
    if not isinstance(echo_sql, bool):
        raise ValueError(f"echo_sql must be a boolean, got {echo_sql!r}")

    default_page_size = _positive_int(data, "default_page_size", defaults.default_page_size)
    max_page_size = _positive_int(data, "max_page_size", defaults.max_page_size)
    if default_page_size > max_page_size:
        raise ValueError(
            f"default_page_size ({default_page_size}) exceeds max_page_size ({max_page_size})"
        )

    lock_timeout = data.get("lock_timeout_seconds", defaults.lock_timeout_seconds)
    if isinstance(lock_timeout, bool) or not isinstance(lock_timeout, (int, float)) or lock_timeout <= 0:
        raise ValueError(f"lock_timeout_seconds must be a positive number, got {lock_timeout!r}")

    raw_mode = data.get("reassignment_mode", defaults.reassignment_mode.value)
    try:
        reassignment_mode = ReassignmentMode(raw_mode)
    except ValueError:
        allowed = ", ".join(m.value for m in ReassignmentMode)
        raise ValueError(
            f"reassignment_mode must be one of {allowed}, got {raw_mode!r}"
        ) from None

    roles = data.get("reassign_roles", list(defaults.reassign_roles))
    if not isinstance(roles, list) or not all(isinstance(r, str) and r for r in roles):
        raise ValueError(f"reassign_roles must be a list of role names, got {roles!r}")

    log_level = str(data.get("log_level", defaults.log_level)).upper()
    if log_level not in _LOG_LEVELS:
        raise ValueError(f"log_level must be one of {sorted(_LOG_LEVELS)}, got {log_level!r}")

    return EngineSettings(
        database_url=database_url,
        echo_sql=echo_sql,
        default_page_size=default_page_size,
        max_page_size=max_page_size,
        lock_timeout_seconds=float(lock_timeout),
        reassignment_mode=reassignment_mode,
        reassign_roles=tuple(roles),
        log_level=log_level,
    )


def _parse_uuid(value: Any, key: str) -> UUID:
    try:
        return UUID(str(value))
    except ValueError:
        raise ValueError(f"{key} must be a UUID, got {value!r}") from None


def parse_step(data: dict[str, Any], position: int) -> ApprovalStep:
    """Parse one step mapping; ``position`` is 1-based for error messages."""
    key = f"steps[{position}]"
    approvers = data.get("approvers")
    if not isinstance(approvers, list) or not approvers:
        raise ValueError(f"{key}.approvers must be a non-empty list")
    criteria = data.get("criteria")
    if criteria is not None and not isinstance(criteria, dict):
        raise ValueError(f"{key}.criteria must be a mapping")
    return ApprovalStep(
        name=str(data.get("name") or f"Step {position}"),
        approver_ids=tuple(
            _parse_uuid(a, f"{key}.approvers[{i}]") for i, a in enumerate(approvers, start=1)
        ),
        criteria=criteria,
    )


def parse_process_definition(data: dict[str, Any], tenant_id: UUID) -> ProcessDefinition:
    """
    Parse a ``ProcessDefinition`` from a process mapping.

    A process without an explicit ``id`` gets a stable id derived from the
    tenant and the process name, so reseeding the same file is idempotent.

    Raises:
        KeyError: ``name`` or ``object_name`` missing.
        ValueError: malformed steps, ids or criteria.
    """
    name = data["name"]
    object_name = data["object_name"]
    raw_steps = data.get("steps")
    if not isinstance(raw_steps, list) or not raw_steps:
        raise ValueError(f"process {name!r}: steps must be a non-empty list")

    if data.get("id") is not None:
        process_id = _parse_uuid(data["id"], "id")
    else:
        process_id = uuid5(NAMESPACE_URL, f"approval-process:{tenant_id}:{name}")

    entry_criteria = data.get("entry_criteria")
    if entry_criteria is not None and not isinstance(entry_criteria, dict):
        raise ValueError(f"process {name!r}: entry_criteria must be a mapping")

    return ProcessDefinition(
        process_id=process_id,
        tenant_id=tenant_id,
        name=name,
        target_object_type=object_name,
        steps=tuple(parse_step(s, i) for i, s in enumerate(raw_steps, start=1)),
        is_active=bool(data.get("is_active", True)),
        entry_criteria=entry_criteria,
        version=int(data.get("version", 1)),
        description=data.get("description"),
    )


def compute_checksum(data: dict[str, Any] | EngineSettings) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical settings always produce identical checksums.
    """
    if isinstance(data, EngineSettings):
        data = data.to_dict()
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()

