"""
Approval engine configuration schema.

Frozen dataclasses the YAML loader produces.  ``EngineSettings`` carries
runtime knobs for the engine and the database layer; process definitions
parse straight into the kernel's ``ProcessDefinition``.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from approval_kernel.domain.approval import ReassignmentMode

DEFAULT_DATABASE_URL = "sqlite:///approvals.db"
DEFAULT_REASSIGN_ROLES: tuple[str, ...] = ("administrator", "delegated_manager")


@dataclass(frozen=True)
class EngineSettings:
    """Runtime settings for the approval engine."""

    database_url: str = DEFAULT_DATABASE_URL
    echo_sql: bool = False
    default_page_size: int = 50
    max_page_size: int = 200
    lock_timeout_seconds: float = 30.0
    reassignment_mode: ReassignmentMode = ReassignmentMode.IN_PLACE
    reassign_roles: tuple[str, ...] = field(default=DEFAULT_REASSIGN_ROLES)
    log_level: str = "INFO"

    def to_dict(self) -> dict:
        return {
            "database_url": self.database_url,
            "echo_sql": self.echo_sql,
            "default_page_size": self.default_page_size,
            "max_page_size": self.max_page_size,
            "lock_timeout_seconds": self.lock_timeout_seconds,
            "reassignment_mode": self.reassignment_mode.value,
            "reassign_roles": list(self.reassign_roles),
            "log_level": self.log_level,
        }
