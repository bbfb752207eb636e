"""
User directory boundary.

Display names are a read concern only; nothing in the approval flow depends
on a name being resolvable.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable
from uuid import UUID


@runtime_checkable
class UserDirectory(Protocol):
    """Resolves a user id to a human-readable name."""

    def display_name(self, tenant_id: UUID, user_id: UUID) -> str | None:
        ...


class InMemoryUserDirectory:
    """Dictionary-backed directory, keyed by user id across tenants."""

    def __init__(self, names: dict[UUID, str] | None = None):
        self._names: dict[UUID, str] = dict(names or {})

    def add(self, user_id: UUID, name: str) -> None:
        self._names[user_id] = name

    def display_name(self, tenant_id: UUID, user_id: UUID) -> str | None:
        return self._names.get(user_id)
