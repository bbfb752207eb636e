"""
Criteria evaluation boundary.

The kernel never parses criteria expressions.  Entry criteria on a process
and per-step criteria are opaque mappings handed to an injected
``CriteriaEvaluator``, which answers yes or no for one target record.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable
from uuid import UUID


@runtime_checkable
class CriteriaEvaluator(Protocol):
    """Black-box predicate over a target record."""

    def evaluate(
        self,
        tenant_id: UUID,
        target_object_type: str,
        target_record_id: UUID,
        criteria: dict[str, Any],
    ) -> bool:
        ...


class AlwaysTrueEvaluator:
    """Accepts every record.  Used when no evaluator is configured."""

    def evaluate(
        self,
        tenant_id: UUID,
        target_object_type: str,
        target_record_id: UUID,
        criteria: dict[str, Any],
    ) -> bool:
        return True


class StaticCriteriaEvaluator:
    """
    Evaluator backed by a fixed set of rejected (criteria key, record) pairs.

    Criteria mappings are matched on their ``key`` entry.  Intended for tests
    and local seeding where no expression engine is available.
    """

    def __init__(self, rejections: dict[str, set[UUID]] | None = None):
        self._rejections = {k: set(v) for k, v in (rejections or {}).items()}

    def reject(self, key: str, target_record_id: UUID) -> None:
        self._rejections.setdefault(key, set()).add(target_record_id)

    def evaluate(
        self,
        tenant_id: UUID,
        target_object_type: str,
        target_record_id: UUID,
        criteria: dict[str, Any],
    ) -> bool:
        key = criteria.get("key")
        if key is None:
            return True
        return target_record_id not in self._rejections.get(key, set())
