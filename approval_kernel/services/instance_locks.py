"""
InstanceLockRegistry -- in-process serialization of approval mutations.

Responsibility:
    Hands out one mutex per lock key so that decide/recall/reassign on the
    same instance, and submit on the same target record, run one at a
    time.  Different keys never contend.

Architecture position:
    Kernel > Services -- infrastructure used by ApprovalEngine.

Invariants enforced:
    - Entries are reference counted and removed when the last holder
      releases, so the registry does not grow with the number of
      instances ever touched.
    - Acquisition waits at most ``timeout_seconds``; on expiry
      ``LockTimeoutError`` is raised and nothing is held.

Non-goals:
    - Cross-process serialization.  On PostgreSQL the instance row lock
      (``SELECT ... FOR UPDATE``) and the partial unique index carry that;
      this registry only removes in-process contention before the database
      sees it.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Hashable, Iterator
from uuid import UUID

from approval_kernel.exceptions import LockTimeoutError
from approval_kernel.logging_config import get_logger

logger = get_logger("services.instance_locks")

DEFAULT_LOCK_TIMEOUT_SECONDS = 30.0


def instance_key(instance_id: UUID) -> tuple[str, str]:
    return ("instance", str(instance_id))


def target_key(
    tenant_id: UUID, target_object_type: str, target_record_id: UUID,
) -> tuple[str, str, str, str]:
    return ("target", str(tenant_id), target_object_type, str(target_record_id))


def _format_key(key: Hashable) -> str:
    if isinstance(key, tuple):
        return ":".join(str(part) for part in key)
    return str(key)


@dataclass
class _Entry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    refs: int = 0


class InstanceLockRegistry:
    """Reference-counted map of key -> mutex."""

    def __init__(self, timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS):
        self.timeout_seconds = timeout_seconds
        self._guard = threading.Lock()
        self._entries: dict[Hashable, _Entry] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    def active_keys(self) -> list[Hashable]:
        with self._guard:
            return list(self._entries)

    @contextmanager
    def hold(self, key: Hashable, timeout: float | None = None) -> Iterator[None]:
        """
        Hold the mutex for ``key`` for the duration of the block.

        Raises:
            LockTimeoutError: The mutex was not acquired within the timeout.
        """
        wait = self.timeout_seconds if timeout is None else timeout

        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = _Entry()
                self._entries[key] = entry
            entry.refs += 1

        acquired = entry.lock.acquire(timeout=wait)
        try:
            if not acquired:
                logger.warning(
                    "lock_timeout",
                    extra={"lock_key": _format_key(key), "timeout_seconds": wait},
                )
                raise LockTimeoutError(_format_key(key), wait)
            yield
        finally:
            if acquired:
                entry.lock.release()
            with self._guard:
                entry.refs -= 1
                if entry.refs == 0:
                    del self._entries[key]


default_lock_registry = InstanceLockRegistry()
