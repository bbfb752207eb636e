"""
Cursor pagination helpers.

Responsibility:
    Encode and decode the opaque keyset cursor used by listing operations,
    and clamp caller-supplied page sizes.

Architecture position:
    Kernel > Domain -- pure functions, zero I/O.

Invariants enforced:
    - A cursor identifies the last row of the previous page by
      ``(created_at, id)``.  Listings order by ``created_at`` descending then
      ``id`` descending, so equal timestamps still page deterministically.
    - Page sizes are always within ``1..max_page_size``.
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from approval_kernel.exceptions import InvalidCursorError

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


@dataclass(frozen=True)
class CursorPosition:
    """Decoded keyset position."""

    created_at: datetime
    id: UUID


def encode_cursor(created_at: datetime, row_id: UUID) -> str:
    """Encode a keyset position as URL-safe base64 JSON."""
    raw = json.dumps(
        {"created_at": created_at.isoformat(), "id": str(row_id)},
        separators=(",", ":"),
        sort_keys=True,
    ).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")


def decode_cursor(cursor: str) -> CursorPosition:
    """
    Decode a cursor produced by ``encode_cursor``.

    Raises:
        InvalidCursorError: The cursor is not valid base64 JSON or is
            missing either component.
    """
    try:
        raw = base64.urlsafe_b64decode(cursor.encode("ascii"))
        data = json.loads(raw.decode("utf-8"))
        created_at = datetime.fromisoformat(data["created_at"])
        row_id = UUID(data["id"])
    except (
        binascii.Error,
        UnicodeError,
        ValueError,
        KeyError,
        TypeError,
        AttributeError,
    ) as exc:
        raise InvalidCursorError(cursor) from exc

    if created_at.tzinfo is None:
        raise InvalidCursorError(cursor)
    return CursorPosition(created_at=created_at, id=row_id)


def clamp_limit(
    limit: int | None,
    default: int = DEFAULT_PAGE_SIZE,
    maximum: int = MAX_PAGE_SIZE,
) -> int:
    """Return a usable page size: default when unset, never above maximum."""
    if limit is None or limit <= 0:
        return min(default, maximum)
    return min(limit, maximum)
