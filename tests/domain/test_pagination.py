"""Tests for cursor encoding and page size clamping."""

import base64
import json
from datetime import UTC, datetime
from uuid import uuid4

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from approval_kernel.domain.pagination import (
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    clamp_limit,
    decode_cursor,
    encode_cursor,
)
from approval_kernel.exceptions import InvalidCursorError, ValidationError


class TestCursor:

    def test_decodes_what_it_encodes(self):
        created_at = datetime(2024, 3, 5, 9, 30, 15, 123456, tzinfo=UTC)
        row_id = uuid4()

        position = decode_cursor(encode_cursor(created_at, row_id))

        assert position.created_at == created_at
        assert position.id == row_id

    def test_cursor_is_opaque_url_safe_text(self):
        cursor = encode_cursor(datetime(2024, 1, 1, tzinfo=UTC), uuid4())
        assert "/" not in cursor and "+" not in cursor

    @pytest.mark.parametrize(
        "cursor",
        [
            "",
            "not-base64!!",
            base64.urlsafe_b64encode(b"plain text").decode(),
            base64.urlsafe_b64encode(json.dumps({"id": str(uuid4())}).encode()).decode(),
            base64.urlsafe_b64encode(
                json.dumps({"created_at": "2024-01-01T00:00:00+00:00", "id": "nope"}).encode()
            ).decode(),
            base64.urlsafe_b64encode(json.dumps([1, 2]).encode()).decode(),
        ],
    )
    def test_malformed_cursor_raises(self, cursor):
        with pytest.raises(InvalidCursorError) as exc_info:
            decode_cursor(cursor)
        assert exc_info.value.field == "cursor"
        assert isinstance(exc_info.value, ValidationError)

    def test_naive_timestamp_is_rejected(self):
        raw = json.dumps({"created_at": "2024-01-01T00:00:00", "id": str(uuid4())})
        with pytest.raises(InvalidCursorError):
            decode_cursor(base64.urlsafe_b64encode(raw.encode()).decode())

    @given(st.text(max_size=40))
    @settings(max_examples=100)
    def test_arbitrary_text_never_escapes_as_another_error(self, text):
        try:
            decode_cursor(text)
        except InvalidCursorError:
            pass


class TestClampLimit:

    @pytest.mark.parametrize("limit", [None, 0, -5])
    def test_unset_or_non_positive_uses_default(self, limit):
        assert clamp_limit(limit) == DEFAULT_PAGE_SIZE

    def test_limit_within_range_is_kept(self):
        assert clamp_limit(7) == 7

    def test_limit_is_capped_at_maximum(self):
        assert clamp_limit(MAX_PAGE_SIZE + 1) == MAX_PAGE_SIZE
        assert clamp_limit(10, default=5, maximum=3) == 3

    def test_default_never_exceeds_maximum(self):
        assert clamp_limit(None, default=500, maximum=100) == 100
