"""Tests for the structured logging system (approval_kernel/logging_config.py)."""

import json
import logging
from io import StringIO
from uuid import uuid4

import pytest

from approval_kernel.exceptions import NotAssignedApproverError
from approval_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


def _parse_log(stream: StringIO) -> dict:
    return _parse_all_logs(stream)[0]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    """Tests for JSON log output format."""

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "approval_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("approval_step_advanced", extra={"from_step": 1, "to_step": 2})

        record = _parse_log(stream)
        assert record["from_step"] == 1
        assert record["to_step"] == 2

    def test_uuid_and_enum_values_serialize(self):
        from approval_kernel.domain.approval import InstanceStatus

        handler, stream = _make_handler()
        configure_logging(handler=handler)
        instance_id = uuid4()
        get_logger("test").info(
            "approval_completed",
            extra={"id_value": instance_id, "final_status": InstanceStatus.APPROVED},
        )

        record = _parse_log(stream)
        assert record["id_value"] == str(instance_id)
        assert record["final_status"] == "approved"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(correlation_id="abc-123", instance_id="inst-1")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["correlation_id"] == "abc-123"
        assert record["instance_id"] == "inst-1"

    def test_context_wins_over_extra(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(tenant_id="from-context")
        get_logger("test").info("msg", extra={"tenant_id": "from-extra"})

        assert _parse_log(stream)["tenant_id"] == "from-context"

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise ValueError("boom")
        except ValueError:
            get_logger("test").error("failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "traceback" in record
        assert "exc_code" not in record

    def test_kernel_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise NotAssignedApproverError("item-1", "actor-9")
        except NotAssignedApproverError:
            get_logger("test").warning("approval_decide_failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "NotAssignedApproverError"
        assert record["exc_code"] == "NOT_ASSIGNED_APPROVER"
        assert record["exc_work_item_id"] == "item-1"
        assert record["exc_actor_id"] == "actor-9"
        assert record["exc_field"] == "approverId"


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:

    def test_set_ignores_none(self):
        LogContext.set(actor_id="a1")
        LogContext.set(actor_id=None, operation="approval_decide")
        assert LogContext.get_all() == {"actor_id": "a1", "operation": "approval_decide"}

    def test_clear(self):
        LogContext.set(correlation_id="c", tenant_id="t")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_restores_previous_values(self):
        LogContext.set(tenant_id="outer")
        with LogContext.bind(tenant_id="inner", work_item_id="w1"):
            assert LogContext.get_all() == {"tenant_id": "inner", "work_item_id": "w1"}
        assert LogContext.get_all() == {"tenant_id": "outer"}

    def test_bind_restores_on_error(self):
        with pytest.raises(RuntimeError):
            with LogContext.bind(operation="approval_recall"):
                raise RuntimeError("x")
        assert LogContext.get_all() == {}

    def test_bind_ignores_unknown_fields(self):
        with LogContext.bind(not_a_field="x", actor_id="a"):
            assert LogContext.get_all() == {"actor_id": "a"}


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:

    def test_idempotent(self):
        first, first_stream = _make_handler()
        second, second_stream = _make_handler()
        configure_logging(handler=first)
        configure_logging(handler=second)

        get_logger("test").info("once")

        assert len(_parse_all_logs(first_stream)) == 1
        assert second_stream.getvalue() == ""
        # pytest may attach its own capture handlers to the logger
        handlers = logging.getLogger("approval_kernel").handlers
        assert first in handlers
        assert second not in handlers
        structured = [h for h in handlers if isinstance(h.formatter, StructuredFormatter)]
        assert structured == [first]

    def test_level_filters(self):
        handler, stream = _make_handler()
        configure_logging(level=logging.WARNING, handler=handler)
        logger = get_logger("test")
        logger.info("dropped")
        logger.warning("kept")

        assert [r["message"] for r in _parse_all_logs(stream)] == ["kept"]

    def test_does_not_propagate(self):
        handler, _ = _make_handler()
        configure_logging(handler=handler)
        assert logging.getLogger("approval_kernel").propagate is False

    def test_reset_allows_reconfigure(self):
        first, _ = _make_handler()
        configure_logging(handler=first)
        reset_logging()
        second, stream = _make_handler()
        configure_logging(handler=second)

        get_logger("test").info("again")

        assert _parse_log(stream)["message"] == "again"
