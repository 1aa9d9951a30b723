"""Tests for structured logging (workflow_kernel/logging_config.py)."""

import json
import logging
from io import StringIO
from uuid import uuid4

import pytest

from workflow_kernel.domain.request import RequestStatus
from workflow_kernel.exceptions import IllegalTransitionError
from workflow_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _fresh_logging():
    """Each test configures its own handler; the suite default is restored after."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


@pytest.fixture
def stream():
    buffer = StringIO()
    handler = logging.StreamHandler(buffer)
    configure_logging(handler=handler)
    return buffer


def records(stream: StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().strip().split("\n") if line]


class TestStructuredFormatter:
    def test_basic_json_line(self, stream):
        get_logger("services.workflow_engine").info("request_created")
        (record,) = records(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "request_created"
        assert record["logger"] == "workflow_kernel.services.workflow_engine"
        assert "ts" in record

    def test_extra_fields(self, stream):
        get_logger("test").info("request_transitioned", extra={"version": 3, "action": "approve"})
        record = records(stream)[0]
        assert record["version"] == 3
        assert record["action"] == "approve"

    def test_uuid_and_enum_serialized(self, stream):
        uid = uuid4()
        get_logger("test").info(
            "x", extra={"assignee_id": uid, "to_status": RequestStatus.APPROVED},
        )
        record = records(stream)[0]
        assert record["assignee_id"] == str(uid)
        assert record["to_status"] == "approved"

    def test_kernel_exception_fields(self, stream):
        try:
            raise IllegalTransitionError("r-1", "leave_request", "approved", "draft")
        except IllegalTransitionError:
            get_logger("test").error("transition_failed", exc_info=True)

        record = records(stream)[0]
        assert record["exc_type"] == "IllegalTransitionError"
        assert record["exc_code"] == "ILLEGAL_TRANSITION"
        assert record["exc_from_status"] == "approved"
        assert record["exc_to_status"] == "draft"
        assert "traceback" in record

    def test_below_level_suppressed(self):
        buffer = StringIO()
        configure_logging(level=logging.WARNING, handler=logging.StreamHandler(buffer))
        get_logger("test").info("quiet")
        assert buffer.getvalue() == ""


class TestLogContext:
    def test_bound_fields_appear(self, stream):
        with LogContext.bind(request_id="req-1", actor_id="user-9"):
            get_logger("test").info("inside")
        get_logger("test").info("outside")

        inside, outside = records(stream)
        assert inside["request_id"] == "req-1"
        assert inside["actor_id"] == "user-9"
        assert "request_id" not in outside

    def test_nested_bind_restores_outer(self):
        with LogContext.bind(request_id="outer"):
            with LogContext.bind(request_id="inner", entity_type="document"):
                assert LogContext.get_all() == {"request_id": "inner", "entity_type": "document"}
            assert LogContext.get_all() == {"request_id": "outer"}
        assert LogContext.get_all() == {}

    def test_none_values_are_not_bound(self):
        with LogContext.bind(request_id=None, actor_id="a"):
            assert LogContext.get_all() == {"actor_id": "a"}

    def test_values_are_stringified(self):
        uid = uuid4()
        with LogContext.bind(actor_id=uid):
            assert LogContext.get_all() == {"actor_id": str(uid)}

    def test_unknown_field_rejected(self):
        with pytest.raises(KeyError):
            LogContext.bind(tenant_id="t-1")


class TestConfigureLogging:
    def test_idempotent(self, stream):
        kernel_logger = logging.getLogger("workflow_kernel")
        before = list(kernel_logger.handlers)
        configure_logging(handler=logging.StreamHandler(StringIO()))
        assert kernel_logger.handlers == before

    def test_does_not_propagate_to_root(self, stream):
        assert logging.getLogger("workflow_kernel").propagate is False

    def test_formatter_installed(self, stream):
        handlers = logging.getLogger("workflow_kernel").handlers
        assert any(isinstance(h.formatter, StructuredFormatter) for h in handlers)
