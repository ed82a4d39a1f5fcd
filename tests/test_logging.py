"""Tests for the structured logging system (approval_kernel/logging_config.py)."""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from approval_kernel.domain.approval import ApprovalStatus
from approval_kernel.exceptions import ApprovalLockTimeoutError, ApprovalNotFoundError
from approval_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite's setup."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_log(stream: StringIO) -> dict:
    """Parse the first JSON log line from a stream."""
    line = stream.getvalue().strip().split("\n")[0]
    return json.loads(line)


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


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
        get_logger("test").info("approval_escalated", extra={"level": 2, "outcome": "escalated"})

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["outcome"] == "escalated"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        with LogContext.bind(request_id="req-1", actor_id="user-9"):
            get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["request_id"] == "req-1"
        assert record["actor_id"] == "user-9"

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

    def test_kernel_exception_fields_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        request_id = str(uuid4())
        try:
            raise ApprovalNotFoundError(request_id)
        except ApprovalNotFoundError:
            get_logger("test").error("lookup_failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "APPROVAL_NOT_FOUND"
        assert record["exc_request_id"] == request_id

    def test_lock_timeout_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise ApprovalLockTimeoutError("req-1", 0.5)
        except ApprovalLockTimeoutError:
            get_logger("test").warning("timeout", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "LOCK_TIMEOUT"
        assert record["exc_timeout_seconds"] == 0.5

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("bare_message")

        record = _parse_log(stream)
        assert "request_id" not in record
        assert "actor_id" not in record

    def test_domain_values_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        at = datetime(2024, 1, 1, 12, tzinfo=timezone.utc)
        get_logger("test").info("typed", extra={
            "approver_id": uid,
            "deadline_at": at,
            "amount": Decimal("500000.00"),
            "status": ApprovalStatus.PENDING,
        })

        record = _parse_log(stream)
        assert record["approver_id"] == str(uid)
        assert record["deadline_at"] == "2024-01-01T12:00:00+00:00"
        assert record["amount"] == "500000.00"
        assert record["status"] == "pending"

    def test_unknown_values_fall_back_to_str(self):
        class Tagged:
            def __str__(self):
                return "tagged-value"

        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("opaque", extra={"tag": Tagged()})

        assert _parse_log(stream)["tag"] == "tagged-value"

    def test_debug_filtered_at_info(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        logs = _parse_all_logs(stream)
        assert [r["message"] for r in logs] == ["first", "second"]


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:

    def test_bind_and_get(self):
        with LogContext.bind(request_id="x", actor_id="y"):
            assert LogContext.get_all() == {"request_id": "x", "actor_id": "y"}
        assert LogContext.get_all() == {}

    def test_clear(self):
        with LogContext.bind(request_id="x"):
            LogContext.clear()
            assert LogContext.get_all() == {}

    def test_bind_restores_previous(self):
        with LogContext.bind(request_id="outer"):
            with LogContext.bind(request_id="inner", actor_id="a"):
                assert LogContext.get_all() == {"request_id": "inner", "actor_id": "a"}
            assert LogContext.get_all() == {"request_id": "outer"}

    def test_bind_ignores_unknown_and_none(self):
        with LogContext.bind(actor_id=None, correlation_id="ignored"):
            assert LogContext.get_all() == {}


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:

    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)
        handlers = logging.getLogger("approval_kernel").handlers
        assert h1 in handlers
        assert h2 not in handlers

    def test_does_not_propagate(self):
        handler, _ = _make_handler()
        configure_logging(handler=handler)
        assert logging.getLogger("approval_kernel").propagate is False

    def test_logger_hierarchy(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        get_logger("services.approval_workflow").debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["logger"] == "approval_kernel.services.approval_workflow"
