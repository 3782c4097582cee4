"""Tests for sensitive data filtering and JSON formatting in logs."""

from __future__ import annotations

import json
import logging
from io import StringIO

import pytest

from apithrottle.core.logging import (
    JsonFormatter,
    RequestIdFilter,
    SensitiveDataFilter,
    clear_request_id,
    hash_identifier,
    set_request_id,
)


@pytest.fixture
def capture():
    logger = logging.getLogger("test_throttle_logging")
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    logger.propagate = False

    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.addFilter(RequestIdFilter())
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)

    yield logger, stream

    logger.handlers.clear()
    clear_request_id()


def test_caller_address_is_redacted(capture):
    logger, stream = capture

    logger.warning(
        "throttle.denied",
        extra={
            "caller_address": "1.2.3.4",
            "caller_key": "1.2.3.4:GetThing",
            "operation": "GetThing",
        },
    )

    output = stream.getvalue()
    assert "1.2.3.4" not in output
    assert "[REDACTED]" in output
    assert "GetThing" in output


def test_nested_headers_are_redacted(capture):
    logger, stream = capture

    logger.info(
        "request_headers",
        extra={"headers": {"x-forwarded-for": "9.9.9.9", "user-agent": "pytest"}},
    )

    output = stream.getvalue()
    assert "9.9.9.9" not in output
    assert "pytest" in output


def test_safe_fields_pass_through(capture):
    logger, stream = capture

    logger.info(
        "quota.registered",
        extra={"operation": "GetThing", "per_minute": 2, "replaced": False},
    )

    payload = json.loads(stream.getvalue())
    assert payload["message"] == "quota.registered"
    assert payload["level"] == "info"
    assert payload["per_minute"] == 2
    assert "[REDACTED]" not in stream.getvalue()


def test_request_id_from_context_is_attached(capture):
    logger, stream = capture
    set_request_id("req-abc")

    logger.info("throttle.enabled")

    assert json.loads(stream.getvalue())["request_id"] == "req-abc"


def test_hash_identifier_is_stable_and_short():
    assert hash_identifier("1.2.3.4") == hash_identifier("1.2.3.4")
    assert hash_identifier("1.2.3.4") != hash_identifier("5.6.7.8")
    assert len(hash_identifier("1.2.3.4")) == 16
