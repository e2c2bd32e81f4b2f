"""Tests for log formatting and the logging helpers."""

import json
import logging

import pytest

from blog_assistant.utils.errors import RemoteServiceError
from blog_assistant.utils.logging import (
    JSONFormatter,
    StandardFormatter,
    get_logger,
    log_error,
    log_request,
    request_id_var,
)


def _record(**extra):
    return logging.makeLogRecord(
        {
            "name": "blog_assistant.chat_service",
            "levelname": "WARNING",
            "levelno": logging.WARNING,
            "msg": "Chat failed",
            **extra,
        }
    )


@pytest.fixture
def request_id():
    token = request_id_var.set("req-42")
    yield "req-42"
    request_id_var.reset(token)


@pytest.fixture
def no_request_id():
    token = request_id_var.set(None)
    yield
    request_id_var.reset(token)


class _Collect(logging.Handler):
    def __init__(self):
        super().__init__(logging.DEBUG)
        self.records = []

    def emit(self, record):
        self.records.append(record)


@pytest.fixture
def collected():
    handlers = {}

    def _attach(name):
        logger = get_logger(name)
        handler = _Collect()
        handlers[name] = (handler, logger.level)
        logger.addHandler(handler)
        logger.setLevel(logging.DEBUG)
        return handler

    yield _attach
    for name, (handler, level) in handlers.items():
        logger = get_logger(name)
        logger.removeHandler(handler)
        logger.setLevel(level)


class TestJSONFormatter:
    def test_pipeline_fields_are_top_level(self, request_id):
        entry = json.loads(
            JSONFormatter().format(
                _record(
                    stage="embedding",
                    service="huggingface",
                    upstream_status=503,
                    error_type="RemoteServiceError",
                    model="text-embedding-3-small",
                )
            )
        )

        assert entry["message"] == "Chat failed"
        assert entry["request_id"] == "req-42"
        assert entry["stage"] == "embedding"
        assert entry["service"] == "huggingface"
        assert entry["upstream_status"] == 503
        assert entry["error_type"] == "RemoteServiceError"
        assert entry["context"] == {"model": "text-embedding-3-small"}

    def test_empty_fields_are_omitted(self, no_request_id):
        entry = json.loads(JSONFormatter().format(_record(service=None, upstream_status=None)))

        assert "request_id" not in entry
        assert "service" not in entry
        assert "upstream_status" not in entry
        assert "context" not in entry


class TestStandardFormatter:
    def test_pipeline_fields_follow_message(self, request_id):
        line = StandardFormatter().format(
            _record(stage="streaming", service=None, error_type="RemoteServiceError")
        )

        assert "[req-42]" in line
        assert line.endswith("Chat failed (stage=streaming error_type=RemoteServiceError)")

    def test_plain_record(self, no_request_id):
        line = StandardFormatter().format(_record(blocks=3))

        assert "[-]" in line
        assert line.endswith("Chat failed")


def test_log_error_carries_remote_service(collected):
    handler = collected("error")
    error = RemoteServiceError(service="supabase", message="Supabase API error: 503", upstream_status=503)

    log_error(error, context={"endpoint": "chat"})

    [record] = handler.records
    assert record.error_type == "RemoteServiceError"
    assert record.service == "supabase"
    assert record.upstream_status == 503
    assert record.endpoint == "chat"
    assert record.exc_info[1] is error


def test_log_error_for_local_failure(collected):
    handler = collected("error")

    log_error(ValueError("bad"))

    [record] = handler.records
    assert record.error_type == "ValueError"
    assert record.service is None


def test_log_request_marks_streamed_timing(collected):
    handler = collected("http")

    log_request("POST", "/api/v1/chat", 200, 812.5, streamed=True)
    log_request("GET", "/health", 200, 1.5)

    streamed, plain = handler.records
    assert streamed.getMessage() == "POST /api/v1/chat - 200 - 812.50ms ttfb"
    assert streamed.streamed is True
    assert streamed.duration_ms == 812.5
    assert plain.getMessage().endswith("ms total")
