"""Tests for structured logging setup and live-view log context."""

import io
import json
import logging
import re

import pytest
import structlog

from progress_tracker.config import Settings
from progress_tracker.logging import (
    bind_view_context,
    clear_context,
    get_logger,
    get_view_context,
    setup_logging,
    setup_logging_from_settings,
    unbind_view_context,
)


def strip_ansi(text):
    """Strip ANSI escape sequences from text."""
    ansi_escape = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")
    return ansi_escape.sub("", text)


def parse_json_lines(output):
    lines = output.strip().split("\n")
    return [json.loads(line) for line in lines if line.strip()]


def find_event(output, event):
    return next((e for e in parse_json_lines(output) if e.get("event") == event), None)


@pytest.fixture(autouse=True)
def reset_logging():
    """Reset logging configuration around each test."""
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


class TestLoggingSetup:
    def test_defaults(self, monkeypatch, capsys):
        monkeypatch.delenv("SERVICE_NAME", raising=False)
        monkeypatch.delenv("LOG_FORMAT", raising=False)
        monkeypatch.delenv("LOG_LEVEL", raising=False)

        setup_logging()
        get_logger().info("default_event")

        output = strip_ansi(capsys.readouterr().out)
        assert "default_event" in output
        assert "progress-tracker" in output

    def test_json_format(self, capsys):
        setup_logging(service_name="tracker-test", log_format="json", log_level="INFO")

        get_logger().info("project_created", project_id="p1", tasks=3)

        entry = find_event(capsys.readouterr().out, "project_created")
        assert entry is not None
        assert entry["service"] == "tracker-test"
        assert entry["project_id"] == "p1"
        assert entry["tasks"] == 3  # noqa: PLR2004
        assert entry["level"] == "info"
        assert "timestamp" in entry

    def test_console_format(self, capsys):
        setup_logging(service_name="tracker-test", log_format="console", log_level="INFO")

        get_logger().info("view_closed", view_id="manager-1")

        output = strip_ansi(capsys.readouterr().out)
        assert "view_closed" in output
        assert "view_id=manager-1" in output

    def test_from_env(self, monkeypatch, capsys):
        monkeypatch.setenv("SERVICE_NAME", "env-tracker")
        monkeypatch.setenv("LOG_FORMAT", "json")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")

        setup_logging()
        get_logger().debug("reconcile_completed", visible=2)

        entry = find_event(capsys.readouterr().out, "reconcile_completed")
        assert entry is not None
        assert entry["service"] == "env-tracker"
        assert entry["level"] == "debug"

    def test_level_filtering(self, capsys):
        setup_logging(service_name="tracker-test", log_format="console", log_level="WARNING")

        logger = get_logger()
        logger.info("info_event")
        logger.warning("nested_subscription_lost")

        output = strip_ansi(capsys.readouterr().out)
        assert "info_event" not in output
        assert "nested_subscription_lost" in output

    def test_stream_override(self, capsys):
        buffer = io.StringIO()
        setup_logging(service_name="tracker-test", log_format="json", stream=buffer)

        get_logger().info("store_resubscribing", attempt=1)

        assert "store_resubscribing" not in capsys.readouterr().out
        assert find_event(buffer.getvalue(), "store_resubscribing")["attempt"] == 1

    def test_library_loggers_stay_quiet(self):
        setup_logging(service_name="tracker-test", log_level="INFO")
        assert logging.getLogger("redis").level == logging.WARNING

        setup_logging(service_name="tracker-test", log_level="ERROR")
        assert logging.getLogger("redis").level == logging.ERROR

    def test_from_settings(self, capsys):
        settings = Settings(_env_file=None, service_name="from-settings", log_format="json")

        setup_logging_from_settings(settings)

        entry = find_event(capsys.readouterr().out, "logging_initialized")
        assert entry["service"] == "from-settings"


class TestViewContext:
    def test_bound_view_is_on_every_line(self, capsys):
        setup_logging(service_name="tracker-test", log_format="json", log_level="INFO")

        bind_view_context("manager-7", "public")
        get_logger().info("public_view_opened")

        entry = find_event(capsys.readouterr().out, "public_view_opened")
        assert entry["view_id"] == "manager-7"
        assert entry["tier"] == "public"

    def test_get_and_unbind(self):
        bind_view_context("manager-7", "owner")
        structlog.contextvars.bind_contextvars(unrelated="kept")

        assert get_view_context() == {"view_id": "manager-7", "tier": "owner"}

        unbind_view_context()
        assert get_view_context() == {}
        assert structlog.contextvars.get_contextvars() == {"unrelated": "kept"}

    def test_clear_context(self, capsys):
        setup_logging(service_name="tracker-test", log_format="json", log_level="INFO")

        bind_view_context("manager-7", "owner")
        clear_context()
        get_logger().info("event_without_view")

        entry = find_event(capsys.readouterr().out, "event_without_view")
        assert entry is not None
        assert "view_id" not in entry
        assert "service" not in entry


class TestErrorLogging:
    def test_exception_info(self, capsys):
        setup_logging(service_name="tracker-test", log_format="json", log_level="INFO")

        try:
            raise RuntimeError("callback exploded")
        except RuntimeError as e:
            get_logger().error("subscriber_callback_failed", error=str(e), exc_info=True)

        entry = find_event(capsys.readouterr().out, "subscriber_callback_failed")
        assert entry["error"] == "callback exploded"
        assert "exception" in entry
