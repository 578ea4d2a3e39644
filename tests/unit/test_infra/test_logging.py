"""Tests for structured logging: context, lazy messages, JSON output."""

from __future__ import annotations

import json
import logging
import logging.handlers
import sys
from typing import TYPE_CHECKING

import pytest

from clinic_notifications.core.settings import LoggingSettings
from clinic_notifications.infra.logging import (
    ContextInjectingFilter,
    JSONFormatter,
    clear_log_context,
    configure_logging,
    get_lazy_logger,
    get_log_context,
    log_context,
    set_log_context,
    shutdown,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


def _record(msg: str = "Delivery failed", **extra: object) -> logging.LogRecord:
    record = logging.LogRecord("clinic.test", logging.WARNING, __file__, 10, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture(autouse=True)
def _clean_context() -> Iterator[None]:
    clear_log_context()
    yield
    clear_log_context()


@pytest.mark.unit
class TestLogContext:
    def test_set_and_clear(self) -> None:
        set_log_context(notification_id="n-1")
        set_log_context(channel="sms")

        assert get_log_context() == {"notification_id": "n-1", "channel": "sms"}

        clear_log_context()
        assert get_log_context() == {}

    def test_scoped_context_is_restored(self) -> None:
        set_log_context(owner="worker-a")

        with log_context(notification_id="n-1"):
            with log_context(channel="sms"):
                assert get_log_context() == {"owner": "worker-a", "notification_id": "n-1", "channel": "sms"}
            assert get_log_context() == {"owner": "worker-a", "notification_id": "n-1"}

        assert get_log_context() == {"owner": "worker-a"}

    def test_filter_injects_without_overriding_extra(self) -> None:
        record = _record(channel="email")

        with log_context(notification_id="n-1", channel="sms"):
            assert ContextInjectingFilter().filter(record) is True

        assert record.notification_id == "n-1"
        assert record.channel == "email"


@pytest.mark.unit
class TestJSONFormatter:
    def test_one_object_per_record(self) -> None:
        formatter = JSONFormatter(static={"service": "clinic-notifications"})

        data = json.loads(formatter.format(_record(channel="sms", attempt=2)))

        assert data["level"] == "WARNING"
        assert data["logger"] == "clinic.test"
        assert data["message"] == "Delivery failed"
        assert data["service"] == "clinic-notifications"
        assert data["timestamp"].endswith("Z")
        assert (data["channel"], data["attempt"]) == ("sms", 2)
        assert "args" not in data

    def test_arabic_text_is_not_escaped(self) -> None:
        line = JSONFormatter().format(_record("تذكير بموعد الجلسة"))

        assert "تذكير بموعد الجلسة" in line

    def test_exception_is_included(self) -> None:
        try:
            raise ValueError("bad address")
        except ValueError:
            record = logging.LogRecord("clinic.test", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())

        data = json.loads(JSONFormatter().format(record))
        assert "ValueError: bad address" in data["exception"]


@pytest.mark.unit
class TestLazyLogger:
    def test_message_is_not_built_when_disabled(self) -> None:
        logging.getLogger("clinic.lazy.off").setLevel(logging.INFO)
        lazy = get_lazy_logger("clinic.lazy.off")
        calls: list[int] = []

        lazy.debug(lambda: calls.append(1) or "expensive")

        assert calls == []

    def test_message_is_built_when_enabled(self, caplog: pytest.LogCaptureFixture) -> None:
        lazy = get_lazy_logger("clinic.lazy.on")

        with caplog.at_level(logging.DEBUG, logger="clinic.lazy.on"):
            lazy.debug(lambda: f"resolved {sorted({'sms', 'email'})}")

        assert caplog.messages == ["resolved ['email', 'sms']"]


@pytest.mark.unit
class TestConfigureLogging:
    @pytest.fixture(autouse=True)
    def _restore_root(self) -> Iterator[None]:
        root = logging.getLogger()
        level = root.level
        yield
        shutdown()
        root.setLevel(level)
        logging.captureWarnings(False)

    def test_writes_json_lines_to_file(self, tmp_path: Path) -> None:
        log_file = tmp_path / "logs" / "notifications.jsonl"
        configure_logging(
            LoggingSettings(level="INFO", json_logs=False, use_queue=False, file_path=log_file)
        )

        with log_context(notification_id="n-7"):
            logging.getLogger("clinic.file").info("Attempt sent", extra={"channel": "push"})
        shutdown()

        lines = [json.loads(line) for line in log_file.read_text(encoding="utf-8").splitlines()]
        sent = [line for line in lines if line["message"] == "Attempt sent"]
        assert len(sent) == 1
        assert sent[0]["notification_id"] == "n-7"
        assert sent[0]["channel"] == "push"
        assert sent[0]["service"] == "clinic-notifications"

    def test_queue_listener_is_replaced_on_reconfigure(self) -> None:
        configure_logging(LoggingSettings(use_queue=True))
        configure_logging(LoggingSettings(use_queue=True))

        queue_handlers = [
            handler
            for handler in logging.getLogger().handlers
            if isinstance(handler, logging.handlers.QueueHandler)
        ]
        assert len(queue_handlers) == 1
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
