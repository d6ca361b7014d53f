"""
Unit tests for structured logging
"""
import json
import logging
import sys

from finguard.core.logging import JSONFormatter, LoggerMixin, get_logger


class LockoutNotifier(LoggerMixin):
    pass


def make_record(message="Account locked", **kwargs):
    return logging.LogRecord(
        name="finguard.security.brute_force",
        level=logging.WARNING,
        pathname=__file__,
        lineno=10,
        msg=message,
        args=(),
        exc_info=kwargs.get("exc_info"),
    )


def test_json_formatter_fields():
    entry = json.loads(JSONFormatter().format(make_record()))

    assert entry["level"] == "WARNING"
    assert entry["logger"] == "finguard.security.brute_force"
    assert entry["message"] == "Account locked"
    assert entry["line"] == 10
    assert "exception" not in entry


def test_json_formatter_extra_and_exception():
    try:
        raise RuntimeError("store down")
    except RuntimeError:
        record = make_record(exc_info=sys.exc_info())
    record.extra_data = {"failed_attempts": 5}

    entry = json.loads(JSONFormatter().format(record))

    assert entry["extra"] == {"failed_attempts": 5}
    assert "RuntimeError: store down" in entry["exception"]


def test_logger_mixin_names_logger_after_class():
    assert LockoutNotifier().logger.name == f"{__name__}.LockoutNotifier"


def test_log_with_context_attaches_extra(caplog):
    notifier = LockoutNotifier()

    with caplog.at_level(logging.INFO):
        notifier.log_with_context(logging.WARNING, "Account locked", {"account_id": "a1"})

    record = next(r for r in caplog.records if r.getMessage() == "Account locked")
    assert record.levelno == logging.WARNING
    assert record.extra_data == {"account_id": "a1"}


def test_get_logger_returns_named_logger():
    assert get_logger("finguard.test").name == "finguard.test"
