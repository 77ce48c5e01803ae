"""Unit tests for structured logging configuration."""
from __future__ import annotations

import json
import logging
import sys
from unittest.mock import patch

import pytest

from polystore.core.settings.logs import LoggingSettings
from polystore.infra.logging import (
    ContextInjectingFilter,
    JSONFormatter,
    build_logging_config,
    configure_logging,
    get_log_context,
    set_log_context,
)


def _record(msg: str = "Object uploaded", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="polystore.infra.storage.manager",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.mark.unit
class TestJSONFormatter:
    """Test suite for JSONFormatter."""

    def test_basic_fields(self):
        output = json.loads(JSONFormatter().format(_record()))

        assert output["level"] == "INFO"
        assert output["logger"] == "polystore.infra.storage.manager"
        assert output["message"] == "Object uploaded"
        assert output["timestamp"].endswith("Z")

    def test_extra_and_static_fields(self):
        formatter = JSONFormatter(static={"service": "polystore"})

        output = json.loads(formatter.format(_record(key="docs/a.txt", size_bytes=10)))

        assert output["service"] == "polystore"
        assert output["key"] == "docs/a.txt"
        assert output["size_bytes"] == 10
        assert "msg" not in output
        assert "args" not in output

    def test_exception_is_single_line(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = logging.LogRecord(
                "test", logging.ERROR, __file__, 1, "failed", (), exc_info=sys.exc_info()
            )

        formatted = JSONFormatter().format(record)

        assert "\n" not in formatted
        assert "ValueError: boom" in json.loads(formatted)["exception"]

    def test_non_serializable_values_use_str(self):
        output = json.loads(JSONFormatter().format(_record(path=object())))

        assert output["path"].startswith("<object object")


@pytest.mark.unit
class TestContextInjection:
    """Test suite for log context propagation."""

    def test_set_and_get(self):
        set_log_context(user_id="u-1")
        set_log_context(tenant_id="acme")

        assert get_log_context() == {"user_id": "u-1", "tenant_id": "acme"}

    def test_filter_injects_context(self):
        set_log_context(user_id="u-1")
        record = _record()

        assert ContextInjectingFilter().filter(record) is True
        assert record.user_id == "u-1"

    def test_filter_keeps_existing_attributes(self):
        set_log_context(key="from-context")
        record = _record(key="from-extra")

        ContextInjectingFilter().filter(record)

        assert record.key == "from-extra"


@pytest.mark.unit
class TestBuildLoggingConfig:
    """Test suite for build_logging_config."""

    def test_json_config(self):
        config = build_logging_config(LoggingSettings(level="DEBUG"))

        assert config["root"]["level"] == "DEBUG"
        assert config["handlers"]["console"]["formatter"] == "json"
        assert config["handlers"]["console"]["filters"] == ["context"]
        assert config["formatters"]["json"]["static"] == {"service": "polystore"}
        assert config["loggers"]["botocore"] == {"level": "WARNING"}

    def test_text_config_without_context(self):
        config = build_logging_config(LoggingSettings(json_logs=False, include_context=False))

        assert config["handlers"]["console"]["formatter"] == "text"
        assert config["filters"] == {}
        assert config["handlers"]["console"]["filters"] == []

    def test_configure_logging_applies_overrides(self):
        with patch("logging.config.dictConfig") as dict_config:
            configure_logging(LoggingSettings(), level="WARNING", json_logs=False)

        config = dict_config.call_args.args[0]
        assert config["root"]["level"] == "WARNING"
        assert config["handlers"]["console"]["formatter"] == "text"
