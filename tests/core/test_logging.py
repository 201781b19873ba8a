"""Tests for modelspine.core.logging."""

import json

import pytest
import structlog

from modelspine.core.logging import (
    bind_context,
    configure_from_settings,
    configure_logging,
    get_logger,
    unbind_context,
)


@pytest.fixture(autouse=True)
def reset_structlog():
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


class TestConfigureLogging:
    def test_json_output(self, capsys):
        configure_logging(level="INFO", json_format=True, service="test-ui")
        get_logger("modelspine.test").info("model_orchestrator.load.start", models=["a"])

        line = capsys.readouterr().out.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["event"] == "model_orchestrator.load.start"
        assert record["models"] == ["a"]
        assert record["service.name"] == "test-ui"
        assert record["log.level"] == "info"
        assert "@timestamp" in record

    def test_unknown_level_rejected(self):
        with pytest.raises(ValueError, match="LOUD"):
            configure_logging(level="LOUD")

    def test_level_filters(self, capsys):
        configure_logging(level="WARNING", json_format=True)
        get_logger("modelspine.test").info("hidden")
        assert "hidden" not in capsys.readouterr().out

    def test_bound_context_included(self, capsys):
        configure_logging(level="INFO", json_format=True)
        bind_context(screen="orders")
        get_logger("modelspine.test").info("model_registry.defined")
        unbind_context("screen")

        record = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert record["screen"] == "orders"

    def test_configure_from_settings(self, settings, capsys):
        settings.log_format = "json"
        settings.log_level = "DEBUG"
        configure_from_settings(settings)
        get_logger("modelspine.test").debug("model_event.fired")
        assert "model_event.fired" in capsys.readouterr().out
