import logging
from unittest.mock import patch

import notifiers.logging

from tfaction.config import Settings
from tfaction.logger import configure_logging, get_log_handlers
from tfaction.metric import (
    artifact_counter,
    error_counter,
    push_metrics,
    push_registry,
)


def test_counters_on_push_registry():
    before = artifact_counter.labels(operation="save", result="ok")._value.get()
    artifact_counter.labels(operation="save", result="ok").inc()
    assert (
        push_registry.get_sample_value(
            "tfaction_num_artifact_total", {"operation": "save", "result": "ok"}
        )
        == before + 1
    )


def test_push_metrics():
    with patch("tfaction.metric.push_to_gateway") as push:
        push_metrics("localhost:9091")
    push.assert_called_once_with(
        "localhost:9091", job="tfaction", registry=push_registry
    )


def test_push_metrics_failure_is_logged(caplog):
    before = error_counter.labels(context="push_metrics")._value.get()
    with patch("tfaction.metric.push_to_gateway", side_effect=OSError("refused")):
        with caplog.at_level(logging.WARNING, logger="tfaction"):
            push_metrics("localhost:9091")

    assert error_counter.labels(context="push_metrics")._value.get() == before + 1
    assert "Unable to push metrics" in caplog.text


def test_log_handlers():
    logger = logging.getLogger("tfaction.test_handlers")
    assert get_log_handlers(logger, Settings()) == []

    settings = Settings(TELEGRAM_TOKEN="token", TELEGRAM_CHAT_ID="42")
    handlers = get_log_handlers(logger, settings)
    try:
        assert len(handlers) == 1
        assert isinstance(handlers[0], notifiers.logging.NotificationHandler)
        assert handlers[0].level == logging.WARNING
        assert handlers[0] in logger.handlers
    finally:
        for handler in handlers:
            logger.removeHandler(handler)


def test_configure_logging():
    logger = configure_logging(Settings(OVERRIDE_LOGGING=logging.DEBUG))
    assert logger.name == "tfaction"
    assert logger.level == logging.DEBUG
