"""Unit tests for correlation id logging."""

import json
import logging

import pytest

from src.logging_utils import (
    CorrelationIdContext,
    CorrelationIdFilter,
    JsonFormatter,
    correlation_id_var,
    spin_correlation_id,
)


def make_record(message: str) -> logging.LogRecord:
    record = logging.LogRecord("src.playerhouse.orchestrator", logging.INFO, __file__, 1, message, None, None)
    CorrelationIdFilter().filter(record)
    return record


@pytest.mark.unit
class TestCorrelationIds:
    """Test correlation ids reach log records."""

    def test_nested_contexts_restore_outer_id(self):
        with CorrelationIdContext("setup-1"):
            with CorrelationIdContext(spin_correlation_id(7)):
                assert make_record("inner").correlation_id == "spin-7"
            assert make_record("outer").correlation_id == "setup-1"

        assert correlation_id_var.get() is None
        assert make_record("none").correlation_id == "-"

    def test_generated_id(self):
        with CorrelationIdContext() as correlation_id:
            assert correlation_id.startswith("corr-")

    def test_json_formatter_escapes_message(self):
        with CorrelationIdContext("spin-3"):
            record = make_record('Relay said "AA21 didn\'t pay prefund"')

        entry = json.loads(JsonFormatter().format(record))

        assert entry["correlation_id"] == "spin-3"
        assert entry["message"] == 'Relay said "AA21 didn\'t pay prefund"'
        assert entry["level"] == "INFO"
