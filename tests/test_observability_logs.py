from __future__ import annotations

import json
import logging

import pytest

from src.core.hub import EventHub
from src.core.logging import configure_logging
from src.core.stages import StageReporter


def test_configure_logging_quiets_http_client_logs():
    configure_logging("DEBUG")

    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("httpcore").level == logging.WARNING


def test_structured_logs_are_rendered_as_json(caplog):
    configure_logging("INFO")
    caplog.set_level(logging.INFO)

    reporter = StageReporter(EventHub(), "corr-logs")
    reporter.final("done")
    reporter.progress("processing", "late")

    records = [r for r in caplog.records if r.name == "src.core.stages"]
    assert records, "stage reporter emitted no log records"
    payload = json.loads(records[-1].getMessage())
    assert payload["event"] == "stage_event_after_terminal"
    assert payload["level"] == "warning"
    assert payload["logger"] == "src.core.stages"
    assert payload["correlation_id"] == "corr-logs"
    assert payload["terminal_stage"] == "completed"
    assert "timestamp" in payload


@pytest.mark.parametrize("level", ["info", "WARNING", "bogus"])
def test_level_names_are_case_insensitive_with_info_fallback(level):
    configure_logging(level)

    expected = getattr(logging, level.upper(), logging.INFO)
    assert logging.getLogger().level == expected
