"""Tests for core.log_format."""
import json
import logging
import sys

from core.log_format import JSONFormatter


def make_record(level=logging.INFO, msg="Forwarded %s to '%s'", args=("P1", "hook"), exc_info=None):
    return logging.LogRecord(
        name="core.engine",
        level=level,
        pathname="/app/core/engine.py",
        lineno=42,
        msg=msg,
        args=args,
        exc_info=exc_info,
    )


class TestJSONFormatter:
    def test_renders_one_json_object(self):
        line = JSONFormatter().format(make_record())

        entry = json.loads(line)
        assert entry["level"] == "INFO"
        assert entry["logger"] == "core.engine"
        assert entry["msg"] == "Forwarded P1 to 'hook'"
        assert entry["ts"].endswith("Z")
        assert "file" not in entry
        assert "\n" not in line

    def test_errors_carry_location_and_traceback(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = make_record(level=logging.ERROR, msg="cycle failed", args=(), exc_info=sys.exc_info())

        entry = json.loads(JSONFormatter().format(record))

        assert entry["level"] == "ERROR"
        assert entry["file"] == "engine.py:42"
        assert "RuntimeError: boom" in entry["exc_info"]
