"""
Tests — log formatters carry the ``extra=`` context fields.
"""

import json
import logging
import sys

from activity_core.middleware.logging_config import JSONFormatter, ReadableFormatter


def _make_record(msg="Merged %d activities", args=(2,), **extra):
    record = logging.LogRecord("activity_core.services.merge_service", logging.INFO,
                               __file__, 10, msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestFormatters:

    def test_json_includes_context(self):
        line = JSONFormatter().format(_make_record(activity_id="a-1", merged_ids=["b-2"]))
        entry = json.loads(line)
        assert entry["msg"] == "Merged 2 activities"
        assert entry["level"] == "INFO"
        assert entry["activity_id"] == "a-1"
        assert entry["merged_ids"] == ["b-2"]
        assert "job_name" not in entry

    def test_json_exception(self):
        try:
            raise ValueError("bad vector")
        except ValueError:
            record = _make_record()
            record.exc_info = sys.exc_info()
        entry = json.loads(JSONFormatter().format(record))
        assert "ValueError: bad vector" in entry["exc"]

    def test_readable_tags(self):
        line = ReadableFormatter(color=False).format(
            _make_record(job_name="dedup_batch_cleanup", duration_ms=12)
        )
        assert "INFO" in line
        assert "Merged 2 activities" in line
        assert line.endswith("[job_name=dedup_batch_cleanup duration_ms=12]")
        assert "\033[" not in line

    def test_readable_without_context(self):
        line = ReadableFormatter(color=False).format(_make_record())
        assert "[" not in line
