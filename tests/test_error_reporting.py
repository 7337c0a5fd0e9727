"""
Tests for request-scoped error reporting.
"""

from datetime import datetime, timedelta, timezone

from apitoolkit_fastapi.config import ERRORS_STATE_KEY
from apitoolkit_fastapi.error_reporting import (
    build_error,
    format_timestamp,
    get_scope_errors,
    record_error,
)


class TestErrorEntries:
    """Tests for ATError construction."""

    def test_root_cause_follows_chain(self):
        try:
            try:
                raise ConnectionError("db down")
            except ConnectionError as inner:
                raise LookupError("user lookup failed") from inner
        except LookupError as e:
            entry = build_error(e)

        assert entry.error_type == "LookupError"
        assert entry.root_error_type == "ConnectionError"
        assert entry.message == "user lookup failed"
        assert entry.root_error_message == "db down"
        assert "ConnectionError" in entry.stack_trace

    def test_error_without_cause_is_its_own_root(self):
        entry = build_error(ValueError("x"))
        assert entry.root_error_type == "ValueError"
        assert entry.stack_trace.strip().endswith("ValueError: x")

    def test_record_appends_in_order(self):
        scope = {"type": "http"}

        record_error(scope, ValueError("first"))
        record_error(scope, KeyError("second"))

        assert [e.error_type for e in get_scope_errors(scope)] == ["ValueError", "KeyError"]
        assert len(scope["state"][ERRORS_STATE_KEY]) == 2

    def test_no_errors(self):
        assert get_scope_errors({"type": "http"}) == []


class TestFormatTimestamp:
    """Tests for the wire timestamp format."""

    def test_converts_to_utc(self):
        moment = datetime(2024, 1, 1, 12, 0, 0, 5000, tzinfo=timezone(timedelta(hours=2)))
        assert format_timestamp(moment) == "2024-01-01T10:00:00.005Z"
