"""
Tests for the payload builder.
"""

import base64
import json
import re
from datetime import datetime, timezone
from unittest.mock import patch

from apitoolkit_fastapi.config import REDACTED_MARKER, SDK_TYPE
from apitoolkit_fastapi.error_reporting import build_error
from apitoolkit_fastapi.payload import (
    TransactionContext,
    build_payload,
    canonical_header_name,
    collect_headers,
    collect_query_params,
    normalize_route_pattern,
    strip_port,
)

WIRE_KEYS = [
    "request_headers", "response_headers", "status_code", "method", "errors",
    "host", "raw_url", "duration", "url_path", "query_params", "path_params",
    "project_id", "proto_major", "proto_minor", "msg_id", "timestamp",
    "referer", "sdk_type", "request_body", "response_body",
]


def _ctx(**overrides):
    values = dict(
        method="GET",
        path="/users/42",
        query_string="active=true",
        route_pattern="/users/{id}",
        status_code=200,
        duration_ns=1500,
        request_headers=[("host", "api.example.com:8443"), ("authorization", "secret123")],
        response_headers=[("content-type", "application/json")],
        path_params={"id": "42"},
        msg_id="00000000-0000-4000-8000-000000000000",
    )
    values.update(overrides)
    return TransactionContext(**values)


def _build(ctx, **kwargs):
    kwargs.setdefault("project_id", "proj-123")
    return json.loads(build_payload(ctx, **kwargs))


class TestHelpers:
    """Tests for the small normalization helpers."""

    def test_canonical_header_name(self):
        assert canonical_header_name("content-type") == "Content-Type"
        assert canonical_header_name("X-API-KEY") == "X-Api-Key"

    def test_collect_headers_joins_repeats(self):
        headers = collect_headers([("accept", "a"), ("Accept", "b"), ("host", "h")])
        assert headers == {"Accept": "a, b", "Host": "h"}

    def test_collect_query_params_first_wins(self):
        assert collect_query_params("a=1&a=2&b=&c=x%20y") == {"a": "1", "b": "", "c": "x y"}
        assert collect_query_params("") == {}

    def test_normalize_route_pattern(self):
        assert normalize_route_pattern("/users/{id}") == "/users/:id"
        assert normalize_route_pattern("/files/{p:path}") == "/files/:p"
        assert normalize_route_pattern("/static") == "/static"

    def test_strip_port(self):
        assert strip_port("api.example.com:8443") == "api.example.com"
        assert strip_port("api.example.com") == "api.example.com"
        assert strip_port("[::1]:8000") == "[::1]"


class TestBuildPayload:
    """Tests for the serialized transaction record."""

    def test_wire_shape(self):
        """Every wire key is present, in order, with the right types."""
        payload = _build(_ctx())

        assert list(payload) == WIRE_KEYS
        assert isinstance(payload["status_code"], int)
        assert isinstance(payload["duration"], int)
        assert payload["proto_major"] == 1 and payload["proto_minor"] == 1
        assert payload["sdk_type"] == SDK_TYPE
        assert payload["project_id"] == "proj-123"
        assert payload["errors"] == []
        assert payload["referer"] == ""

    def test_scenario_get_with_route_pattern(self):
        """GET /users/42?active=true on /users/{id} with Authorization redacted."""
        payload = _build(_ctx(), redact_header_keys=["Authorization"])

        assert payload["raw_url"] == "/users/42?active=true"
        assert payload["url_path"] == "/users/:id"
        assert payload["path_params"] == {"id": "42"}
        assert payload["query_params"] == {"active": "true"}
        assert payload["request_headers"]["Authorization"] == REDACTED_MARKER
        assert payload["host"] == "api.example.com"
        assert payload["method"] == "GET"

    def test_raw_url_without_query(self):
        payload = _build(_ctx(query_string=""))
        assert payload["raw_url"] == "/users/42"
        assert payload["query_params"] == {}

    def test_unmatched_route_falls_back_to_path(self):
        payload = _build(_ctx(route_pattern=None, path="/nope"))
        assert payload["url_path"] == "/nope"

    def test_path_params_are_strings(self):
        payload = _build(_ctx(path_params={"id": 42}))
        assert payload["path_params"] == {"id": "42"}

    def test_header_rules_apply_to_response_headers(self):
        ctx = _ctx(response_headers=[("set-cookie", "session=abc"), ("content-type", "text/plain")])
        payload = _build(ctx, redact_header_keys=["set-cookie"])

        assert payload["response_headers"]["Set-Cookie"] == REDACTED_MARKER
        assert payload["response_headers"]["Content-Type"] == "text/plain"

    def test_request_body_redaction(self):
        """Body {"password":"abc","name":"x"} with rule "password"."""
        ctx = _ctx(method="POST", request_body=b'{"password":"abc","name":"x"}')
        payload = _build(ctx, redact_request_body=["password"])

        decoded = base64.b64decode(payload["request_body"])
        assert decoded == b'{"password":"[CLIENT_REDACTED]","name":"x"}'

    def test_response_body_uses_its_own_rules(self):
        ctx = _ctx(
            request_body=b'{"token":"req"}',
            response_body=b'{"token":"res"}',
        )
        payload = _build(ctx, redact_response_body=["token"])

        assert json.loads(base64.b64decode(payload["request_body"])) == {"token": "req"}
        assert json.loads(base64.b64decode(payload["response_body"])) == {"token": REDACTED_MARKER}

    def test_empty_bodies(self):
        """Empty bodies encode to empty strings and nothing is logged."""
        with patch("apitoolkit_fastapi.redaction.logger") as redaction_logger:
            payload = _build(_ctx(), debug=True)

        assert base64.b64decode(payload["request_body"]) == b""
        assert base64.b64decode(payload["response_body"]) == b""
        redaction_logger.info.assert_not_called()
        redaction_logger.warning.assert_not_called()

    def test_binary_body_round_trips(self):
        raw = bytes(range(256))
        payload = _build(_ctx(request_body=raw), redact_request_body=["x"])
        assert base64.b64decode(payload["request_body"]) == raw

    def test_referer_and_errors(self):
        try:
            raise ValueError("bad input")
        except ValueError as e:
            entry = build_error(e)

        ctx = _ctx(
            request_headers=[("referer", "https://app.example.com/")],
            errors=[entry],
        )
        payload = _build(ctx)

        assert payload["referer"] == "https://app.example.com/"
        assert len(payload["errors"]) == 1
        assert payload["errors"][0]["error_type"] == "ValueError"
        assert payload["errors"][0]["message"] == "bad input"

    def test_timestamp_format(self):
        moment = datetime(2024, 3, 5, 7, 8, 9, 123456, tzinfo=timezone.utc)
        payload = _build(_ctx(timestamp=moment))
        assert payload["timestamp"] == "2024-03-05T07:08:09.123Z"

    def test_default_timestamp_is_utc_millis(self):
        payload = _build(_ctx())
        assert re.fullmatch(r"\d{4}-\d\d-\d\dT\d\d:\d\d:\d\d\.\d{3}Z", payload["timestamp"])

    def test_negative_duration_clamped(self):
        assert _build(_ctx(duration_ns=-5))["duration"] == 0

    def test_identical_inputs_differ_only_in_volatile_fields(self):
        """Two captures of the same exchange differ only by id, time and duration."""
        first = _build(_ctx(msg_id="a", duration_ns=10))
        second = _build(_ctx(msg_id="b", duration_ns=20))

        for key in ("msg_id", "timestamp", "duration"):
            first.pop(key)
            second.pop(key)
        assert first == second

    def test_failure_returns_empty_bytes(self):
        """A record that cannot be built yields b"" instead of raising."""
        ctx = _ctx(status_code="not-a-number")
        assert build_payload(ctx, project_id="proj-123", debug=True) == b""
