"""
Payload Builder
===============
Turns one completed HTTP transaction into the wire record published to the
monitoring topic.
"""

import base64
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union
from urllib.parse import parse_qsl

import structlog
from pydantic import BaseModel

from .config import SDK_TYPE
from .error_reporting import ATError, format_timestamp
from .redaction import redact_body, redact_headers

logger = structlog.get_logger(__name__)

HeaderInput = Union[Mapping[str, str], Iterable[Tuple[str, str]]]

_ROUTE_PARAM_RE = re.compile(r"\{([^}:]+)(?::[^}]*)?\}")


@dataclass
class TransactionContext:
    """Everything the builder needs from one finished request/response cycle."""
    method: str
    path: str
    query_string: str = ""
    route_pattern: Optional[str] = None
    host: str = ""
    status_code: int = 200
    duration_ns: int = 0
    proto_major: int = 1
    proto_minor: int = 1
    request_headers: HeaderInput = field(default_factory=list)
    response_headers: HeaderInput = field(default_factory=list)
    path_params: Mapping[str, Any] = field(default_factory=dict)
    request_body: bytes = b""
    response_body: bytes = b""
    msg_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    errors: List[ATError] = field(default_factory=list)
    timestamp: Optional[datetime] = None


class Payload(BaseModel):
    """Wire record. Field order is the serialized key order."""
    request_headers: Dict[str, str]
    response_headers: Dict[str, str]
    status_code: int
    method: str
    errors: List[ATError]
    host: str
    raw_url: str
    duration: int
    url_path: str
    query_params: Dict[str, str]
    path_params: Dict[str, str]
    project_id: str
    proto_major: int
    proto_minor: int
    msg_id: str
    timestamp: str
    referer: str
    sdk_type: str
    request_body: str
    response_body: str


def canonical_header_name(name: str) -> str:
    """content-type -> Content-Type"""
    return "-".join(part.capitalize() for part in name.split("-"))


def collect_headers(headers: HeaderInput) -> Dict[str, str]:
    """Fold headers into a Title-Case keyed dict, joining repeated names."""
    items = headers.items() if isinstance(headers, Mapping) else headers
    collected: Dict[str, str] = {}
    for name, value in items:
        key = canonical_header_name(name)
        if key in collected:
            collected[key] = f"{collected[key]}, {value}"
        else:
            collected[key] = value
    return collected


def collect_query_params(query_string: str) -> Dict[str, str]:
    params: Dict[str, str] = {}
    for key, value in parse_qsl(query_string, keep_blank_values=True):
        params.setdefault(key, value)
    return params


def build_raw_url(path: str, query_string: str) -> str:
    return f"{path}?{query_string}" if query_string else path


def normalize_route_pattern(pattern: str) -> str:
    """/users/{id} -> /users/:id, /files/{p:path} -> /files/:p"""
    return _ROUTE_PARAM_RE.sub(lambda m: f":{m.group(1)}", pattern)


def strip_port(host: str) -> str:
    if host.startswith("["):
        return host[: host.find("]") + 1] if "]" in host else host
    name, sep, port = host.rpartition(":")
    if sep and port.isdigit():
        return name
    return host


def encode_body(body: bytes) -> str:
    return base64.b64encode(body or b"").decode("ascii")


def build_payload(
    ctx: TransactionContext,
    *,
    project_id: str,
    redact_header_keys: Iterable[str] = (),
    redact_request_body: Iterable[str] = (),
    redact_response_body: Iterable[str] = (),
    debug: bool = False,
) -> bytes:
    """
    Build and serialize the record for one transaction.

    Returns b"" when the record cannot be built; a dropped event must never
    fail the response it describes.
    """
    try:
        request_headers = collect_headers(ctx.request_headers)
        response_headers = collect_headers(ctx.response_headers)

        host = ctx.host or request_headers.get("Host", "")
        referer = request_headers.get("Referer", "")

        payload = Payload(
            request_headers=redact_headers(request_headers, redact_header_keys),
            response_headers=redact_headers(response_headers, redact_header_keys),
            status_code=ctx.status_code,
            method=ctx.method.upper(),
            errors=list(ctx.errors or []),
            host=strip_port(host),
            raw_url=build_raw_url(ctx.path, ctx.query_string),
            duration=max(int(ctx.duration_ns), 0),
            url_path=normalize_route_pattern(ctx.route_pattern or ctx.path),
            query_params=collect_query_params(ctx.query_string),
            path_params={key: str(value) for key, value in ctx.path_params.items()},
            project_id=project_id,
            proto_major=ctx.proto_major,
            proto_minor=ctx.proto_minor,
            msg_id=ctx.msg_id,
            timestamp=format_timestamp(ctx.timestamp),
            referer=referer,
            sdk_type=SDK_TYPE,
            request_body=encode_body(
                redact_body(ctx.request_body, redact_request_body, debug=debug)
            ),
            response_body=encode_body(
                redact_body(ctx.response_body, redact_response_body, debug=debug)
            ),
        )
        return payload.model_dump_json().encode("utf-8")
    except Exception as e:
        if debug:
            logger.warning(
                "payload_build_failed",
                msg_id=ctx.msg_id,
                error=str(e),
                error_type=type(e).__name__,
            )
        return b""
