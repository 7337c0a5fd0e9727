"""
Capture Middleware
==================
ASGI middleware that captures every HTTP exchange and publishes it to
APIToolkit.

Usage (FastAPI):
    app.add_middleware(APIToolkitMiddleware, client=apitoolkit)

The response is never altered and never waits on the publish call.

Bodies are captured up to ``APIToolkitConfig.max_body_size`` bytes each. A
truncated body cannot be parsed for redaction, so it is dropped when body
redaction rules are configured for it.

Unhandled exceptions are recorded as status 500. Exception handlers
registered for ``Exception`` / 500 run in ``ServerErrorMiddleware``, outside
this middleware, so a different status they send is not visible here.
"""

import time
import uuid
from typing import Any, Dict, Iterable, List, Optional, Tuple

import structlog
from starlette.routing import Match, Mount
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .client import APIToolkit
from .config import ERRORS_STATE_KEY, MSG_ID_STATE_KEY
from .error_reporting import get_scope_errors, record_error
from .payload import TransactionContext

logger = structlog.get_logger(__name__)


class BodyCapture:
    """Bounded prefix of a body that is streamed through the middleware."""

    def __init__(self, limit: int):
        self.limit = limit
        self.size = 0
        self.truncated = False
        self._chunks: List[bytes] = []

    def append(self, chunk: bytes) -> None:
        if not chunk:
            return
        room = self.limit - self.size
        if room <= 0:
            self.truncated = True
            return
        if len(chunk) > room:
            chunk = chunk[:room]
            self.truncated = True
        self._chunks.append(chunk)
        self.size += len(chunk)

    @property
    def full(self) -> bool:
        return self.size >= self.limit

    def getvalue(self) -> bytes:
        return b"".join(self._chunks)


def _decode_headers(raw: List[Tuple[bytes, bytes]]) -> List[Tuple[str, str]]:
    return [(name.decode("latin-1"), value.decode("latin-1")) for name, value in raw]


def _http_version(scope: Scope) -> Tuple[int, int]:
    major, _, minor = str(scope.get("http_version", "1.1")).partition(".")
    try:
        return int(major), int(minor or 0)
    except ValueError:
        return 1, 1


def _host(scope: Scope, headers: List[Tuple[str, str]]) -> str:
    for name, value in headers:
        if name.lower() == "host":
            return value
    server = scope.get("server")
    return server[0] if server else ""


def _mount_prefix(scope: Scope, match_scope: Scope) -> str:
    original = match_scope.get("root_path", "")
    current = scope.get("root_path", "")
    if current.startswith(original):
        return current[len(original):]
    return ""


def _match_routes(routes: Iterable[Any], scope: Scope) -> Optional[str]:
    for candidate in routes:
        match, child_scope = candidate.matches(scope)
        if match != Match.FULL:
            continue
        path = getattr(candidate, "path", None)
        sub_routes = getattr(candidate, "routes", None)
        if sub_routes:
            nested = _match_routes(sub_routes, {**scope, **child_scope})
            if nested is None:
                return None
            return f"{path or ''}{nested}"
        return path
    return None


def resolve_route_pattern(scope: Scope, match_scope: Optional[Scope] = None) -> Optional[str]:
    """
    Route template that served the request, e.g. ``/v1/users/{id}``.

    The router records the matched route in ``scope["route"]``, relative to
    the innermost mount; the mount prefix is recovered from ``root_path``.
    Without a recorded route the app's routes are matched again, descending
    into mounts.
    """
    match_scope = match_scope or scope
    route = scope.get("route")
    # A mount left as the final route means nothing inside it matched
    if route is not None and getattr(route, "path", None) and not isinstance(route, Mount):
        return _mount_prefix(scope, match_scope) + route.path

    router = scope.get("router") or match_scope.get("app")
    return _match_routes(getattr(router, "routes", None) or [], match_scope)


async def _buffer_request_body(receive: Receive, capture: BodyCapture) -> Receive:
    """
    Read the request body up to the capture limit before the app runs.

    Returns a receive that replays the messages read so far and then hands
    over to the server for the remainder.
    """
    queued: List[Message] = []
    while not capture.full:
        message = await receive()
        queued.append(message)
        if message["type"] != "http.request":
            break
        capture.append(message.get("body", b""))
        if not message.get("more_body", False):
            break

    async def replay() -> Message:
        if queued:
            return queued.pop(0)
        message = await receive()
        if message["type"] == "http.request":
            capture.append(message.get("body", b""))
        return message

    return replay


class APIToolkitMiddleware:
    """
    Captures request/response metadata for APIToolkit.

    Per request: assigns a correlation id (``request.state.apitoolkit_msg_id``),
    buffers the request body, records the response status, headers and body
    as they are sent, then builds the payload and publishes it.
    """

    def __init__(self, app: ASGIApp, client: APIToolkit):
        self.app = app
        self.client = client

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start = time.perf_counter_ns()
        msg_id = str(uuid.uuid4())
        state = scope.setdefault("state", {})
        state[MSG_ID_STATE_KEY] = msg_id
        state[ERRORS_STATE_KEY] = []

        limit = self.client.config.max_body_size
        request_body = BodyCapture(limit)
        response_body = BodyCapture(limit)
        match_scope = dict(scope)
        replay = await _buffer_request_body(receive, request_body)

        response: Dict[str, Any] = {"status": None, "headers": []}

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                response["status"] = message["status"]
                response["headers"] = list(message.get("headers", []))
            elif message["type"] == "http.response.body":
                response_body.append(message.get("body", b""))
            await send(message)

        try:
            await self.app(scope, replay, send_wrapper)
        except Exception as e:
            record_error(scope, e)
            raise
        finally:
            duration_ns = time.perf_counter_ns() - start
            self._capture(
                scope, match_scope, msg_id, duration_ns, request_body, response, response_body
            )

    def _body(self, capture: BodyCapture, rules: Tuple[str, ...]) -> bytes:
        if capture.truncated and rules:
            return b""
        return capture.getvalue()

    def _capture(
        self,
        scope: Scope,
        match_scope: Scope,
        msg_id: str,
        duration_ns: int,
        request_body: BodyCapture,
        response: Dict[str, Any],
        response_body: BodyCapture,
    ) -> None:
        config = self.client.config
        try:
            request_headers = _decode_headers(scope.get("headers", []))
            proto_major, proto_minor = _http_version(scope)
            ctx = TransactionContext(
                method=scope.get("method", "GET"),
                path=scope.get("path", ""),
                query_string=scope.get("query_string", b"").decode("latin-1"),
                route_pattern=resolve_route_pattern(scope, match_scope),
                host=_host(scope, request_headers),
                status_code=response["status"] or 500,
                duration_ns=duration_ns,
                proto_major=proto_major,
                proto_minor=proto_minor,
                request_headers=request_headers,
                response_headers=_decode_headers(response["headers"]),
                path_params=scope.get("path_params") or {},
                request_body=self._body(request_body, config.redact_request_body),
                response_body=self._body(response_body, config.redact_response_body),
                msg_id=msg_id,
                errors=get_scope_errors(scope),
            )
            self.client.capture(ctx)
        except Exception as e:
            if self.client.debug:
                logger.warning(
                    "apitoolkit_capture_failed",
                    msg_id=msg_id,
                    path=scope.get("path"),
                    error=str(e),
                )
