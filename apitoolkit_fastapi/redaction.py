"""
Redaction
=========
Field-level redaction for captured headers and JSON bodies.

Header rules are flat names matched case-insensitively. Body rules are paths
into the parsed document:

    password            top-level key
    $.user.password     nested key, optional "$" root
    items[0].token      list index
    items[*].token      every element (also "items.*.token")
    $['x-key']          quoted key
"""

import json
import re
from typing import Any, Dict, Iterable, List, Mapping, Union

import structlog

from .config import REDACTED_MARKER

logger = structlog.get_logger(__name__)

WILDCARD = object()

PathToken = Union[str, int, object]

_TOKEN_RE = re.compile(
    r"""
      \[(?P<index>-?\d+)\]
    | \[(?P<wild>\*)\]
    | \[(?P<quote>['"])(?P<quoted>.*?)(?P=quote)\]
    | \.?(?P<key>[^.\[\]]+)
    """,
    re.VERBOSE,
)


def redact_headers(headers: Mapping[str, Any], sensitive_keys: Iterable[str]) -> Dict[str, Any]:
    """Return a new mapping with sensitive header values replaced by the marker."""
    sensitive = {key.lower() for key in sensitive_keys}
    return {
        name: REDACTED_MARKER if name.lower() in sensitive else value
        for name, value in headers.items()
    }


def parse_path(path: str) -> List[PathToken]:
    """
    Split a body redaction path into tokens.

    Raises:
        ValueError: If the path cannot be tokenized.
    """
    expr = path.strip()
    if expr.startswith("$"):
        expr = expr[1:]

    tokens: List[PathToken] = []
    pos = 0
    while pos < len(expr):
        match = _TOKEN_RE.match(expr, pos)
        if match is None or match.end() == pos:
            raise ValueError(f"Invalid redaction path {path!r} at offset {pos}")
        if match.group("index") is not None:
            tokens.append(int(match.group("index")))
        elif match.group("wild") is not None:
            tokens.append(WILDCARD)
        elif match.group("quote") is not None:
            tokens.append(match.group("quoted"))
        elif match.group("key") == "*":
            tokens.append(WILDCARD)
        else:
            tokens.append(match.group("key"))
        pos = match.end()

    if not tokens:
        raise ValueError(f"Empty redaction path {path!r}")
    return tokens


def _child_keys(node: Any, token: PathToken) -> list:
    if token is WILDCARD:
        if isinstance(node, dict):
            return list(node)
        if isinstance(node, list):
            return list(range(len(node)))
        return []

    if isinstance(node, dict):
        return [token] if token in node else []

    if isinstance(node, list):
        if isinstance(token, str) and token.isdigit():
            token = int(token)
        if isinstance(token, int) and -len(node) <= token < len(node):
            return [token]
    return []


def _redact_node(node: Any, tokens: List[PathToken]) -> bool:
    head, rest = tokens[0], tokens[1:]
    changed = False
    for key in _child_keys(node, head):
        if rest:
            changed = _redact_node(node[key], rest) or changed
        else:
            node[key] = REDACTED_MARKER
            changed = True
    return changed


def redact_document(document: Any, paths: Iterable[str], debug: bool = False) -> bool:
    """
    Redact every node addressed by ``paths`` inside ``document`` in place.

    Returns True if at least one node was replaced. Unknown paths are ignored.
    """
    changed = False
    for path in paths:
        try:
            tokens = parse_path(path)
        except ValueError as e:
            if debug:
                logger.warning("redaction_path_invalid", path=path, error=str(e))
            continue
        changed = _redact_node(document, tokens) or changed
    return changed


def _reject_constant(name: str):
    raise ValueError(f"{name} is not valid JSON")


def redact_body(body: bytes, paths: Iterable[str], debug: bool = False) -> bytes:
    """
    Redact a JSON body.

    Bodies that are empty, not JSON, or untouched by every path are returned
    unchanged. Parse failures are never raised. A redacted document that
    cannot be written back as strict JSON (numbers outside the float range)
    is dropped and b"" is returned.
    """
    paths = list(paths)
    if not body or not paths:
        return body

    try:
        document = json.loads(body, parse_constant=_reject_constant)
    except (ValueError, UnicodeDecodeError) as e:
        if debug:
            logger.info("redaction_body_not_json", error=str(e), size=len(body))
        return body

    if not redact_document(document, paths, debug=debug):
        return body

    try:
        redacted = json.dumps(
            document, separators=(",", ":"), ensure_ascii=False, allow_nan=False
        )
    except ValueError as e:
        if debug:
            logger.warning("redaction_body_dropped", error=str(e), size=len(body))
        return b""
    return redacted.encode("utf-8")
