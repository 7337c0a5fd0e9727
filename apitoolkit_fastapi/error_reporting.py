"""
Error Reporting
===============
Request-scoped side channel for attaching errors to the captured transaction.

Usage:
    from apitoolkit_fastapi import report_error

    @app.get("/orders/{order_id}")
    async def get_order(request: Request, order_id: str):
        try:
            return await load_order(order_id)
        except OrderLookupError as e:
            report_error(request, e)
            raise HTTPException(status_code=404)

Errors are stored in ``request.state`` and read by the capture middleware
when it builds the payload for the request.
"""

import traceback
from datetime import datetime, timezone
from typing import Any, Dict, List, MutableMapping, Optional

from fastapi import Request
from pydantic import BaseModel

from .config import ERRORS_STATE_KEY, MSG_ID_STATE_KEY


def format_timestamp(moment: Optional[datetime] = None) -> str:
    """Format a UTC timestamp as yyyy-MM-ddTHH:mm:ss.SSSZ."""
    moment = (moment or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


class ATError(BaseModel):
    """Structured error entry attached to a transaction."""
    when: str
    error_type: str
    root_error_type: str
    message: str
    root_error_message: str
    stack_trace: str


def _root_cause(error: BaseException) -> BaseException:
    seen = {id(error)}
    root = error
    while True:
        nxt = root.__cause__ or root.__context__
        if nxt is None or id(nxt) in seen:
            return root
        seen.add(id(nxt))
        root = nxt


def build_error(error: BaseException) -> ATError:
    root = _root_cause(error)
    return ATError(
        when=format_timestamp(),
        error_type=type(error).__name__,
        root_error_type=type(root).__name__,
        message=str(error),
        root_error_message=str(root),
        stack_trace="".join(
            traceback.format_exception(type(error), error, error.__traceback__)
        ),
    )


def _state(scope: MutableMapping[str, Any]) -> Dict[str, Any]:
    return scope.setdefault("state", {})


def get_scope_errors(scope: MutableMapping[str, Any]) -> List[ATError]:
    return list(_state(scope).get(ERRORS_STATE_KEY) or [])


def record_error(scope: MutableMapping[str, Any], error: BaseException) -> ATError:
    """Append an error entry to the transaction owning ``scope``."""
    entry = build_error(error)
    _state(scope).setdefault(ERRORS_STATE_KEY, []).append(entry)
    return entry


def report_error(request: Request, error: BaseException) -> ATError:
    """Attach ``error`` to the transaction currently being captured for ``request``."""
    return record_error(request.scope, error)


def get_msg_id(request: Request) -> Optional[str]:
    """Correlation id assigned to ``request`` by the capture middleware."""
    return _state(request.scope).get(MSG_ID_STATE_KEY)
