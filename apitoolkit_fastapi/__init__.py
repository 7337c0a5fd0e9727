"""
APIToolkit FastAPI SDK
======================
Captures request/response metadata for every HTTP exchange handled by a
FastAPI / Starlette app and publishes it to APIToolkit over Pub/Sub.
"""

__version__ = "0.1.0"

from apitoolkit_fastapi.config import (
    APIToolkitConfig,
    DEFAULT_ROOT_URL,
    REDACTED_MARKER,
    SDK_TYPE,
)
from apitoolkit_fastapi.exceptions import APIToolkitError, InitializationError
from apitoolkit_fastapi.redaction import redact_headers, redact_body
from apitoolkit_fastapi.error_reporting import ATError, report_error, get_msg_id
from apitoolkit_fastapi.payload import Payload, TransactionContext, build_payload
from apitoolkit_fastapi.metadata import ClientMetadata, fetch_client_metadata
from apitoolkit_fastapi.publisher import PubSubPublisher
from apitoolkit_fastapi.client import APIToolkit
from apitoolkit_fastapi.middleware import APIToolkitMiddleware

__all__ = [
    # Config
    "APIToolkitConfig",
    "DEFAULT_ROOT_URL",
    "REDACTED_MARKER",
    "SDK_TYPE",
    # Errors
    "APIToolkitError",
    "InitializationError",
    # Redaction
    "redact_headers",
    "redact_body",
    # Error reporting
    "ATError",
    "report_error",
    "get_msg_id",
    # Payload
    "Payload",
    "TransactionContext",
    "build_payload",
    # Client
    "ClientMetadata",
    "fetch_client_metadata",
    "PubSubPublisher",
    "APIToolkit",
    "APIToolkitMiddleware",
]
