"""
APIToolkit Configuration
========================
Client configuration and wire constants.
"""

import os
from dataclasses import dataclass, field
from typing import Tuple

DEFAULT_ROOT_URL = "https://app.apitoolkit.io"
CLIENT_METADATA_PATH = "/api/client_metadata"

REDACTED_MARKER = "[CLIENT_REDACTED]"
SDK_TYPE = "PythonFastApi"

# Capture limit per body, in bytes
DEFAULT_MAX_BODY_SIZE = 1024 * 1024

# Request-scoped state keys (scope["state"])
MSG_ID_STATE_KEY = "apitoolkit_msg_id"
ERRORS_STATE_KEY = "apitoolkit_errors"


def _env_list(name: str) -> Tuple[str, ...]:
    raw = os.getenv(name, "")
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def _env_bool(name: str) -> bool:
    return os.getenv(name, "false").lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class APIToolkitConfig:
    """Configuration for an APIToolkit client. Resolved once at startup."""
    api_key: str = field(default_factory=lambda: os.getenv("APITOOLKIT_KEY", ""))
    root_url: str = field(
        default_factory=lambda: os.getenv("APITOOLKIT_ROOT_URL", DEFAULT_ROOT_URL)
    )
    debug: bool = field(default_factory=lambda: _env_bool("APITOOLKIT_DEBUG"))
    redact_headers: Tuple[str, ...] = field(
        default_factory=lambda: _env_list("APITOOLKIT_REDACT_HEADERS")
    )
    redact_request_body: Tuple[str, ...] = field(
        default_factory=lambda: _env_list("APITOOLKIT_REDACT_REQUEST_BODY")
    )
    redact_response_body: Tuple[str, ...] = field(
        default_factory=lambda: _env_list("APITOOLKIT_REDACT_RESPONSE_BODY")
    )
    max_body_size: int = field(
        default_factory=lambda: int(os.getenv("APITOOLKIT_MAX_BODY_SIZE", str(DEFAULT_MAX_BODY_SIZE)))
    )
    timeout: float = 10.0

    def __post_init__(self):
        # Accept lists from callers but store immutable tuples
        for name in ("redact_headers", "redact_request_body", "redact_response_body"):
            value = getattr(self, name) or ()
            if isinstance(value, str):
                value = (value,)
            object.__setattr__(self, name, tuple(value))
        object.__setattr__(self, "root_url", (self.root_url or DEFAULT_ROOT_URL).rstrip("/"))

    @property
    def metadata_url(self) -> str:
        return f"{self.root_url}{CLIENT_METADATA_PATH}"
