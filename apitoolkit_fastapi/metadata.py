"""
Client Metadata
===============
One-shot fetch of the project and Pub/Sub credentials bound to an API key.
"""

import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, ValidationError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from .exceptions import InitializationError

logger = logging.getLogger(__name__)


class ClientMetadata(BaseModel):
    """Metadata document returned by the client_metadata endpoint."""
    project_id: str
    pubsub_project_id: str
    topic_id: str
    pubsub_push_service_account: Dict[str, Any]


class _TransientMetadataError(Exception):
    """Network failure or 5xx; worth another attempt."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


@retry(
    retry=retry_if_exception_type(_TransientMetadataError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.2, max=2),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
def _request_metadata(client: httpx.Client, url: str, api_key: str) -> httpx.Response:
    try:
        response = client.get(url, headers={"Authorization": f"Bearer {api_key}"})
    except httpx.TransportError as e:
        raise _TransientMetadataError(f"Failed to connect: {e}") from e

    if response.status_code >= 500:
        raise _TransientMetadataError("Server error", status_code=response.status_code)
    return response


def fetch_client_metadata(
    api_key: str,
    url: str,
    timeout: float = 10.0,
    client: Optional[httpx.Client] = None,
) -> ClientMetadata:
    """
    Fetch client metadata for ``api_key``.

    Args:
        api_key: APIToolkit API key, sent as a bearer token
        url: Full metadata endpoint URL
        timeout: Request timeout in seconds
        client: Optional preconfigured httpx client (closed by the caller)

    Raises:
        InitializationError: On network failure, non-2xx status or an
            invalid metadata document.
    """
    owns_client = client is None
    if owns_client:
        client = httpx.Client(timeout=timeout)

    try:
        response = _request_metadata(client, url, api_key)
    except _TransientMetadataError as e:
        raise InitializationError(
            f"Failed to get client metadata: {e}", status_code=e.status_code
        ) from e
    finally:
        if owns_client:
            client.close()

    if not response.is_success:
        raise InitializationError(
            "Failed to get client metadata",
            status_code=response.status_code,
            details=response.text,
        )

    try:
        return ClientMetadata.model_validate(response.json())
    except (ValueError, ValidationError) as e:
        raise InitializationError(f"Invalid client metadata: {e}") from e
