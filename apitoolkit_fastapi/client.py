"""
APIToolkit Client
=================
Process-wide handle that owns the configuration, the client metadata and the
shared publisher.

Usage:
    from fastapi import FastAPI
    from apitoolkit_fastapi import APIToolkit, APIToolkitMiddleware

    apitoolkit = APIToolkit.new_client(
        api_key="<API_KEY>",
        redact_headers=["Authorization", "Cookie"],
        redact_request_body=["$.password"],
    )

    app = FastAPI()
    app.add_middleware(APIToolkitMiddleware, client=apitoolkit)
"""

from dataclasses import replace
from typing import Iterable, Optional

import httpx
import structlog

from .config import APIToolkitConfig
from .exceptions import InitializationError
from .metadata import ClientMetadata, fetch_client_metadata
from .payload import TransactionContext, build_payload
from .publisher import PubSubPublisher

logger = structlog.get_logger(__name__)


class APIToolkit:
    """
    Shared, read-only capture client.

    Construct once at startup with ``new_client``; the instance is passed to
    ``APIToolkitMiddleware`` and used concurrently by every request.
    """

    def __init__(self, config: APIToolkitConfig, metadata: ClientMetadata, publisher=None):
        self.config = config
        self.metadata = metadata
        if publisher is None:
            try:
                publisher = PubSubPublisher(
                    project_id=metadata.pubsub_project_id,
                    topic_id=metadata.topic_id,
                    credentials_info=metadata.pubsub_push_service_account,
                    debug=config.debug,
                )
            except Exception as e:
                raise InitializationError(f"Error initializing publisher: {e}") from e
        self.publisher = publisher

    @classmethod
    def new_client(
        cls,
        api_key: Optional[str] = None,
        *,
        debug: Optional[bool] = None,
        redact_headers: Optional[Iterable[str]] = None,
        redact_request_body: Optional[Iterable[str]] = None,
        redact_response_body: Optional[Iterable[str]] = None,
        root_url: Optional[str] = None,
        config: Optional[APIToolkitConfig] = None,
        http_client: Optional[httpx.Client] = None,
        publisher=None,
    ) -> "APIToolkit":
        """
        Fetch client metadata and build a ready-to-use client.

        Arguments left as None fall back to ``config`` (or to the
        environment when no config is given).

        Raises:
            InitializationError: If the API key is missing, the metadata
                fetch fails, or the publisher cannot be constructed.
        """
        overrides = {
            "api_key": api_key,
            "debug": debug,
            "redact_headers": redact_headers,
            "redact_request_body": redact_request_body,
            "redact_response_body": redact_response_body,
            "root_url": root_url,
        }
        overrides = {k: v for k, v in overrides.items() if v is not None}
        if config is None:
            config = APIToolkitConfig(**overrides)
        elif overrides:
            config = replace(config, **overrides)

        if not config.api_key:
            raise InitializationError("API key is required")

        metadata = fetch_client_metadata(
            config.api_key,
            config.metadata_url,
            timeout=config.timeout,
            client=http_client,
        )
        client = cls(config, metadata, publisher=publisher)
        if config.debug:
            logger.info(
                "apitoolkit_client_initialized",
                project_id=metadata.project_id,
                topic_id=metadata.topic_id,
            )
        return client

    @property
    def project_id(self) -> str:
        return self.metadata.project_id

    @property
    def debug(self) -> bool:
        return self.config.debug

    def build_payload(self, ctx: TransactionContext) -> bytes:
        return build_payload(
            ctx,
            project_id=self.project_id,
            redact_header_keys=self.config.redact_headers,
            redact_request_body=self.config.redact_request_body,
            redact_response_body=self.config.redact_response_body,
            debug=self.debug,
        )

    def publish_message(self, payload: bytes):
        """
        Hand ``payload`` to the publisher without waiting for delivery.

        Empty payloads are dropped. Returns the publish future, or None when
        nothing was queued.
        """
        if not payload:
            if self.debug:
                logger.info("apitoolkit_payload_dropped", reason="empty_payload")
            return None
        try:
            return self.publisher.publish(payload)
        except Exception as e:
            if self.debug:
                logger.warning(
                    "apitoolkit_publish_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )
            return None

    def capture(self, ctx: TransactionContext):
        """Build the record for ``ctx`` and publish it."""
        return self.publish_message(self.build_payload(ctx))

    def close(self) -> None:
        self.publisher.close()
