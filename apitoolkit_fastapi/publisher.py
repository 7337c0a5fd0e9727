"""
Pub/Sub Publisher
=================
Fire-and-forget publishing of transaction records.

``PublisherClient.publish`` batches messages on its own background thread and
returns a future immediately, so callers on the request path never wait for
the network. Failures are reported through a done-callback.
"""

from concurrent.futures import Future
from typing import Any, Dict, Optional

import structlog
from google.cloud import pubsub_v1
from google.oauth2 import service_account

logger = structlog.get_logger(__name__)


class PubSubPublisher:
    """Publishes payloads to one Pub/Sub topic. Safe to share across requests."""

    def __init__(
        self,
        project_id: str,
        topic_id: str,
        credentials_info: Optional[Dict[str, Any]] = None,
        debug: bool = False,
        client: Optional[pubsub_v1.PublisherClient] = None,
    ):
        if client is None:
            credentials = service_account.Credentials.from_service_account_info(
                credentials_info or {}
            )
            client = pubsub_v1.PublisherClient(credentials=credentials)
        self._client = client
        self.debug = debug
        self.topic_path = client.topic_path(project_id, topic_id)

    def publish(self, data: bytes) -> Future:
        """Queue ``data`` for publishing and return without waiting."""
        future = self._client.publish(self.topic_path, data)
        future.add_done_callback(self._on_published)
        return future

    def _on_published(self, future: Future) -> None:
        try:
            message_id = future.result()
        except Exception as e:
            if self.debug:
                logger.warning(
                    "apitoolkit_publish_failed",
                    topic=self.topic_path,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            return
        if self.debug:
            logger.info("apitoolkit_message_published", topic=self.topic_path, message_id=message_id)

    def close(self) -> None:
        """Flush queued messages and stop the batching thread."""
        self._client.stop()
