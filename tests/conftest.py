import json

import pytest

from apitoolkit_fastapi.client import APIToolkit
from apitoolkit_fastapi.config import APIToolkitConfig
from apitoolkit_fastapi.metadata import ClientMetadata


METADATA_DOC = {
    "project_id": "proj-123",
    "pubsub_project_id": "pubsub-proj",
    "topic_id": "apitoolkit-topic",
    "pubsub_push_service_account": {"type": "service_account", "client_email": "x@y.iam"},
}


class FakePublisher:
    """Records published payloads instead of talking to Pub/Sub."""

    def __init__(self, fail: bool = False):
        self.messages = []
        self.fail = fail
        self.closed = False

    def publish(self, data: bytes):
        if self.fail:
            raise RuntimeError("publisher unavailable")
        self.messages.append(data)
        return None

    def close(self):
        self.closed = True

    def payloads(self):
        return [json.loads(message) for message in self.messages]


@pytest.fixture
def metadata():
    return ClientMetadata.model_validate(METADATA_DOC)


@pytest.fixture
def publisher():
    return FakePublisher()


@pytest.fixture
def make_client(metadata, publisher):
    def _make(**config_kwargs):
        config_kwargs.setdefault("api_key", "test-key")
        config = APIToolkitConfig(**config_kwargs)
        return APIToolkit(config, metadata, publisher=publisher)

    return _make


@pytest.fixture
def metadata_doc():
    return dict(METADATA_DOC)
