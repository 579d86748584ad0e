"""Shared fixtures and fakes for the provider and backend collaborators."""

from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

import pytest

from textbridge.core.access import AccessGuard, AccessPolicy
from textbridge.core.dedup import Deduplicator
from textbridge.core.exceptions import TransientProviderError
from textbridge.core.history import ConversationHistory
from textbridge.core.models import (
    InboundEnvelope,
    InboundMessage,
    ReplyChunk,
    ReplyIdle,
    ReplyStarted,
    SendReceipt,
)
from textbridge.core.pipeline import IngestionPipeline
from textbridge.core.reconciler import DeliveryStatusReconciler
from textbridge.core.store import Store


class FakeProvider:
    """In-memory provider recording every call."""

    def __init__(self):
        self.inbound: List[InboundMessage] = []
        self.fetch_calls: List[datetime] = []
        self.fetch_error: Optional[Exception] = None
        self.sent: List[Tuple[str, str, Optional[str]]] = []
        self.send_error: Optional[Exception] = None
        self.uploads: List[str] = []
        self.read: List[str] = []
        self.read_error: Optional[Exception] = None
        self.typing: List[str] = []
        self.statuses: Dict[str, str] = {}
        self.status_errors: Set[str] = set()
        self.status_queries: List[str] = []
        self._sent_count = 0

    async def fetch_inbound(self, since: datetime) -> List[InboundMessage]:
        self.fetch_calls.append(since)
        if self.fetch_error is not None:
            raise self.fetch_error
        return list(self.inbound)

    async def send_message(self, to: str, content: str, media_url: Optional[str] = None) -> SendReceipt:
        if self.send_error is not None:
            raise self.send_error
        self._sent_count += 1
        self.sent.append((to, content, media_url))
        return SendReceipt(message_handle=f"out-{self._sent_count}", status="QUEUED")

    async def upload_media(self, path: str) -> str:
        self.uploads.append(path)
        return f"https://cdn.example.com/{Path(path).name}"

    async def mark_read(self, number: str) -> None:
        if self.read_error is not None:
            raise self.read_error
        self.read.append(number)

    async def send_typing_indicator(self, number: str) -> None:
        self.typing.append(number)

    async def get_message_status(self, message_handle: str) -> Optional[str]:
        self.status_queries.append(message_handle)
        if message_handle in self.status_errors:
            raise TransientProviderError(f"status lookup failed for {message_handle}")
        return self.statuses.get(message_handle)


class FakeBackend:
    """Backend replying with a fixed event script per envelope."""

    def __init__(self, events=None):
        self.envelopes: List[InboundEnvelope] = []
        self.events = events if events is not None else [
            ReplyStarted(),
            ReplyChunk(text="Hello back"),
            ReplyIdle(),
        ]

    async def dispatch(self, envelope: InboundEnvelope):
        self.envelopes.append(envelope)
        for event in self.events:
            yield event


def make_message(handle: str = "m1", sender: str = "+15559876543", **kwargs) -> InboundMessage:
    data = {
        "message_handle": handle,
        "from_number": sender,
        "to_number": "+15550001111",
        "content": "hi there",
    }
    data.update(kwargs)
    return InboundMessage(**data)


@pytest.fixture
async def store(tmp_path):
    s = Store(f"sqlite+aiosqlite:///{tmp_path / 'adapter.db'}")
    await s.init()
    yield s
    await s.close()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def deduplicator(store):
    return Deduplicator(store)


@pytest.fixture
def reconciler(store, provider):
    return DeliveryStatusReconciler(store, provider)


@pytest.fixture
def history(tmp_path):
    return ConversationHistory(tmp_path / "history")


@pytest.fixture
def pipeline(deduplicator, provider, backend, reconciler, history):
    return IngestionPipeline(
        deduplicator=deduplicator,
        access_guard=AccessGuard(AccessPolicy.from_config("open")),
        provider=provider,
        backend=backend,
        reconciler=reconciler,
        history=history,
        own_number="+15550001111",
    )
