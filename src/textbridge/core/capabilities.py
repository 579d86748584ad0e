from __future__ import annotations

from datetime import datetime
from typing import AsyncIterator, List, Optional, Protocol, runtime_checkable

from .models import InboundEnvelope, InboundMessage, ReplyEvent, SendReceipt


@runtime_checkable
class ProviderClient(Protocol):
    """Operations the core calls on the SMS/iMessage provider.

    Implementations raise ``TransientProviderError`` for network failures and
    error responses; the core never retries inline.
    """

    async def fetch_inbound(self, since: datetime) -> List[InboundMessage]:  # pragma: no cover - protocol
        ...

    async def send_message(
        self, to: str, content: str, media_url: Optional[str] = None
    ) -> SendReceipt:  # pragma: no cover - protocol
        ...

    async def upload_media(self, path: str) -> str:  # pragma: no cover - protocol
        ...

    async def mark_read(self, number: str) -> None:  # pragma: no cover - protocol
        ...

    async def send_typing_indicator(self, number: str) -> None:  # pragma: no cover - protocol
        ...

    async def get_message_status(self, message_handle: str) -> Optional[str]:  # pragma: no cover - protocol
        ...


@runtime_checkable
class ReplyBackend(Protocol):
    """Conversational backend that turns an envelope into a stream of reply events.

    The core never interprets reply content; it only relays chunks to the
    provider in the order they are yielded.
    """

    def dispatch(self, envelope: InboundEnvelope) -> AsyncIterator[ReplyEvent]:  # pragma: no cover - protocol
        ...
