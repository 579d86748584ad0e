"""HTTP chat backend: forwards envelopes to a ``/chat`` endpoint."""

from __future__ import annotations

import logging
import re
from typing import AsyncIterator, Optional

import httpx
from pydantic import BaseModel, ValidationError

from .models import InboundEnvelope, ReplyChunk, ReplyEvent, ReplyFailed, ReplyIdle, ReplyStarted

logger = logging.getLogger(__name__)

_SESSION_SAFE_RE = re.compile(r"\W")


class ChatRequest(BaseModel):
    """Request format for the chat backend."""
    message: str
    session_id: str


class ChatResponse(BaseModel):
    """Response format from the chat backend."""
    response: str
    session_id: str


def create_session_id(adapter: str, identifier: str) -> str:
    """Build a backend session id, e.g. ("sendblue", "+15551234567") -> "sendblue_15551234567"."""
    return f"{adapter}_{_SESSION_SAFE_RE.sub('', identifier)}"


class HttpChatBackend:
    """Reply backend that posts each envelope to ``<base_url>/chat``.

    The whole reply arrives in one HTTP response, so a dispatch yields
    ``ReplyStarted``, at most one ``ReplyChunk`` and ``ReplyIdle``; failures are
    reported as ``ReplyFailed`` instead of raised.
    """

    def __init__(
        self,
        base_url: str,
        adapter_name: str = "sendblue",
        timeout: float = 120.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.adapter_name = adapter_name
        # Generous timeout: first replies of a session can be slow
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    async def dispatch(self, envelope: InboundEnvelope) -> AsyncIterator[ReplyEvent]:
        request = ChatRequest(
            message=envelope.body,
            session_id=create_session_id(self.adapter_name, envelope.chat_id),
        )
        yield ReplyStarted()
        try:
            response = await self.client.post(f"{self.base_url}/chat", json=request.model_dump())
            response.raise_for_status()
            chat_response = ChatResponse(**response.json())
        except (httpx.HTTPError, ValueError, ValidationError) as e:
            logger.error("Chat backend error for %s: %s", request.session_id, e)
            yield ReplyFailed(error=str(e))
            return

        logger.info("Chat backend replied for %s (%d chars)", request.session_id, len(chat_response.response))
        if chat_response.response.strip():
            yield ReplyChunk(text=chat_response.response)
        yield ReplyIdle()

    async def aclose(self) -> None:
        await self.client.aclose()
