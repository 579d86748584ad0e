"""Thin async client for the Sendblue REST API.

Implements the ``ProviderClient`` protocol. Every call carries the configured
timeout; network errors and error responses surface as
``TransientProviderError`` and are never retried here.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from ...core.exceptions import TransientProviderError
from ...core.logging import mask_number
from ...core.models import InboundMessage, SendReceipt

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.sendblue.co"

MESSAGES_PATH = "/api/v2/messages"
SEND_PATH = "/api/send-message"
STATUS_PATH = "/api/status"
MARK_READ_PATH = "/api/mark-read"
TYPING_PATH = "/api/send-typing-indicator"
UPLOAD_PATH = "/api/upload-file"


class SendblueClient:
    """Sendblue API client bound to one sending number."""

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        phone_number: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.phone_number = phone_number
        self.http_client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={
                "sb-api-key-id": api_key,
                "sb-api-secret-key": api_secret,
                "Accept": "application/json",
            },
            timeout=httpx.Timeout(timeout),
            limits=httpx.Limits(max_keepalive_connections=5),
            transport=transport,
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self.http_client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise TransientProviderError(f"{method} {path} failed: {e}") from e

        if response.status_code >= 400:
            raise TransientProviderError(
                f"{method} {path} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise TransientProviderError(f"{method} {path} returned invalid JSON") from e

    async def fetch_inbound(self, since: datetime) -> List[InboundMessage]:
        """Inbound messages to our number created at or after ``since``."""
        if since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)
        params = {
            "is_outbound": "false",
            "sendblue_number": self.phone_number,
            "created_at_gte": since.astimezone(timezone.utc).isoformat(),
            "order_by": "createdAt",
            "order_direction": "asc",
        }
        payload = await self._request("GET", MESSAGES_PATH, params=params)
        rows = payload.get("data", []) if isinstance(payload, dict) else payload

        messages: List[InboundMessage] = []
        for row in rows or []:
            try:
                message = InboundMessage.model_validate(row)
            except ValidationError as e:
                logger.warning("Skipping malformed message from provider: %s", e.errors()[:1])
                continue
            if not message.is_outbound:
                messages.append(message)
        return messages

    async def send_message(self, to: str, content: str, media_url: Optional[str] = None) -> SendReceipt:
        body: Dict[str, Any] = {"number": to, "from_number": self.phone_number}
        if content:
            body["content"] = content
        if media_url:
            body["media_url"] = media_url
        payload = await self._request("POST", SEND_PATH, json=body)

        handle = payload.get("message_handle") if isinstance(payload, dict) else None
        if not handle:
            raise TransientProviderError(f"Send to {mask_number(to)} returned no message_handle")
        return SendReceipt(message_handle=handle, status=payload.get("status") or "QUEUED")

    async def upload_media(self, path: str) -> str:
        p = Path(path)
        try:
            with p.open("rb") as f:
                payload = await self._request("POST", UPLOAD_PATH, files={"file": (p.name, f)})
        except OSError as e:
            raise TransientProviderError(f"Cannot read attachment {p}: {e}") from e

        media_url = payload.get("media_url") if isinstance(payload, dict) else None
        if not media_url:
            raise TransientProviderError(f"Upload of {p.name} returned no media_url")
        return media_url

    async def mark_read(self, number: str) -> None:
        await self._request("POST", MARK_READ_PATH, json={"number": number, "from_number": self.phone_number})

    async def send_typing_indicator(self, number: str) -> None:
        await self._request("POST", TYPING_PATH, json={"number": number, "from_number": self.phone_number})

    async def get_message_status(self, message_handle: str) -> Optional[str]:
        payload = await self._request("GET", STATUS_PATH, params={"handle": message_handle})
        if not isinstance(payload, dict):
            return None
        return payload.get("status")

    async def aclose(self) -> None:
        await self.http_client.aclose()
