"""
Ingestion pipeline shared by the poller and the webhook receiver.

This is the only place where deduplication, authorization and forwarding
happen. Steps, in order:

1. Validate that the message carries a handle and a sender
2. Claim the handle (duplicates stop here)
3. Check the sender against the access policy (blocked senders stop here)
4. Require text or media (empty messages stop here)
5. Mark the conversation read (best effort)
6. Dispatch the envelope to the backend and relay every reply chunk to the
   provider, registering each sent message for delivery reconciliation
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from .access import AccessGuard
from .capabilities import ProviderClient, ReplyBackend
from .dedup import Deduplicator
from .exceptions import (
    BackendError,
    BridgeError,
    PayloadValidationError,
    PersistenceError,
    TransientProviderError,
)
from .history import ConversationHistory
from .logging import OperationLogger, mask_number
from .models import (
    InboundEnvelope,
    InboundMessage,
    PipelineOutcome,
    ReplyChunk,
    ReplyFailed,
    ReplyIdle,
    ReplyStarted,
)
from .reconciler import DeliveryStatusReconciler

logger = logging.getLogger(__name__)


class IngestionPipeline:
    """Claim, authorize, normalize and forward one inbound message."""

    def __init__(
        self,
        deduplicator: Deduplicator,
        access_guard: AccessGuard,
        provider: ProviderClient,
        backend: ReplyBackend,
        reconciler: DeliveryStatusReconciler,
        history: Optional[ConversationHistory] = None,
        oplog: Optional[OperationLogger] = None,
        own_number: str = "",
    ):
        self.deduplicator = deduplicator
        self.access_guard = access_guard
        self.provider = provider
        self.backend = backend
        self.reconciler = reconciler
        self.history = history
        self.oplog = oplog
        self.own_number = own_number

    async def process(self, message: InboundMessage) -> PipelineOutcome:
        handle = (message.message_handle or "").strip()
        sender = (message.from_number or "").strip()
        if not handle or not sender:
            raise PayloadValidationError("Message is missing message_handle or from_number")

        if not await self.deduplicator.try_claim(handle):
            logger.debug("Duplicate message ignored: %s", handle)
            return PipelineOutcome.DUPLICATE

        if not self.access_guard.is_allowed(sender):
            logger.info("Blocked message from %s", mask_number(sender))
            await self._log("message_blocked", {"message_handle": handle, "from": mask_number(sender)})
            return PipelineOutcome.REJECTED

        text = message.text
        if not text and not message.media_url:
            logger.debug("Skipping empty message %s", handle)
            return PipelineOutcome.EMPTY

        envelope = InboundEnvelope(
            chat_id=sender,
            sender=sender,
            text=text,
            message_id=handle,
            media_url=message.media_url,
            timestamp=message.date_sent,
        )
        logger.info("Inbound from %s: %r", mask_number(sender), envelope.body[:50])
        await self._record_history(sender, sender, envelope.body, is_outbound=False)

        await self._best_effort("mark-read", lambda: self.provider.mark_read(sender))
        await self._dispatch(envelope)
        await self._log("message_dispatched", {
            "message_handle": handle,
            "from": mask_number(sender),
            "text_length": len(text),
            "has_media": bool(message.media_url),
        })
        return PipelineOutcome.DISPATCHED

    async def _dispatch(self, envelope: InboundEnvelope) -> None:
        try:
            async for event in self.backend.dispatch(envelope):
                if isinstance(event, ReplyStarted):
                    await self._best_effort(
                        "typing-indicator",
                        lambda: self.provider.send_typing_indicator(envelope.chat_id),
                    )
                elif isinstance(event, ReplyChunk):
                    await self._deliver(envelope.chat_id, event)
                elif isinstance(event, ReplyIdle):
                    logger.debug("Backend idle for %s", envelope.message_id)
                elif isinstance(event, ReplyFailed):
                    logger.error("Backend failed for %s: %s", envelope.message_id, event.error)
                    await self._log("backend_error", {
                        "message_handle": envelope.message_id,
                        "error": event.error,
                    }, level="ERROR")
        except BridgeError:
            raise
        except Exception as e:
            raise BackendError(f"Backend dispatch failed for {envelope.message_id}: {e}") from e

    async def _deliver(self, chat_id: str, chunk: ReplyChunk) -> None:
        text = chunk.text or ""
        media_url = chunk.media_url
        if chunk.media_path:
            try:
                media_url = await self.provider.upload_media(chunk.media_path)
            except TransientProviderError as e:
                logger.error("Attachment upload failed for %s: %s", chunk.media_path, e)
                media_url = None

        if not text.strip() and not media_url:
            return

        try:
            receipt = await self.provider.send_message(chat_id, text, media_url=media_url)
        except TransientProviderError as e:
            logger.error("Send error to %s: %s", mask_number(chat_id), e)
            await self._log("send_failed", {"to": mask_number(chat_id), "error": str(e)}, level="ERROR")
            return

        try:
            await self.reconciler.register(receipt.message_handle, chat_id, receipt.status)
        except PersistenceError as e:
            # Already sent; only its delivery tracking is lost
            logger.error("Failed to register outbound %s for tracking: %s", receipt.message_handle, e)

        logger.info("Sent to %s: %r (%s)", mask_number(chat_id), text[:50], receipt.message_handle)

        shown = text if not media_url else (f"{text}\n\n[Media: {media_url}]" if text else f"[Media: {media_url}]")
        await self._record_history(chat_id, self.own_number, shown, is_outbound=True)
        await self._log("reply_sent", {
            "to": mask_number(chat_id),
            "message_handle": receipt.message_handle,
            "status": receipt.status,
        })

    async def _best_effort(self, what: str, call: Callable[[], Awaitable[Any]]) -> None:
        try:
            await call()
        except Exception as e:
            logger.debug("Ignoring %s failure: %s", what, e)

    async def _record_history(self, chat_id: str, from_number: str, content: str, is_outbound: bool) -> None:
        if self.history is None:
            return
        try:
            await self.history.record(chat_id, from_number, content, is_outbound)
        except OSError as e:
            logger.warning("Failed to record history for %s: %s", mask_number(chat_id), e)

    async def _log(self, operation: str, details: Dict[str, Any], level: str = "INFO") -> None:
        if self.oplog is not None:
            await self.oplog.log_operation(operation, details, level=level)
