"""Webhook receiver for messages pushed by Sendblue."""

import hmac
import json
import logging
import math
from typing import Mapping, Optional

from fastapi import APIRouter, BackgroundTasks, HTTPException, Request
from pydantic import ValidationError

from ...core.exceptions import AuthError, PayloadValidationError, RateLimitExceeded
from ...core.logging import OperationLogger, mask_number
from ...core.models import InboundMessage, WebhookAck
from ...core.pipeline import IngestionPipeline
from ...core.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

# Maximum request body size (1 MiB)
MAX_BODY_SIZE = 1024 * 1024

# Header conventions the shared secret may arrive in, besides Authorization: Bearer
SECRET_HEADERS = ("x-sendblue-secret", "x-webhook-secret", "x-api-key")


def verify_secret(headers: Mapping[str, str], expected: str) -> bool:
    """True if any supported header carries ``expected``."""
    candidates = [headers.get(name) for name in SECRET_HEADERS]
    authorization = headers.get("authorization")
    if authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() == "bearer":
            candidates.append(token.strip())

    expected_bytes = expected.encode("utf-8")
    return any(
        candidate is not None and hmac.compare_digest(candidate.encode("utf-8"), expected_bytes)
        for candidate in candidates
    )


class WebhookReceiver:
    """POST-only endpoint that validates pushed messages and hands them to the pipeline.

    The provider gets its 200 as soon as the payload is structurally valid;
    processing happens afterwards in a background task, so failures there
    are only logged. Duplicate suppression is left to the pipeline's claim.
    """

    def __init__(
        self,
        path: str,
        pipeline: IngestionPipeline,
        rate_limiter: RateLimiter,
        secret: Optional[str] = None,
        max_body_bytes: int = MAX_BODY_SIZE,
        oplog: Optional[OperationLogger] = None,
    ):
        self.path = path
        self.pipeline = pipeline
        self.rate_limiter = rate_limiter
        self.secret = secret or None
        self.max_body_bytes = max_body_bytes
        self.oplog = oplog
        self.router = APIRouter()
        self._register_routes()

    def _register_routes(self) -> None:
        @self.router.post(self.path, response_model=WebhookAck)
        async def handle_webhook(request: Request, background_tasks: BackgroundTasks) -> WebhookAck:
            """Receive a message pushed by Sendblue."""
            return await self._process_webhook(request, background_tasks)

    async def _process_webhook(self, request: Request, background_tasks: BackgroundTasks) -> WebhookAck:
        client_ip = request.client.host if request.client else "unknown"
        try:
            message = await self._accept(request, client_ip)
        except RateLimitExceeded as e:
            raise HTTPException(
                status_code=429,
                detail="Too many requests",
                headers={"Retry-After": str(max(1, math.ceil(e.retry_after)))},
            )
        except AuthError:
            raise HTTPException(status_code=401, detail="Unauthorized")
        except PayloadValidationError as e:
            raise HTTPException(status_code=400, detail=str(e))

        # Acknowledge; echoes of our own sends are dropped here
        if message.is_outbound:
            logger.debug("Ignoring outbound echo %s", message.message_handle)
            return WebhookAck()

        background_tasks.add_task(self._ingest, message)
        return WebhookAck()

    async def _accept(self, request: Request, client_ip: str) -> InboundMessage:
        """Run the admission checks in order and return the validated message."""
        # 1. Rate limiting
        if not self.rate_limiter.is_allowed(client_ip):
            logger.warning("Rate limit exceeded for %s", client_ip)
            raise RateLimitExceeded(f"Rate limit exceeded for {client_ip}", self.rate_limiter.retry_after(client_ip))

        # 2. Shared secret (if configured)
        if self.secret and not verify_secret(request.headers, self.secret):
            logger.warning("Invalid or missing webhook secret from %s", client_ip)
            raise AuthError(f"Invalid or missing webhook secret from {client_ip}")

        # 3. Body size and JSON
        body = await self._read_body(request)
        try:
            data = json.loads(body)
        except ValueError:
            raise PayloadValidationError("Invalid JSON")

        # 4. Required fields
        if not isinstance(data, dict):
            raise PayloadValidationError("Invalid payload: expected a JSON object")
        try:
            message = InboundMessage.model_validate(data)
        except ValidationError:
            raise PayloadValidationError("Invalid payload: missing required fields")
        if not message.message_handle.strip() or not message.from_number.strip():
            raise PayloadValidationError("Invalid payload: missing required fields")
        return message

    async def _read_body(self, request: Request) -> bytes:
        declared = request.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > self.max_body_bytes:
            raise HTTPException(status_code=413, detail="Payload too large")

        size = 0
        chunks = []
        async for chunk in request.stream():
            size += len(chunk)
            if size > self.max_body_bytes:
                raise HTTPException(status_code=413, detail="Payload too large")
            chunks.append(chunk)
        return b"".join(chunks)

    async def _ingest(self, message: InboundMessage) -> None:
        """Process an acknowledged message. Errors cannot reach the caller anymore."""
        try:
            logger.info("Webhook message %s from %s", message.message_handle, mask_number(message.from_number))
            if self.oplog is not None:
                await self.oplog.log_event("webhook_received", {
                    "message_handle": message.message_handle,
                    "from": mask_number(message.from_number),
                    "content_length": len(message.content or ""),
                    "has_media": bool(message.media_url),
                })
            outcome = await self.pipeline.process(message)
            logger.debug("Webhook message %s: %s", message.message_handle, outcome.value)
        except Exception as e:
            logger.error("Error processing webhook message %s: %s", message.message_handle, e, exc_info=True)
