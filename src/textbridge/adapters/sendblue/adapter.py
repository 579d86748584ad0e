"""Sendblue bridge service: wires the core engine to Sendblue and FastAPI."""

import asyncio
import logging
import signal
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI

from ... import __version__
from ...core.access import AccessGuard, AccessPolicy
from ...core.backend import HttpChatBackend
from ...core.capabilities import ProviderClient, ReplyBackend
from ...core.dedup import Deduplicator
from ...core.exceptions import PersistenceError
from ...core.history import ConversationHistory
from ...core.logging import get_operation_logger, mask_number
from ...core.models import HealthResponse
from ...core.pipeline import IngestionPipeline
from ...core.poller import Poller
from ...core.rate_limit import RateLimiter
from ...core.reconciler import DeliveryStatusReconciler
from ...core.scheduler import PeriodicTask
from ...core.store import Store
from .client import SendblueClient
from .config import Settings
from .webhook import WebhookReceiver

logger = logging.getLogger(__name__)


class SendblueBridge:
    """One service run: store, guards, intake paths, reconciler and periodic tasks.

    Every piece of run state lives on this object; nothing is kept at module
    level. Pass ``provider``/``backend`` to substitute the HTTP collaborators
    (the bridge then leaves closing them to the caller).
    """

    def __init__(
        self,
        settings: Settings,
        provider: Optional[ProviderClient] = None,
        backend: Optional[ReplyBackend] = None,
    ):
        self.settings = settings
        self._owned_clients: List[object] = []

        if provider is None:
            provider = SendblueClient(
                api_key=settings.api_key,
                api_secret=settings.api_secret,
                phone_number=settings.phone_number,
                base_url=settings.provider_base_url,
                timeout=settings.provider_timeout_seconds,
            )
            self._owned_clients.append(provider)
        if backend is None:
            backend = HttpChatBackend(settings.backend_http_url, timeout=settings.backend_timeout_seconds)
            self._owned_clients.append(backend)
        self.provider = provider
        self.backend = backend

        self.store = Store(settings.database_url)
        self.oplog = get_operation_logger("sendblue", settings.log_dir)
        self.history = ConversationHistory(settings.history_dir) if settings.history_dir else None

        self.deduplicator = Deduplicator(self.store, retention_ms=settings.dedup_retention_ms)
        self.access_guard = AccessGuard(AccessPolicy.from_config(settings.dm_policy, settings.allow_from))
        self.reconciler = DeliveryStatusReconciler(
            self.store,
            self.provider,
            batch_size=settings.status.batch_size,
            terminal_statuses=settings.status.terminal_statuses,
        )
        self.pipeline = IngestionPipeline(
            deduplicator=self.deduplicator,
            access_guard=self.access_guard,
            provider=self.provider,
            backend=self.backend,
            reconciler=self.reconciler,
            history=self.history,
            oplog=self.oplog,
            own_number=settings.phone_number,
        )
        self.poller = Poller(self.provider, self.pipeline)

        webhook_cfg = settings.webhook
        self.rate_limiter = RateLimiter(
            window_ms=webhook_cfg.rate_limit.window_ms,
            max_requests=webhook_cfg.rate_limit.max_requests,
            max_keys=webhook_cfg.rate_limit.max_keys,
        )
        self.webhook = WebhookReceiver(
            path=webhook_cfg.path,
            pipeline=self.pipeline,
            rate_limiter=self.rate_limiter,
            secret=webhook_cfg.secret,
            max_body_bytes=webhook_cfg.max_body_bytes,
            oplog=self.oplog,
        )

        self.tasks: List[PeriodicTask] = self._build_tasks()
        self.app = self._create_app()

    def _build_tasks(self) -> List[PeriodicTask]:
        s = self.settings
        tasks = [
            PeriodicTask("dedup-cleanup", s.dedup_cleanup_interval_ms / 1000, self.deduplicator.purge_expired),
        ]
        if s.poll_enabled:
            tasks.append(PeriodicTask("poll", s.poll_interval_ms / 1000, self.poller.poll_once, run_immediately=True))
        if s.status.enabled:
            tasks.append(PeriodicTask("delivery-status", s.status.interval_ms / 1000, self.reconciler.run_cycle))
        if s.webhook.enabled:
            tasks.append(PeriodicTask(
                "rate-limit-sweep", s.webhook.rate_limit.sweep_interval_ms / 1000, self._sweep_rate_limiter
            ))
        return tasks

    async def _sweep_rate_limiter(self) -> None:
        removed = self.rate_limiter.sweep()
        if removed:
            logger.debug("Rate limiter swept %d expired windows", removed)

    def _create_app(self) -> FastAPI:
        @asynccontextmanager
        async def lifespan(app: FastAPI):
            await self.start()
            try:
                yield
            finally:
                await self.stop()

        app = FastAPI(
            title="textbridge",
            description="Sendblue iMessage/SMS to chat backend bridge",
            version=__version__,
            lifespan=lifespan,
        )

        @app.get("/health", response_model=HealthResponse)
        async def health_check() -> HealthResponse:
            """Health check endpoint."""
            return HealthResponse(status="ok")

        if self.settings.webhook.enabled:
            app.include_router(self.webhook.router)
        return app

    async def start(self) -> None:
        """Initialize the store and start every periodic task.

        A store that cannot be initialized is fatal: the owned HTTP clients are
        closed and PersistenceError propagates.
        """
        s = self.settings
        try:
            await self.store.init()
        except PersistenceError:
            await self._close_clients()
            raise
        logger.info("Starting Sendblue bridge")
        logger.info("Phone: %s", mask_number(s.phone_number))
        logger.info("Access policy: %s", self.access_guard.describe())
        if s.poll_enabled:
            logger.info("Polling every %dms", s.poll_interval_ms)
        if s.webhook.enabled:
            logger.info("Webhook endpoint: %s", s.webhook.path)
            if s.webhook.secret:
                logger.info("Webhook secret verification enabled")
            logger.info(
                "Rate limit: %d req/%ss",
                s.webhook.rate_limit.max_requests, s.webhook.rate_limit.window_ms / 1000,
            )
        for task in self.tasks:
            task.start()

    async def stop(self) -> None:
        """Stop periodic tasks, close owned HTTP clients, then release the store."""
        logger.info("Shutting down Sendblue bridge")
        for task in reversed(self.tasks):
            await task.stop()
        self.rate_limiter.clear()
        await self._close_clients()
        await self.store.close()

    async def _close_clients(self) -> None:
        for client in self._owned_clients:
            await client.aclose()
        self._owned_clients.clear()

    async def run_forever(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Run without an HTTP server (poll-only) until SIGINT/SIGTERM or ``stop_event``."""
        stop_event = stop_event or asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except (NotImplementedError, RuntimeError):
                pass

        await self.start()
        try:
            await stop_event.wait()
        finally:
            await self.stop()
