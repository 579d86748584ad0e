"""
Scheduled pull of inbound messages from the provider.

The cursor is the time the previous poll *started*, not the timestamp of the
last message seen. It is advanced right before the provider query, so clock
skew between the provider and this host produces small overlapping windows
instead of gaps; the overlap is absorbed by the Deduplicator.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .capabilities import ProviderClient
from .logging import mask_number
from .pipeline import IngestionPipeline

logger = logging.getLogger(__name__)

INITIAL_LOOKBACK = timedelta(seconds=60)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Poller:
    """Pulls messages since the cursor and feeds them to the pipeline one by one."""

    def __init__(
        self,
        provider: ProviderClient,
        pipeline: IngestionPipeline,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.provider = provider
        self.pipeline = pipeline
        self._clock = clock or _utcnow
        self.cursor: datetime = self._clock() - INITIAL_LOOKBACK
        self._in_flight = False
        self.skipped_cycles = 0

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    async def poll_once(self) -> int:
        """Run one poll cycle. Returns the number of messages handed to the pipeline.

        A cycle requested while another is still running is skipped, not queued.
        """
        if self._in_flight:
            self.skipped_cycles += 1
            logger.debug("Poll still in flight, skipping cycle")
            return 0

        self._in_flight = True
        try:
            since = self.cursor
            self.cursor = self._clock()
            try:
                messages = await self.provider.fetch_inbound(since)
            except Exception as e:
                # Re-cover the missed window on the next cycle
                self.cursor = since
                logger.error("Poll error: %s", e)
                return 0

            handled = 0
            for message in messages:
                if message.is_outbound:
                    continue
                try:
                    await self.pipeline.process(message)
                    handled += 1
                except Exception as e:
                    logger.error(
                        "Failed to process polled message %s from %s: %s",
                        message.message_handle, mask_number(message.from_number), e,
                    )
            return handled
        finally:
            self._in_flight = False
