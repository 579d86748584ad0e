"""Persistent at-most-once claims for inbound message handles.

Both intake paths (poller and webhook) may deliver the same handle. The claim
is a primary-key insert into ``processed_messages``: exactly one caller's
insert commits, every other caller gets an integrity error and skips.

Claims are swept after ``retention_ms`` (default 7 days). A provider
redelivery older than the retention window is therefore processed again; this
is an accepted tradeoff for keeping the table bounded.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .exceptions import PersistenceError
from .store import ProcessedMessage, Store

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_MS = 7 * 24 * 60 * 60 * 1000


def _now_ms() -> int:
    return int(time.time() * 1000)


class Deduplicator:
    """Claim store over the ``processed_messages`` table."""

    def __init__(
        self,
        store: Store,
        retention_ms: int = DEFAULT_RETENTION_MS,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.store = store
        self.retention_ms = retention_ms
        self._clock = clock or _now_ms

    async def try_claim(self, message_id: str) -> bool:
        """Insert a claim for ``message_id``; True if this caller must process it."""
        try:
            async with self.store.session() as session:
                session.add(ProcessedMessage(message_id=message_id, processed_at=self._clock()))
                await session.commit()
                return True
        except IntegrityError:
            return False
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to claim message {message_id}: {e}") from e

    async def purge_expired(self) -> int:
        """Delete claims older than the retention window. Returns rows deleted."""
        cutoff = self._clock() - self.retention_ms
        try:
            async with self.store.session() as session:
                result = await session.execute(
                    delete(ProcessedMessage).where(ProcessedMessage.processed_at < cutoff)
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to purge processed messages: {e}") from e

        deleted = result.rowcount or 0
        if deleted:
            logger.info("Purged %d processed message claims older than %d", deleted, cutoff)
        return deleted
