"""
Delivery status reconciliation for outbound messages.

Every message the bridge sends is registered in ``outbound_message_status``.
A low-frequency cycle picks the least-recently-checked non-terminal records,
asks the provider for their current status and records the answer.

A failed lookup leaves status and terminal flag untouched but still refreshes
``last_checked``, which moves the record to the back of the selection order.
Once a record is terminal it is never selected again and its status is never
overwritten; every write is conditional on ``is_terminal`` being false.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError

from .capabilities import ProviderClient
from .exceptions import PersistenceError
from .store import OutboundMessageStatus, Store

logger = logging.getLogger(__name__)

DEFAULT_TERMINAL_STATUSES = frozenset({
    "delivered",
    "read",
    "failed",
    "undelivered",
    "canceled",
    "cancelled",
})
DEFAULT_BATCH_SIZE = 25


def _now_ms() -> int:
    return int(time.time() * 1000)


class DeliveryStatusReconciler:
    """Owns the outbound status table: registration and periodic re-checks."""

    def __init__(
        self,
        store: Store,
        provider: ProviderClient,
        batch_size: int = DEFAULT_BATCH_SIZE,
        terminal_statuses: Optional[Iterable[str]] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.store = store
        self.provider = provider
        self.batch_size = batch_size
        statuses = DEFAULT_TERMINAL_STATUSES if terminal_statuses is None else terminal_statuses
        self.terminal_statuses = frozenset(s.strip().lower() for s in statuses)
        self._clock = clock or _now_ms

    def is_terminal(self, status: Optional[str]) -> bool:
        return (status or "").strip().lower() in self.terminal_statuses

    async def register(self, message_handle: str, chat_id: str, status: str) -> None:
        """Record a freshly sent message. A handle already terminal is left alone."""
        now = self._clock()
        terminal = self.is_terminal(status)
        stmt = sqlite_insert(OutboundMessageStatus).values(
            message_handle=message_handle,
            chat_id=chat_id,
            status=status,
            last_checked=now,
            is_terminal=terminal,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[OutboundMessageStatus.message_handle],
            set_={
                "chat_id": stmt.excluded.chat_id,
                "status": stmt.excluded.status,
                "last_checked": stmt.excluded.last_checked,
                "is_terminal": stmt.excluded.is_terminal,
                "updated_at": stmt.excluded.updated_at,
            },
            where=OutboundMessageStatus.is_terminal.is_(False),
        )
        try:
            async with self.store.session() as session:
                await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to register outbound message {message_handle}: {e}") from e

    async def pending(self, limit: Optional[int] = None) -> List[OutboundMessageStatus]:
        """Non-terminal records, least recently checked first."""
        stmt = (
            select(OutboundMessageStatus)
            .where(OutboundMessageStatus.is_terminal.is_(False))
            .order_by(OutboundMessageStatus.last_checked.asc(), OutboundMessageStatus.created_at.asc())
            .limit(limit or self.batch_size)
        )
        try:
            async with self.store.session() as session:
                return list((await session.scalars(stmt)).all())
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list pending outbound statuses: {e}") from e

    async def get(self, message_handle: str) -> Optional[OutboundMessageStatus]:
        try:
            async with self.store.session() as session:
                return await session.get(OutboundMessageStatus, message_handle)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load outbound status {message_handle}: {e}") from e

    async def run_cycle(self) -> int:
        """Re-check one batch of pending records. Returns how many were checked.

        Records are independent: a failed lookup or a failed write is logged
        and the cycle moves on to the next record.
        """
        records = await self.pending()
        if not records:
            return 0

        terminal_count = 0
        for record in records:
            handle = record.message_handle
            try:
                status = await self.provider.get_message_status(handle)
            except Exception as e:
                logger.warning("Status lookup failed for %s: %s", handle, e)
                status = None

            now = self._clock()
            terminal = self.is_terminal(status)
            if status:
                values = {"status": status, "is_terminal": terminal, "last_checked": now, "updated_at": now}
            else:
                values = {"last_checked": now}
            try:
                await self._update(handle, values)
            except PersistenceError as e:
                logger.error("Failed to record status for %s: %s", handle, e)
                continue

            if not status:
                continue
            terminal_count += int(terminal)
            if status != record.status:
                logger.info("Outbound %s: %s -> %s%s", handle, record.status, status, " (terminal)" if terminal else "")

        logger.debug("Reconciled %d outbound statuses (%d terminal)", len(records), terminal_count)
        return len(records)

    async def _update(self, message_handle: str, values: dict) -> None:
        stmt = (
            update(OutboundMessageStatus)
            .where(
                OutboundMessageStatus.message_handle == message_handle,
                OutboundMessageStatus.is_terminal.is_(False),
            )
            .values(**values)
        )
        try:
            async with self.store.session() as session:
                await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to update outbound status {message_handle}: {e}") from e
