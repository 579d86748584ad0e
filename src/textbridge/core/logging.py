"""
Operational logging for textbridge.

Besides the standard ``logging`` loggers each module uses, adapters keep a
JSONL trail of what happened to every message:

    <log_dir>/textbridge-<adapter>/operations_YYYY-MM-DD.log
    <log_dir>/textbridge-<adapter>/events_YYYY-MM-DD.log

Writing the trail never raises; a failed write falls back to ``logging``.
"""

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import aiofiles


def mask_number(number: Optional[str]) -> str:
    """Reduce a phone number to its last 4 characters for log lines."""
    if not number:
        return "unknown"
    return f"***{number[-4:]}"


class OperationLogger:
    """
    JSONL logger for adapter operations and inbound events.

    Pass ``base_log_dir=None`` to disable file output entirely (tests,
    ephemeral runs); calls then become no-ops.
    """

    def __init__(self, adapter_name: str, base_log_dir: Optional[Path]):
        self.adapter_name = adapter_name
        self.log_dir: Optional[Path] = None
        if base_log_dir is not None:
            self.log_dir = Path(base_log_dir).expanduser() / f"textbridge-{adapter_name}"
            self.log_dir.mkdir(parents=True, exist_ok=True)
        self._write_lock = asyncio.Lock()

    @property
    def enabled(self) -> bool:
        return self.log_dir is not None

    async def _append(self, prefix: str, entry: Dict[str, Any]) -> None:
        if self.log_dir is None:
            return
        today = datetime.now().strftime("%Y-%m-%d")
        log_file = self.log_dir / f"{prefix}_{today}.log"
        line = json.dumps(entry, ensure_ascii=False, default=str)
        try:
            async with self._write_lock:
                async with aiofiles.open(log_file, "a", encoding="utf-8") as f:
                    await f.write(line + "\n")
        except Exception as e:
            logging.error("Failed to write %s log for %s: %s", prefix, self.adapter_name, e)

    async def log_operation(
        self,
        operation: str,
        details: Dict[str, Any],
        level: str = "INFO"
    ) -> None:
        """
        Log an adapter operation.

        Args:
            operation: Name of the operation (e.g., "message_dispatched", "reply_sent")
            details: Operation details
            level: Log level (INFO, WARNING, ERROR)
        """
        await self._append("operations", {
            "timestamp": datetime.now().isoformat(),
            "adapter": self.adapter_name,
            "level": level,
            "operation": operation,
            "details": details,
        })

    async def log_event(
        self,
        event_type: str,
        event_data: Dict[str, Any],
        level: str = "INFO"
    ) -> None:
        """
        Log an inbound event (webhook delivery, poll result).

        Args:
            event_type: Type of event
            event_data: Event data
            level: Log level
        """
        await self._append("events", {
            "timestamp": datetime.now().isoformat(),
            "adapter": self.adapter_name,
            "level": level,
            "event_type": event_type,
            "event_data": event_data,
        })


def get_operation_logger(adapter_name: str, base_log_dir: Optional[Path] = None) -> OperationLogger:
    """Get an operation logger instance for an adapter."""
    return OperationLogger(adapter_name, base_log_dir)
