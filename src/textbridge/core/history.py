from __future__ import annotations

import asyncio
import json
import re
import shutil
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiofiles

_CHAT_SAFE_RE = re.compile(r"\W+")


def _now_iso() -> str:
    return datetime.now().isoformat()


def chat_dir_name(chat_id: str) -> str:
    """Filesystem-safe directory name for a chat id (e.g. "+15551234567" -> "15551234567")."""
    return _CHAT_SAFE_RE.sub("", chat_id) or "unknown"


class ConversationHistory:
    """Display-only conversation history per chat.

    Nothing in the ingestion path reads this back; it exists for listing and
    inspecting chats.

    Layout:
      <history_dir>/<chat>/
        messages.jsonl
        meta.json
    """

    def __init__(self, history_dir: Path):
        self.history_dir = Path(history_dir).expanduser()
        self.history_dir.mkdir(parents=True, exist_ok=True)
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, chat_id: str) -> asyncio.Lock:
        key = chat_dir_name(chat_id)
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def chat_dir(self, chat_id: str) -> Path:
        return self.history_dir / chat_dir_name(chat_id)

    async def record(self, chat_id: str, from_number: str, content: str, is_outbound: bool) -> None:
        d = self.chat_dir(chat_id)
        d.mkdir(parents=True, exist_ok=True)
        now = _now_iso()
        line = json.dumps({
            "timestamp": now,
            "chat_id": chat_id,
            "from_number": from_number,
            "content": content,
            "is_outbound": is_outbound,
        }, ensure_ascii=False)
        async with self._lock_for(chat_id):
            async with aiofiles.open(d / "messages.jsonl", "a", encoding="utf-8") as f:
                await f.write(line + "\n")
            meta_path = d / "meta.json"
            meta: Dict[str, Any] = {"chat_id": chat_id, "message_count": 0}
            if meta_path.exists():
                try:
                    meta.update(json.loads(meta_path.read_text(encoding="utf-8")))
                except json.JSONDecodeError:
                    pass
            meta["message_count"] = int(meta.get("message_count", 0)) + 1
            meta["last_message"] = content
            meta["last_activity_at"] = now
            meta_path.write_text(json.dumps(meta, ensure_ascii=False, indent=2), encoding="utf-8")

    async def record_inbound(self, chat_id: str, from_number: str, content: str) -> None:
        await self.record(chat_id, from_number, content, is_outbound=False)

    async def record_outbound(self, chat_id: str, from_number: str, content: str) -> None:
        await self.record(chat_id, from_number, content, is_outbound=True)

    async def load_history(self, chat_id: str, limit: Optional[int] = 50) -> List[Dict[str, Any]]:
        """Return the last ``limit`` messages of a chat, oldest first."""
        path = self.chat_dir(chat_id) / "messages.jsonl"
        if not path.exists():
            return []
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            lines = (await f.read()).splitlines()
        if limit is not None:
            lines = lines[-limit:]
        events: List[Dict[str, Any]] = []
        for line in lines:
            try:
                events.append(json.loads(line))
            except json.JSONDecodeError:
                continue
        return events

    def list_chats(self) -> List[Dict[str, Any]]:
        """Chat summaries, most recently active first."""
        out: List[Dict[str, Any]] = []
        for d in sorted(self.history_dir.iterdir()):
            if not d.is_dir():
                continue
            meta: Dict[str, Any] = {"chat_id": d.name, "message_count": 0}
            meta_path = d / "meta.json"
            if meta_path.exists():
                try:
                    meta.update(json.loads(meta_path.read_text(encoding="utf-8")))
                except json.JSONDecodeError:
                    pass
            out.append(meta)
        out.sort(key=lambda m: m.get("last_activity_at", ""), reverse=True)
        return out

    async def clear(self, chat_id: str) -> None:
        async with self._lock_for(chat_id):
            shutil.rmtree(self.chat_dir(chat_id), ignore_errors=True)
