from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

_DATETIME = TypeAdapter(datetime)
_TRUE_STRINGS = {"true", "1", "yes", "on", "t", "y"}


class InboundMessage(BaseModel):
    """Inbound message as delivered by the provider (webhook body or poll result)."""

    model_config = ConfigDict(extra="ignore")

    message_handle: str = Field(min_length=1)
    from_number: str = Field(min_length=1)
    to_number: Optional[str] = None
    content: Optional[str] = ""
    media_url: Optional[str] = None
    status: Optional[str] = None
    date_sent: Optional[datetime] = None
    is_outbound: bool = False

    @field_validator("message_handle", "from_number", mode="before")
    @classmethod
    def _coerce_identifier(cls, v: Any) -> Any:
        # Providers occasionally send numbers where strings are expected
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("to_number", "content", "media_url", "status", mode="before")
    @classmethod
    def _coerce_optional_text(cls, v: Any) -> Optional[str]:
        if v is None or isinstance(v, str):
            return v
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return None

    @field_validator("date_sent", mode="before")
    @classmethod
    def _lenient_date(cls, v: Any) -> Optional[datetime]:
        """Unparseable timestamps become None instead of failing the whole message."""
        if v is None or v == "":
            return None
        try:
            return _DATETIME.validate_python(v)
        except ValidationError:
            return None

    @field_validator("is_outbound", mode="before")
    @classmethod
    def _lenient_flag(cls, v: Any) -> bool:
        if isinstance(v, str):
            return v.strip().lower() in _TRUE_STRINGS
        if isinstance(v, (bool, int, float)):
            return bool(v)
        return False

    @property
    def text(self) -> str:
        return (self.content or "").strip()


class SendReceipt(BaseModel):
    """Result of a provider send: the new message handle and its initial status."""
    message_handle: str
    status: str = "QUEUED"


class WebhookAck(BaseModel):
    received: bool = True


class HealthResponse(BaseModel):
    status: str = "ok"


class PipelineOutcome(str, enum.Enum):
    DISPATCHED = "dispatched"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"
    EMPTY = "empty"


@dataclass(frozen=True)
class InboundEnvelope:
    """Normalized message handed to the conversational backend."""
    chat_id: str
    sender: str
    text: str
    message_id: str
    media_url: Optional[str] = None
    timestamp: Optional[datetime] = None

    @property
    def body(self) -> str:
        """Text with a media notice appended, as the backend sees it."""
        if not self.media_url:
            return self.text
        notice = f"[Media: {self.media_url}]"
        return f"{self.text}\n\n{notice}" if self.text else notice


# Reply events produced by a backend for one envelope


@dataclass(frozen=True)
class ReplyStarted:
    pass


@dataclass(frozen=True)
class ReplyChunk:
    text: str = ""
    media_url: Optional[str] = None
    media_path: Optional[str] = None  # local file, uploaded before sending


@dataclass(frozen=True)
class ReplyIdle:
    pass


@dataclass(frozen=True)
class ReplyFailed:
    error: str


ReplyEvent = Union[ReplyStarted, ReplyChunk, ReplyIdle, ReplyFailed]
