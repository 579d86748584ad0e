"""Configuration management for the Sendblue adapter (YAML-based)."""

from pathlib import Path
from typing import List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from ...core.exceptions import ConfigurationError
from ...core.reconciler import DEFAULT_TERMINAL_STATUSES


class RateLimitSettings(BaseModel):
    """Fixed-window limits applied per client address on the webhook."""
    window_ms: int = Field(default=60_000, gt=0)
    max_requests: int = Field(default=60, gt=0)
    sweep_interval_ms: int = Field(default=60_000, gt=0)
    max_keys: int = Field(default=10_000, gt=0)


class WebhookSettings(BaseModel):
    """Push receiver settings. Disabled by default (poll-only)."""
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 3141
    path: str = "/webhook/sendblue"
    secret: Optional[str] = None
    max_body_bytes: int = Field(default=1024 * 1024, gt=0)  # 1 MiB
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)

    @field_validator("path")
    @classmethod
    def _check_path(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith("/"):
            raise ValueError("webhook path must start with '/'")
        if v.rstrip("/") == "/health" or v == "/":
            raise ValueError(f"webhook path {v!r} collides with a reserved route")
        return v


class StatusSettings(BaseModel):
    """Outbound delivery status reconciliation."""
    enabled: bool = True
    interval_ms: int = Field(default=20_000, gt=0)
    batch_size: int = Field(default=25, gt=0)
    terminal_statuses: List[str] = Field(default_factory=lambda: sorted(DEFAULT_TERMINAL_STATUSES))


class Settings(BaseModel):
    """Application settings loaded from a YAML file."""

    # Sendblue credentials
    api_key: str
    api_secret: str
    phone_number: str
    provider_base_url: str = "https://api.sendblue.co"
    provider_timeout_seconds: float = Field(default=10.0, gt=0)

    # Access policy
    dm_policy: Literal["allowlist", "open", "disabled"] = "allowlist"
    allow_from: List[str] = Field(default_factory=list)

    # Intake
    poll_enabled: bool = True
    poll_interval_ms: int = Field(default=5_000, gt=0)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)

    # Persistence
    database_url: str = "sqlite+aiosqlite:///~/.config/textbridge/adapter.db"
    dedup_retention_days: float = Field(default=7, gt=0)
    dedup_cleanup_interval_ms: int = Field(default=60 * 60 * 1000, gt=0)

    # Outbound status
    status: StatusSettings = Field(default_factory=StatusSettings)

    # Conversational backend
    backend_http_url: str = "http://127.0.0.1:8811"
    backend_timeout_seconds: float = Field(default=120.0, gt=0)

    # Logging and display-only history
    log_dir: Optional[Path] = None
    history_dir: Optional[Path] = Path("~/.config/textbridge/history")
    log_level: str = "INFO"

    @field_validator("log_dir", "history_dir", mode="before")
    @classmethod
    def _coerce_path(cls, v):
        if v is None or isinstance(v, Path):
            return v
        return Path(v)

    @field_validator("allow_from", mode="before")
    @classmethod
    def _coerce_allow_from(cls, v):
        # Accept a single comma-separated string as well as a list
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v or []

    def model_post_init(self, __context) -> None:
        """Validate configuration after loading."""
        if not self.poll_enabled and not self.webhook.enabled:
            raise ValueError("At least one intake path must be enabled (poll_enabled or webhook.enabled)")
        if not self.database_url.startswith("sqlite"):
            raise ValueError("database_url must be a sqlite URL (e.g. sqlite+aiosqlite:///path/adapter.db)")

    @property
    def dedup_retention_ms(self) -> int:
        return int(self.dedup_retention_days * 24 * 60 * 60 * 1000)


def load_settings(config_path: Path) -> Settings:
    """Load Settings from a YAML file."""
    if not config_path:
        raise ConfigurationError("Config path is required")
    p = Path(config_path)
    if not p.exists():
        raise ConfigurationError(f"Config file not found: {p}")
    try:
        with open(p, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        # Allow top-level 'sendblue' key or flat structure
        if isinstance(data.get("sendblue"), dict):
            data = data["sendblue"]
        return Settings(**data)
    except Exception as e:
        raise ConfigurationError(f"Failed to load config from {p}: {e}") from e
