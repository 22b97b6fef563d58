"""Runtime settings resolved from the environment.

Entry points (the FastAPI app factory and the CLI) call ``load_dotenv`` before
building :class:`Settings`, so a local ``.env`` file works the same way as
exported variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from exc


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a number, got {raw!r}") from exc


@dataclass(frozen=True)
class Settings:
    """Configuration shared by the pipeline, the sync worker and the API."""

    database_url: str | None = None
    openai_model: str = "gpt-4o-mini"
    business_name: str = "Dovetails Services LLC"
    sync_max_messages_per_connection: int = 50
    sync_lookback_hours: int = 24
    enrichment_max_workers: int = 2
    enrichment_max_attempts: int = 3
    enrichment_backoff_seconds: float = 2.0
    conversation_inactivity_days: int | None = None
    cron_secret: str | None = None
    twilio_auth_token: str | None = None
    gmail_api_base_url: str = "https://gmail.googleapis.com/gmail/v1/users/me"

    @classmethod
    def from_env(cls) -> "Settings":
        inactivity = _int_env("CONVERSATION_INACTIVITY_DAYS", 0)
        return cls(
            database_url=os.getenv("DATABASE_URL"),
            openai_model=os.getenv("OPENAI_MODEL", cls.openai_model),
            business_name=os.getenv("BUSINESS_NAME", cls.business_name),
            sync_max_messages_per_connection=_int_env(
                "SYNC_MAX_MESSAGES_PER_CONNECTION", cls.sync_max_messages_per_connection
            ),
            sync_lookback_hours=_int_env("SYNC_LOOKBACK_HOURS", cls.sync_lookback_hours),
            enrichment_max_workers=_int_env(
                "ENRICHMENT_MAX_WORKERS", cls.enrichment_max_workers
            ),
            enrichment_max_attempts=_int_env(
                "ENRICHMENT_MAX_ATTEMPTS", cls.enrichment_max_attempts
            ),
            enrichment_backoff_seconds=_float_env(
                "ENRICHMENT_BACKOFF_SECONDS", cls.enrichment_backoff_seconds
            ),
            conversation_inactivity_days=inactivity or None,
            cron_secret=os.getenv("CRON_SECRET") or None,
            twilio_auth_token=os.getenv("TWILIO_AUTH_TOKEN") or None,
            gmail_api_base_url=os.getenv("GMAIL_API_BASE_URL", cls.gmail_api_base_url),
        )

    @property
    def sync_lookback(self) -> timedelta:
        return timedelta(hours=self.sync_lookback_hours)

    @property
    def conversation_inactivity_timeout(self) -> timedelta | None:
        if not self.conversation_inactivity_days:
            return None
        return timedelta(days=self.conversation_inactivity_days)
