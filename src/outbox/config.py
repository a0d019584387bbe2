"""Runtime settings for the outbox pipeline.

Environment variables use the ``OUTBOX_`` prefix (e.g. ``OUTBOX_MAX_RETRIES=5``).
Protean's own configuration (providers, event processing mode) is selected
separately through ``PROTEAN_ENV``.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class OutboxSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="OUTBOX_", frozen=True, extra="ignore")

    # Primary retry budget stamped on every new entry
    max_retries: int = Field(default=3, ge=0)
    # Records expire (and may be evicted by the store) this long after creation
    retention_days: int = Field(default=7, ge=1)

    # In-process escalation: total calls (first try plus 2 retries), then delays
    escalation_max_attempts: int = Field(default=3, ge=1)
    escalation_base_delay: float = Field(default=2.0, ge=0)
    escalation_max_delay: float = Field(default=10.0, ge=0)
    escalation_factor: float = Field(default=2.0, ge=1)
    escalation_jitter: bool = True

    # Providers: "fake" keeps deliveries in memory, "aws" sends through SES/SNS
    provider_backend: Literal["fake", "aws"] = "fake"
    email_from: str = "notifications@example.com"
    aws_region: str = "us-east-1"
    sms_type: str = "Transactional"

    log_dir: str | None = None
    failed_list_limit: int = Field(default=50, ge=1, le=1000)


@lru_cache
def get_settings() -> OutboxSettings:
    """Return the process-wide settings instance."""
    return OutboxSettings()
