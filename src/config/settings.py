"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    environment: Literal["local", "dev", "prod"] = Field(default="local")
    log_level: str = Field(default="INFO")

    # Credential exchange
    vox_api_url: str | None = Field(
        default=None,
        description="HTTPS endpoint that exchanges an API key for transport connection details.",
    )
    vox_http_timeout_seconds: float = Field(default=30.0, gt=0.0)
    sdk_source_type: str = Field(default="python-sdk")
    sdk_version: str = Field(default="0.3.2")

    # Waveform sampling
    waveform_default_bar_count: int = Field(default=10, ge=1)
    waveform_default_update_interval_ms: int = Field(default=20, ge=1)
    waveform_idle_bar_count: int = Field(
        default=120,
        ge=1,
        description="Bar count sampled for the speaker that is not currently selected.",
    )
    waveform_idle_update_interval_ms: int = Field(default=20, ge=1)

    # Live session commands
    dtmf_payload_type: int = Field(default=101, description="RTP payload type for DTMF (RFC 4733).")

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        return value.strip().upper()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
