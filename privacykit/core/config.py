"""
Configuration management using Pydantic Settings.

Every field can be overridden through a ``PRIVACYKIT_``-prefixed
environment variable or an ``.env`` file in the working directory.
Complex fields (``PROVIDER_PROFILES``, ``DEFAULT_PROVIDERS``) take JSON.
"""

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from privacykit.core.types import KnownProvider, PrivacyLevel


class ProviderProfileSettings(BaseModel):
    """Static reference cost profile of one provider."""

    avg_fee_percent: float = Field(..., ge=0, description="Average fee, percent of amount")
    avg_latency_ms: float = Field(..., ge=0, description="Average settlement latency")


def _default_profiles() -> dict[str, ProviderProfileSettings]:
    return {
        KnownProvider.SHADOWWIRE.value: ProviderProfileSettings(
            avg_fee_percent=0.75, avg_latency_ms=4000
        ),
        KnownProvider.ARCIUM.value: ProviderProfileSettings(
            avg_fee_percent=0.2, avg_latency_ms=8000
        ),
        KnownProvider.NOIR.value: ProviderProfileSettings(
            avg_fee_percent=0.1, avg_latency_ms=6000
        ),
        KnownProvider.PRIVACY_CASH.value: ProviderProfileSettings(
            avg_fee_percent=1.0, avg_latency_ms=12000
        ),
    }


def _default_providers() -> dict[PrivacyLevel, str]:
    return {
        PrivacyLevel.AMOUNT_HIDDEN: KnownProvider.SHADOWWIRE.value,
        PrivacyLevel.SENDER_HIDDEN: KnownProvider.SHADOWWIRE.value,
        PrivacyLevel.FULL_ENCRYPTED: KnownProvider.ARCIUM.value,
        PrivacyLevel.ZK_PROVEN: KnownProvider.NOIR.value,
        PrivacyLevel.COMPLIANT_POOL: KnownProvider.PRIVACY_CASH.value,
    }


class Settings(BaseSettings):
    """Application settings"""

    model_config = SettingsConfigDict(
        env_prefix="PRIVACYKIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    APP_NAME: str = "PrivacyKit Router"
    APP_VERSION: str = "0.1.0"
    ENVIRONMENT: Literal["development", "test", "staging", "production"] = "development"

    # Logging
    LOG_LEVEL: str = Field(default="INFO", description="Root log level")
    LOG_JSON: bool | None = Field(
        default=None, description="JSON log output; auto-detected from ENVIRONMENT when unset"
    )
    LOG_DIR: str | None = Field(default=None, description="Directory for rotating log files")

    # Tracing
    TRACING_ENABLED: bool = False
    TRACING_SERVICE_NAME: str = "privacykit"

    # Routing
    ESTIMATE_FAILURE_POLICY: Literal["skip", "abort"] = Field(
        default="skip",
        description="skip: drop a provider whose estimate fails; abort: fail the selection",
    )
    CONCURRENT_ESTIMATES: bool = True
    PROVIDER_PROFILES: dict[str, ProviderProfileSettings] = Field(
        default_factory=_default_profiles
    )
    DEFAULT_PROVIDERS: dict[PrivacyLevel, str] = Field(default_factory=_default_providers)
    FALLBACK_PROVIDER: str = KnownProvider.SHADOWWIRE.value
    PROOF_PROVIDER: str = KnownProvider.NOIR.value

    # Provider initialization
    PROVIDER_INIT_MAX_ATTEMPTS: int = Field(default=3, ge=1)
    PROVIDER_INIT_INITIAL_DELAY_S: float = Field(default=0.5, ge=0)
    PROVIDER_INIT_MAX_DELAY_S: float = Field(default=10.0, ge=0)

    @field_validator("LOG_LEVEL")
    @classmethod
    def _upper_level(cls, v: str) -> str:
        return v.upper()

    @property
    def json_logs(self) -> bool:
        if self.LOG_JSON is not None:
            return self.LOG_JSON
        return self.ENVIRONMENT != "development"


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()


settings = get_settings()
