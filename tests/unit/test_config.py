"""Unit tests for core configuration."""
import pytest
from pydantic import ValidationError

from privacykit.core.config import Settings, get_settings, settings
from privacykit.core.types import PrivacyLevel
from privacykit.infra.runtime.router import RoutingPolicy


def test_settings_initialization():
    """Test settings are initialized properly."""
    assert settings.APP_NAME == "PrivacyKit Router"
    assert settings is get_settings()


def test_settings_routing_defaults():
    """Test default routing values."""
    cfg = Settings(_env_file=None)
    assert cfg.ESTIMATE_FAILURE_POLICY == "skip"
    assert cfg.CONCURRENT_ESTIMATES is True
    assert cfg.FALLBACK_PROVIDER == "shadowwire"
    assert cfg.PROOF_PROVIDER == "noir"


def test_settings_reference_profiles():
    """Test the default reference cost table."""
    profiles = Settings(_env_file=None).PROVIDER_PROFILES
    assert profiles["shadowwire"].avg_fee_percent == 0.75
    assert profiles["arcium"].avg_latency_ms == 8000
    assert profiles["noir"].avg_fee_percent == 0.1
    assert profiles["privacycash"].avg_latency_ms == 12000


def test_settings_env_override(monkeypatch):
    """Test PRIVACYKIT_-prefixed environment variables override defaults."""
    monkeypatch.setenv("PRIVACYKIT_ESTIMATE_FAILURE_POLICY", "abort")
    monkeypatch.setenv("PRIVACYKIT_LOG_LEVEL", "debug")
    monkeypatch.setenv(
        "PRIVACYKIT_PROVIDER_PROFILES",
        '{"custom": {"avg_fee_percent": 0.3, "avg_latency_ms": 1500}}',
    )

    cfg = Settings(_env_file=None)

    assert cfg.ESTIMATE_FAILURE_POLICY == "abort"
    assert cfg.LOG_LEVEL == "DEBUG"
    assert set(cfg.PROVIDER_PROFILES) == {"custom"}


def test_settings_rejects_unknown_policy():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, ESTIMATE_FAILURE_POLICY="retry")


def test_json_logs_follow_environment():
    assert Settings(_env_file=None, ENVIRONMENT="development").json_logs is False
    assert Settings(_env_file=None, ENVIRONMENT="production").json_logs is True
    assert Settings(_env_file=None, ENVIRONMENT="production", LOG_JSON=False).json_logs is False


def test_routing_policy_from_settings():
    cfg = Settings(_env_file=None, ESTIMATE_FAILURE_POLICY="abort", CONCURRENT_ESTIMATES=False)
    policy = RoutingPolicy.from_settings(cfg)

    assert policy.estimate_failure_policy == "abort"
    assert policy.concurrent_estimates is False
    assert policy.profiles["arcium"].avg_fee_percent == 0.2
    assert policy.default_providers[PrivacyLevel.FULL_ENCRYPTED] == "arcium"
