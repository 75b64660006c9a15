"""
Settings loading and validation.
"""

import pytest
from pydantic import ValidationError

from telecare.config import DEFAULT_PLAN_CREDITS, Settings, TestingConfig, get_config_by_env

SECRET = "x" * 40


def test_defaults(monkeypatch):
    for name in ("APPOINTMENT_COST", "PLAN_CREDITS", "DATABASE_URL", "ENVIRONMENT", "LOG_JSON"):
        monkeypatch.delenv(name, raising=False)
    settings = Settings(identity_jwt_secret=SECRET)

    assert settings.appointment_cost == 2
    assert settings.plan_credits == DEFAULT_PLAN_CREDITS
    assert settings.is_sqlite
    assert settings.is_development
    assert settings.use_json_logs is False


def test_environment_variables_override_defaults(monkeypatch):
    monkeypatch.delenv("LOG_JSON", raising=False)
    monkeypatch.setenv("APPOINTMENT_COST", "3")
    monkeypatch.setenv("PLAN_CREDITS", '{"standard": 12, "clinic": 40}')
    monkeypatch.setenv("CORS_ORIGINS", "https://a.example, https://b.example")
    monkeypatch.setenv("ENVIRONMENT", "production")
    settings = Settings(identity_jwt_secret=SECRET)

    assert settings.appointment_cost == 3
    assert settings.plan_credits == {"standard": 12, "clinic": 40}
    assert settings.cors_origins == ["https://a.example", "https://b.example"]
    assert settings.is_production
    assert settings.use_json_logs is True


@pytest.mark.parametrize(
    "overrides",
    [
        {"identity_jwt_secret": "too-short"},
        {"identity_jwt_secret": SECRET, "appointment_cost": 0},
        {"identity_jwt_secret": SECRET, "database_url": "mysql://db/telecare"},
        {"identity_jwt_secret": SECRET, "plan_credits": {"standard": -1}},
    ],
)
def test_invalid_values_are_rejected(overrides):
    with pytest.raises(ValidationError):
        Settings(**overrides)


def test_config_by_env(monkeypatch):
    monkeypatch.delenv("ENVIRONMENT", raising=False)
    settings = get_config_by_env("testing", identity_jwt_secret=SECRET)
    assert isinstance(settings, TestingConfig)
    assert settings.rate_limit_enabled is False
    assert settings.environment == "testing"

    fallback = get_config_by_env("staging", identity_jwt_secret=SECRET)
    assert type(fallback) is Settings
