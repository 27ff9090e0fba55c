import pytest
from pydantic import ValidationError

from amora.config import Environment, Settings, get_settings, reset_settings_cache


def test_defaults():
    settings = Settings(jwt_access_secret="a-secret", jwt_refresh_secret="r-secret")

    assert settings.environment is Environment.PRODUCTION
    assert settings.access_token_ttl_seconds == 15 * 60
    assert settings.refresh_token_ttl_seconds == 7 * 24 * 60 * 60
    assert settings.default_search_distance_km == 50.0
    assert settings.default_page_size == 10
    assert settings.max_page_size == 100


def test_missing_secrets_are_generated_and_distinct():
    settings = Settings()

    assert settings.jwt_access_secret
    assert settings.jwt_refresh_secret
    assert settings.jwt_access_secret != settings.jwt_refresh_secret


def test_identical_secrets_rejected():
    with pytest.raises(ValidationError):
        Settings(jwt_access_secret="same", jwt_refresh_secret="same")


def test_from_env_reads_variables(monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "Development")
    monkeypatch.setenv("REDIS_URL", "  ")
    monkeypatch.setenv("CORS_ALLOW_ORIGINS", "https://a.example, https://b.example")
    monkeypatch.setenv("ACCESS_TOKEN_TTL_MINUTES", "5")
    reset_settings_cache()

    settings = get_settings()

    assert settings.is_development
    assert settings.redis_url is None
    assert settings.cors_allow_origins == ["https://a.example", "https://b.example"]
    assert settings.access_token_ttl_seconds == 300
    assert get_settings() is settings


def test_page_size_bounds_checked():
    with pytest.raises(ValidationError):
        Settings(
            jwt_access_secret="a-secret",
            jwt_refresh_secret="r-secret",
            default_page_size=200,
            max_page_size=100,
        )
