from __future__ import annotations

import pytest

from app.core.config import AppEnv, Settings, load_settings

# ---- valid values ----


def test_load_settings_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("APP_ENV", raising=False)
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    settings = load_settings()
    assert settings.app_env == "dev"
    assert settings.log_level == "info"


def test_load_settings_respects_env_vars(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_ENV", "prod")
    monkeypatch.setenv("LOG_LEVEL", "error")
    settings = load_settings()
    assert settings.app_env == "prod"
    assert settings.log_level == "error"


def test_load_settings_normalizes_case(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_ENV", "PROD")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    settings = load_settings()
    assert settings.app_env == "prod"
    assert settings.log_level == "debug"


def test_load_settings_strips_whitespace(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_ENV", "  test  ")
    monkeypatch.setenv("LOG_LEVEL", "  warning  ")
    settings = load_settings()
    assert settings.app_env == "test"
    assert settings.log_level == "warning"


# ---- invalid APP_ENV ----


def test_load_settings_rejects_invalid_app_env(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("APP_ENV", "staging")
    monkeypatch.setenv("LOG_LEVEL", "info")
    with pytest.raises(ValueError, match="APP_ENV must be dev|test|prod"):
        load_settings()


def test_load_settings_rejects_empty_app_env(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("APP_ENV", "")
    with pytest.raises(ValueError, match="APP_ENV must be dev|test|prod"):
        load_settings()


# ---- invalid LOG_LEVEL ----


def test_load_settings_rejects_invalid_log_level(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("APP_ENV", "dev")
    monkeypatch.setenv("LOG_LEVEL", "verbose")
    with pytest.raises(ValueError, match="LOG_LEVEL must be debug|info|warning|error"):
        load_settings()


def test_load_settings_rejects_empty_log_level(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("LOG_LEVEL", "")
    with pytest.raises(ValueError, match="LOG_LEVEL must be debug|info|warning|error"):
        load_settings()


# ---- Settings properties ----


def _make_settings(app_env: AppEnv = "dev") -> Settings:
    return Settings(  # type: ignore[arg-type]
        app_env=app_env,
        log_level="info",
        log_json=False,
        port=8000,
        database_url=None,
        redis_url=None,
        blob_bucket=None,
        blob_region="us-east-1",
        blob_endpoint_url=None,
        blob_public_base_url=None,
        email_provider="console",
        email_from="no-reply@example.com",
        email_region="us-east-1",
        download_token_ttl_days=7,
        download_max_count=5,
        signed_url_ttl_seconds=900,
        collaborator_timeout_seconds=10,
        task_max_attempts=3,
    )


def test_settings_is_dev() -> None:
    s = _make_settings("dev")
    assert s.is_dev is True
    assert s.is_test is False
    assert s.is_prod is False


def test_settings_is_test() -> None:
    s = _make_settings("test")
    assert s.is_dev is False
    assert s.is_test is True
    assert s.is_prod is False


def test_settings_is_prod() -> None:
    s = _make_settings("prod")
    assert s.is_dev is False
    assert s.is_test is False
    assert s.is_prod is True


def test_settings_is_frozen() -> None:
    s = _make_settings()
    with pytest.raises(AttributeError):
        s.app_env = "prod"  # type: ignore[misc]


# ---- entitlement policy and collaborators ----


def test_load_settings_policy_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "DOWNLOAD_TOKEN_TTL_DAYS",
        "DOWNLOAD_MAX_COUNT",
        "SIGNED_URL_TTL_SECONDS",
        "TASK_MAX_ATTEMPTS",
        "EMAIL_PROVIDER",
        "BLOB_BUCKET",
    ):
        monkeypatch.delenv(name, raising=False)
    settings = load_settings()
    assert settings.download_token_ttl_days == 7
    assert settings.download_max_count == 5
    assert settings.signed_url_ttl_seconds == 900
    assert settings.task_max_attempts == 3
    assert settings.email_provider == "console"
    assert settings.blob_bucket is None


def test_load_settings_reads_download_policy(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DOWNLOAD_TOKEN_TTL_DAYS", "30")
    monkeypatch.setenv("DOWNLOAD_MAX_COUNT", "10")
    settings = load_settings()
    assert settings.download_token_ttl_days == 30
    assert settings.download_max_count == 10


def test_load_settings_rejects_non_integer_quota(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("DOWNLOAD_MAX_COUNT", "lots")
    with pytest.raises(ValueError, match="DOWNLOAD_MAX_COUNT must be an integer"):
        load_settings()


def test_load_settings_rejects_zero_quota(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DOWNLOAD_MAX_COUNT", "0")
    with pytest.raises(ValueError, match="DOWNLOAD_MAX_COUNT must be >= 1"):
        load_settings()


def test_load_settings_rejects_unknown_email_provider(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("EMAIL_PROVIDER", "smtp")
    with pytest.raises(ValueError, match="EMAIL_PROVIDER must be console|ses"):
        load_settings()


def test_load_settings_parses_log_json(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOG_JSON", "yes")
    assert load_settings().log_json is True
    monkeypatch.setenv("LOG_JSON", "maybe")
    with pytest.raises(ValueError, match="LOG_JSON must be a boolean"):
        load_settings()


def test_empty_bucket_means_no_blob_storage(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BLOB_BUCKET", "   ")
    assert load_settings().blob_bucket is None
