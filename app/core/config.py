from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]
EmailProvider = Literal["console", "ses"]


def _getenv(name: str, default: str) -> str:
    return os.environ.get(name, default).strip()


def _getint(name: str, default: int, *, minimum: int = 1) -> int:
    raw = _getenv(name, str(default))
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum} (got {value})")
    return value


def _getbool(name: str, default: bool) -> bool:
    raw = _getenv(name, "true" if default else "false").lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off", ""):
        return False
    raise ValueError(f"{name} must be a boolean (got {raw!r})")


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    database_url: str | None
    redis_url: str | None

    # Blob storage (S3-compatible). No bucket → in-memory store.
    blob_bucket: str | None
    blob_region: str
    blob_endpoint_url: str | None
    blob_public_base_url: str | None

    # Transactional email
    email_provider: EmailProvider
    email_from: str
    email_region: str

    # Entitlement policy
    download_token_ttl_days: int
    download_max_count: int
    signed_url_ttl_seconds: int

    # Background work
    collaborator_timeout_seconds: int
    task_max_attempts: int

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()
    email_provider_raw = _getenv("EMAIL_PROVIDER", "console").lower()

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    if email_provider_raw not in ("console", "ses"):
        raise ValueError(
            f"EMAIL_PROVIDER must be console|ses (got {email_provider_raw!r})"
        )

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=_getbool("LOG_JSON", False),
        port=_getint("PORT", 8000),
        database_url=_getenv("DATABASE_URL", "") or None,
        redis_url=_getenv("REDIS_URL", "") or None,
        blob_bucket=_getenv("BLOB_BUCKET", "") or None,
        blob_region=_getenv("BLOB_REGION", "us-east-1"),
        blob_endpoint_url=_getenv("BLOB_ENDPOINT_URL", "") or None,
        blob_public_base_url=_getenv("BLOB_PUBLIC_BASE_URL", "") or None,
        email_provider=email_provider_raw,
        email_from=_getenv("EMAIL_FROM", "no-reply@example.com"),
        email_region=_getenv("EMAIL_REGION", "us-east-1"),
        download_token_ttl_days=_getint("DOWNLOAD_TOKEN_TTL_DAYS", 7),
        download_max_count=_getint("DOWNLOAD_MAX_COUNT", 5),
        signed_url_ttl_seconds=_getint("SIGNED_URL_TTL_SECONDS", 900),
        collaborator_timeout_seconds=_getint("COLLABORATOR_TIMEOUT_SECONDS", 10),
        task_max_attempts=_getint("TASK_MAX_ATTEMPTS", 3),
    )


# Module-level singleton so imports are cheap
SETTINGS = load_settings()
