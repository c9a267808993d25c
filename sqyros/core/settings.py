"""Application settings and lazy settings loader."""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration.

    Note: the deployment passes env vars into the container; we validate presence here.
    """

    # Load `.env` if present; always allow `env.example` for local defaults.
    model_config = SettingsConfigDict(
        env_file=(".env", "env.example"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    MONGODB_URL: str
    MONGODB_DATABASE: str = "sqyros"
    REDIS_URL: str = "redis://localhost:6379"
    LOG_LEVEL: str = "INFO"

    # LLM provider. One concrete model per routing tier.
    GOOGLE_API_KEY: str | None = None
    FAST_MODEL: str = "gemini-2.5-flash"
    ADVANCED_MODEL: str = "gemini-3-pro"
    LLM_TIMEOUT_S: float = 120.0
    LLM_MAX_RETRIES: int = 2

    # Identity: when unset, token signatures are verified by the identity provider upstream.
    JWT_SECRET: str | None = None

    # Subscription quotas (free tier only; paid tiers are uncapped)
    FREE_GUIDES_PER_MONTH: int = 3
    FREE_QUESTIONS_PER_DAY: int = 5
    UPGRADE_URL: str = "/pricing"

    # Burst rate limiting - disabled by default for local/dev/test convenience
    RATE_LIMIT_ENABLED: bool = False
    RATE_LIMIT_REQUESTS_PER_MIN: int = 30
    RATE_LIMIT_BURST: int = 10


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance (lazy-loaded)."""
    # Lazy-load to avoid import-time crashes in tooling/tests when env isn't set yet.
    return Settings()
