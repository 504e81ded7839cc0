"""Application settings from environment variables."""

from __future__ import annotations

import os


def _split(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings:
    HOST: str = os.environ.get("HOST", "0.0.0.0")
    PORT: int = int(os.environ.get("PORT", "8000"))
    DEBUG: bool = os.environ.get("DEBUG", "").lower() == "true"
    LOG_JSON: bool = os.environ.get("LOG_JSON", "true").lower() != "false"
    ALLOWED_ORIGINS: list[str] = _split(os.environ.get("ALLOWED_ORIGINS", ""))

    ROOT_DOMAIN: str = os.environ.get("ROOT_DOMAIN", "bltnm.store")
    SHOP_HOST: str = os.environ.get("SHOP_HOST", "shop.bltnm.store")
    DASHBOARD_HOST: str = os.environ.get("DASHBOARD_HOST", "dashboard.bltnm.store")

    DATABASE_URL: str = os.environ.get("DATABASE_URL", "")
    SESSION_COOKIE: str = os.environ.get("SESSION_COOKIE", "sid")
    CSRF_TOKEN_TTL: int = int(os.environ.get("CSRF_TOKEN_TTL", "0"))
    SESSION_MAX: int = int(os.environ.get("SESSION_MAX", "10000"))
    SESSION_IDLE_TIMEOUT: int = int(os.environ.get("SESSION_IDLE_TIMEOUT", "86400"))

    RATE_LIMIT_MAX: int = int(os.environ.get("RATE_LIMIT_MAX", "10"))
    RATE_LIMIT_WINDOW: int = int(os.environ.get("RATE_LIMIT_WINDOW", "60"))
    RATE_LIMIT_STORAGE: str = os.environ.get("RATE_LIMIT_STORAGE", "memory://")

    POLAR_WEBHOOK_SECRET: str = os.environ.get("POLAR_WEBHOOK_SECRET", "")
    DEFAULT_LANGUAGE: str = os.environ.get("DEFAULT_LANGUAGE", "en")
    API_URL: str = os.environ.get("API_URL", "http://localhost:8000")

    @classmethod
    def database_url(cls) -> str | None:
        """Async driver form of DATABASE_URL, or None for in-memory sessions."""
        if not cls.DATABASE_URL:
            return None
        url = cls.DATABASE_URL
        if url.startswith("postgresql://") and "+psycopg" not in url:
            url = url.replace("postgresql://", "postgresql+psycopg://", 1)
        elif url.startswith("sqlite://") and "+aiosqlite" not in url:
            url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return url

    @classmethod
    def require_webhook_secret(cls) -> str:
        if not cls.POLAR_WEBHOOK_SECRET:
            raise RuntimeError("POLAR_WEBHOOK_SECRET is not set")
        return cls.POLAR_WEBHOOK_SECRET
