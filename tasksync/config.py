"""Runtime configuration for the task sync API."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def load_env() -> None:
    """Load .env, then let .env.<APP_ENV> override it."""
    env_name = os.getenv("APP_ENV", "development")
    candidates = [Path.cwd(), PROJECT_ROOT]
    for base in candidates:
        env_path = base / ".env"
        if env_path.exists():
            load_dotenv(env_path)
            break

    for base in candidates:
        env_specific = base / f".env.{env_name}"
        if env_specific.exists():
            load_dotenv(env_specific, override=True)
            break


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    database_url: str
    auth_secret: str
    token_expire_days: int = 7
    environment: str = "development"
    frontend_url: str = "http://localhost:3000"
    sync_requires_premium: bool = True
    rate_limit_requests: int = 100
    rate_limit_window_seconds: float = 900.0
    rate_limit_max_keys: int = 10_000
    log_level: str = "INFO"
    reset_db_on_startup: bool = False


load_env()

SETTINGS = Settings(
    database_url=os.getenv("DATABASE_URL", "").strip() or "sqlite:///./tasksync.db",
    auth_secret=os.getenv("AUTH_SECRET", "").strip() or "dev-secret-change-me",
    token_expire_days=int(os.getenv("TOKEN_EXPIRE_DAYS", "7")),
    environment=os.getenv("ENVIRONMENT", "development"),
    frontend_url=os.getenv("FRONTEND_URL", "http://localhost:3000"),
    sync_requires_premium=_env_bool("SYNC_REQUIRES_PREMIUM", True),
    rate_limit_requests=int(os.getenv("RATE_LIMIT_REQUESTS", "100")),
    rate_limit_window_seconds=float(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "900")),
    rate_limit_max_keys=int(os.getenv("RATE_LIMIT_MAX_KEYS", "10000")),
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    reset_db_on_startup=_env_bool("RESET_DB_ON_STARTUP", False),
)
