import logging
import os
from typing import List, Optional

from pydantic import BaseModel, Field


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


class Settings(BaseModel):
    """
    Application settings.

    Built once from the environment by ``Settings.from_env()`` and handed to
    ``create_app``; nothing else in the code base reads the environment.
    """
    database_url: Optional[str] = None
    database_name: str = "bullmart"
    server_selection_timeout_ms: int = 5000

    jwt_secret: str = "dev-secret-change-me"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24 * 7  # 7 days
    email_verification_expire_minutes: int = 60 * 24
    password_reset_expire_minutes: int = 60
    bcrypt_rounds: int = Field(12, ge=4, le=31)

    max_login_attempts: int = Field(5, ge=1)
    lock_duration_minutes: int = Field(120, ge=1)

    login_rate_limit: int = 5
    login_rate_window_seconds: int = 15 * 60
    register_rate_limit: int = 3
    register_rate_window_seconds: int = 60 * 60
    api_rate_limit: int = 100
    api_rate_window_seconds: int = 15 * 60
    strict_rate_limit: int = 20
    strict_rate_window_seconds: int = 15 * 60

    require_email_verification: bool = True
    # Return verification/reset tokens in API responses (development only)
    expose_tokens: bool = False

    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            database_url=os.getenv("DATABASE_URL"),
            database_name=os.getenv("DATABASE_NAME", "bullmart"),
            server_selection_timeout_ms=_env_int("DATABASE_TIMEOUT_MS", 5000),
            jwt_secret=os.getenv("JWT_SECRET", "dev-secret-change-me"),
            jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
            bcrypt_rounds=_env_int("BCRYPT_ROUNDS", 12),
            max_login_attempts=_env_int("MAX_LOGIN_ATTEMPTS", 5),
            lock_duration_minutes=_env_int("LOCK_DURATION_MINUTES", 120),
            login_rate_limit=_env_int("LOGIN_RATE_LIMIT", 5),
            register_rate_limit=_env_int("REGISTER_RATE_LIMIT", 3),
            api_rate_limit=_env_int("API_RATE_LIMIT", 100),
            strict_rate_limit=_env_int("STRICT_RATE_LIMIT", 20),
            require_email_verification=_env_bool("REQUIRE_EMAIL_VERIFICATION", True),
            expose_tokens=_env_bool("EXPOSE_TOKENS", False),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
