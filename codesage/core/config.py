import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Remote authoritative limiter (unset = in-process database limiter)
    LIMITER_URL: Optional[str] = None
    LIMITER_API_KEY: Optional[str] = None
    LIMITER_TIMEOUT_SECONDS: float = 0  # 0 = no timeout

    # Local subscription snapshot
    SNAPSHOT_NAMESPACE: str = "codesage-subscription"
    SNAPSHOT_BACKEND: str = "sql"  # memory | file | sql
    SNAPSHOT_DIR: str = ".codesage"

    # Expiry evaluation: "cached" honours is_active as stored, "derived" also checks expires_at
    EXPIRY_POLICY: str = "cached"

    # Security audit trail
    AUDIT_ENABLED: bool = True
    SECURITY_LOG_LIMIT: int = 50
    AUDIT_BUFFER_SIZE: int = 1000  # fallback buffer, oldest events dropped first

    # Background side effects (remote accounting)
    SIDE_EFFECT_MAX_ATTEMPTS: int = 1
    SIDE_EFFECT_QUEUE_SIZE: int = 100

    # Auth
    AUTH_JWT_SECRET: Optional[str] = None

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("codesage")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "AUTH_JWT_SECRET",
        "LIMITER_API_KEY",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    if cfg.EXPIRY_POLICY not in {"cached", "derived"}:
        message = f"Unknown EXPIRY_POLICY: {cfg.EXPIRY_POLICY}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    if cfg.SNAPSHOT_BACKEND not in {"memory", "file", "sql"}:
        message = f"Unknown SNAPSHOT_BACKEND: {cfg.SNAPSHOT_BACKEND}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
