import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database & Cache
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None
    REDIS_URL: str = "redis://localhost:6379"

    # Matching
    MATCH_MIN_SCORE: int = 60  # recommendations below this score are dropped
    MATCH_MESSAGE_MAX_LENGTH: int = 500
    MATCH_CONFLICT_RETRIES: int = 1

    # Notifications
    NOTIFICATIONS_BACKEND: str = "log"  # log | memory | rq
    NOTIFICATIONS_QUEUE: str = "notifications"

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
    log = logger or logging.getLogger("travelmate")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = ["DATABASE_URL"]
    if getattr(cfg, "NOTIFICATIONS_BACKEND", "log") == "rq":
        required_keys.append("REDIS_URL")

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    if not 0 <= cfg.MATCH_MIN_SCORE <= 100:
        message = f"MATCH_MIN_SCORE must be within 0..100, got {cfg.MATCH_MIN_SCORE}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    if cfg.MATCH_MESSAGE_MAX_LENGTH < 1:
        message = f"MATCH_MESSAGE_MAX_LENGTH must be positive, got {cfg.MATCH_MESSAGE_MAX_LENGTH}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
