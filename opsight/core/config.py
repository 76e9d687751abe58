import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database & Queue
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None
    REDIS_URL: str = "redis://localhost:6379"

    # Language model (Groq)
    GROQ_API_KEY: Optional[str] = None
    INSIGHTS_LLM_MODEL: str = "llama-3.1-8b-instant"
    INSIGHTS_ANALYSIS_MODEL: str = "llama-3.3-70b-versatile"
    INSIGHTS_LLM_TIMEOUT_SECONDS: float = 30.0
    INSIGHTS_REASONING_MAX_TOKENS: int = 150
    INSIGHTS_REASONING_TEMPERATURE: float = 0.7
    INSIGHTS_ANALYSIS_MAX_TOKENS: int = 3000
    INSIGHTS_ANALYSIS_TEMPERATURE: float = 0.2

    # Autonomous analyzer caps and dedup
    INSIGHTS_MAX_TASKS: int = 15
    INSIGHTS_MAX_BOTTLENECKS: int = 5
    INSIGHTS_MAX_PREDICTIONS: int = 4
    INSIGHTS_TASK_DEDUP_PREFIX: int = 30
    INSIGHTS_BOTTLENECK_DEDUP_PREFIX: int = 25
    INSIGHTS_PREDICTION_VALIDITY_DAYS: int = 7

    # Burnout predictions append history unless enabled
    INSIGHTS_BURNOUT_SUPERSEDE: bool = False

    # Bottleneck detection thresholds
    STUCK_PR_DAYS_WITHOUT_ACTIVITY: int = 3
    STUCK_PR_UNRESOLVED_COMMENTS: int = 1
    STALE_TASK_DAYS_IN_PROGRESS: int = 7
    DEPENDENCY_BLOCK_THRESHOLD: int = 2

    # Observability / Tracing
    OTEL_ENABLED: bool = False
    OTEL_EXPORTER: str = "console"  # console | memory

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
    log = logger or logging.getLogger("opsight")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "GROQ_API_KEY",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
