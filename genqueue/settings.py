from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Records
    DATABASE_URL: str = "sqlite:///./genqueue.db"

    # Queue (Redis)
    REDIS_URL: str = "redis://localhost:6379/0"
    QUEUE_HIGH_KEY: str = "queue:high"
    QUEUE_LOW_KEY: str = "queue:low"
    SUPERVISOR_LOCK_KEY: str = "supervisor_lock"
    LOCK_TTL_SECONDS: int = 60

    # Supervisor budget / throttling
    JOBS_PER_WINDOW: int = 20
    WINDOW_SECONDS: float = 10.0
    MAX_EXECUTION_SECONDS: float = 25.0
    WORKER_IDLE_SECONDS: float = 5.0
    WORKER_URL: str | None = None  # external wake-up hook (optional)

    # Poll-based providers
    POLL_INTERVAL_SECONDS: float = 1.5
    POLL_MAX_ATTEMPTS: int = 20

    # Priority
    HIGH_PRIORITY_PLANS: List[str] = ["pro", "team", "enterprise"]
    HIGH_PRIORITY: int = 10
    LOW_PRIORITY: int = 0
    DEFAULT_COST_CREDITS: int = 100
    MAX_VARIATIONS: int = 5

    # Ephemeral exchange
    EXCHANGE_TTL_SECONDS: int = 600
    EXCHANGE_MAX_BYTES: int = 5 * 1024 * 1024
    PUBLIC_BASE_URL: str | None = None  # e.g. https://app.example.com

    # Providers
    KIE_API_KEY: str | None = None
    KIE_API_KEY_BACKUP: str | None = None
    KIE_API_BASE: str = "https://api.kie.ai/api/v1"
    KIE_USE_CALLBACK: bool = True
    GEMINI_API_KEY: str | None = None
    GEMINI_API_BASE: str = "https://generativelanguage.googleapis.com/v1beta"
    PROVIDER_TIMEOUT_SECONDS: float = 60.0

    # AWS / S3
    AWS_REGION: str | None = None
    S3_BUCKET: str | None = None
    S3_OUTPUT_PREFIX: str = "generated/"
    S3_PUBLIC_BASE_URL: str | None = None
    S3_URL_TTL_SECONDS: int = 7 * 24 * 3600  # SigV4 maximum

    # Reconciliation sweep
    QUEUED_STALE_SECONDS: int = 600
    QUEUED_GIVE_UP_SECONDS: int = 3600
    PROCESSING_STALE_SECONDS: int = 1800

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

settings = Settings()
