from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "local"
    APP_NAME: str = "RoRo Booking Workflow API"
    # Comma-separated origins for CORS. If empty, uses localhost defaults.
    CORS_ORIGINS: str = ""
    LOG_LEVEL: str = "INFO"

    SECRET_KEY: str = "change-me"

    DATABASE_URL: str = "sqlite:///./roro.db"

    @field_validator("DATABASE_URL", mode="after")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Render and others give postgres://; SQLAlchemy expects postgresql+psycopg2://."""
        if v and v.startswith("postgres://"):
            return "postgresql+psycopg2://" + v[11:]
        return v
    REDIS_URL: str = "redis://localhost:6379/0"

    # Workflow deadlines
    PAYMENT_DEADLINE_MINUTES: int = 24 * 60
    REVIEW_WINDOW_MINUTES: int = 30

    # Per-booking lock wait before giving up with ConcurrentModification
    LOCK_TIMEOUT_SECONDS: float = 10.0

    # Backoff for deadline timers whose firing raised
    DEADLINE_RETRY_BASE_SECONDS: float = 5.0
    DEADLINE_RETRY_MAX_SECONDS: float = 300.0

    # In-process timer thread (API) and beat sweep interval (worker)
    RUN_DEADLINE_SCHEDULER: bool = True
    DEADLINE_SWEEP_SECONDS: float = 60.0

    # Cancelling a booking that was already paid opens a refund request on the customer's behalf
    AUTO_REFUND_ON_PAID_CANCEL: bool = True


settings = Settings()
