# lineup/config/settings.py

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    ENV: str = "development"
    API_BASE_URL: str = "http://localhost:8000"
    RETREAT_SLUG: str = "demo-retreat"
    POLL_INTERVAL_SECONDS: float = 2.0
    DEBOUNCE_SECONDS: float = 2.0
    GROUP_CAPACITY: int = 6
    STALE_AFTER_FAILURES: int = 3
    REQUEST_TIMEOUT_SECONDS: Optional[float] = 10.0
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        env_prefix = "LINEUP_"
        extra = "ignore"

settings = Settings()
