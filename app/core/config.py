from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # Remote API
    API_BASE_URL: str = "https://api.field-safety.local"
    REQUEST_TIMEOUT_SECONDS: float = 30.0

    # Local cache database
    DATABASE_URL: Optional[str] = None
    DB_PATH: str = "./field_safety.db"
    DB_ECHO: bool = False
    STORE_READY_TIMEOUT_SECONDS: Optional[float] = None  # None = wait forever

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"sqlite+aiosqlite:///{self.DB_PATH}"

    # Sync behaviour
    AUTO_SYNC_ENABLED: bool = True
    SYNC_INTERVAL_SECONDS: float = 30.0
    SYNC_DEBOUNCE_SECONDS: float = 5.0  # Minimum gap between two sync passes of one domain
    SYNC_MAX_RETRIES: int = 5  # Queue entries are dropped after this many failed attempts
    SYNC_BATCH_LIMIT: int = 50

    # Connectivity
    CONNECTIVITY_PROBE_URL: str = "https://www.google.com/favicon.ico"
    CONNECTIVITY_PROBE_TIMEOUT_SECONDS: float = 5.0
    CONNECTIVITY_CHECK_INTERVAL_SECONDS: float = 30.0

    class Config:
        env_file = ".env"
        extra = "ignore"  # Allow extra fields in .env file

settings = Settings()
