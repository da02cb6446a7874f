from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./sleep_database.db"
    SQLITE_BUSY_TIMEOUT_SECONDS: float = 5.0

    # Live queries
    LIVE_QUERY_DEBOUNCE_SECONDS: float = 0.0  # extra wait to coalesce bursts of writes

    # App Settings
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    APP_NAME: str = "SleepMonitor"
    API_V1_PREFIX: str = "/api"

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
