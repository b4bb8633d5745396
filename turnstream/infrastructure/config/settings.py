from functools import lru_cache
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from the environment and an optional .env file"""
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"
    SERVICE_NAME: str = "turnstream"

    # Provider stream
    WIRE_FORMAT: str = "records"
    PROVIDER_BASE_URL: str = "http://localhost:8080/v1/stream"
    PROVIDER_API_KEY: Optional[str] = None
    PROVIDER_TIMEOUT_SECONDS: Optional[float] = None

    # Memory store
    MEMORY_NAMESPACE: str = "/memories"
    MEMORY_MAX_FILE_BYTES: int = 100 * 1024
    MEMORY_MAX_TOTAL_BYTES: int = 1024 * 1024
    MEMORY_MAX_VIEW_CHARS: int = 50_000
    MEMORY_BACKEND: str = "memory"
    MEMORY_SQLITE_PATH: str = "memories.db"

    # Tools
    ENABLE_TOOL_SEARCH: bool = True

    # Turn post-processing
    SUGGESTIONS_MARKER: str = "SUGGESTIONS:"


# lru_cache to cache the settings instance.
@lru_cache
def get_settings() -> Settings:
    return Settings()
