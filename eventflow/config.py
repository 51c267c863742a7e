"""
Configuration settings for the Workflow Engine.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal, Optional


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "EventFlow"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = True

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Workflow Engine
    MAX_ITERATIONS: int = 0  # Dispatch ceiling per run, 0 = uncapped
    STREAM_BUFFER_SIZE: int = 1024  # 0 = unbounded
    STREAM_PUT_TIMEOUT: Optional[float] = 1.0  # Seconds, None = block

    # Persistence
    PERSISTENCE_BACKEND: Literal["memory", "file", "sql"] = "memory"
    SNAPSHOT_DIR: str = "./snapshots"
    DATABASE_URL: str = "sqlite+aiosqlite:///./eventflow.db"
    SNAPSHOT_TABLE: str = "workflow_snapshots"

    # Logging
    LOG_LEVEL: str = "INFO"


# Global settings instance
settings = Settings()
