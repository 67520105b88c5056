"""
Identity Service Configuration Settings
"""
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Storage (use IDENTITY_ prefix)
    db_path: Path = Field(
        default=Path("./data/contacts.db"),
        alias="IDENTITY_DB_PATH",
        description="SQLite database holding the contacts table"
    )
    store_backend: str = Field(
        default="sqlite",
        alias="IDENTITY_STORE",
        description="Contact store backend: 'sqlite' or 'memory'"
    )
    db_timeout: float = Field(
        default=30.0,
        alias="IDENTITY_DB_TIMEOUT",
        description="Seconds to wait on a locked SQLite database"
    )

    # Server (3000 matches the original deployment)
    port: int = Field(default=3000, alias="IDENTITY_PORT")
    host: str = Field(default="0.0.0.0", alias="IDENTITY_HOST")

    # Matching
    # Off by default: emails and phones match exactly as submitted.
    normalize_identifiers: bool = Field(
        default=False,
        alias="IDENTITY_NORMALIZE",
        description="Lower-case emails and strip phone punctuation before matching"
    )

    log_level: str = Field(default="INFO", alias="IDENTITY_LOG_LEVEL")

    @property
    def use_memory_store(self) -> bool:
        """Check if the ephemeral in-memory store is configured."""
        return self.store_backend.strip().lower() == "memory"


settings = Settings()
