"""Application configuration from environment variables."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from SOSBOX_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SOSBOX_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage
    storage_backend: Literal["file", "sql"] = Field(
        default="file",
        description="Box store implementation: flat JSON file or SQL table",
    )
    data_file: str = Field(
        default="data/boxes.json",
        description="Path of the JSON array used by the file store",
    )
    database_url: str = Field(
        default="sqlite+aiosqlite:///data/sosbox.db",
        description="SQLAlchemy async URL used by the SQL store",
    )

    # HTTP
    api_key: str | None = Field(
        default=None,
        description="Shared secret expected in the x-api-key header (disabled when empty)",
    )
    max_body_bytes: int = Field(
        default=1_000_000,
        ge=1,
        description="Request bodies above this size are rejected before parsing",
    )
    static_dir: str | None = Field(
        default=None,
        description="Directory with the map UI, served at / when set",
    )
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=5173, ge=1, le=65535, description="Bind port")

    # Application
    debug: bool = Field(default=False, description="Enable debug mode (echo SQL)")
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("storage_backend", mode="before")
    @classmethod
    def parse_storage_backend(cls, v: str | None) -> str:
        """Accept a few common spellings of the backend name."""
        if v is None:
            return "file"
        name = str(v).strip().lower()
        if name in ("json", "file", "flat"):
            return "file"
        if name in ("sql", "sqlite", "db", "database", "postgres", "postgresql"):
            return "sql"
        return name

    @field_validator("api_key", "static_dir", mode="before")
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        """Treat empty strings as unset."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("log_level")
    @classmethod
    def upper_log_level(cls, v: str) -> str:
        return v.upper()

    @property
    def auth_enabled(self) -> bool:
        """Check if the shared API key is configured."""
        return bool(self.api_key)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
