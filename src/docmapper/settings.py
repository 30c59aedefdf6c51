"""
Configuration for docmapper
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class MapperSettings(BaseSettings):
    """Settings read from DOCMAPPER_* environment variables or a .env file."""

    model_config = SettingsConfigDict(
        env_prefix="DOCMAPPER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True,
    )

    db_path: str = Field(
        default="docmapper.db",
        description="SQLite file backing the key-value store, or ':memory:'",
    )
    log_level: str = Field(default="info", description="Minimum level for CLI log output")


def get_settings() -> MapperSettings:
    """Get mapper settings"""
    return MapperSettings()
