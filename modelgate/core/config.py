"""
Configuration Management

Centralized configuration using Pydantic Settings.
Values come from environment variables or a .env file.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PACKAGE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Application
    app_name: str = "ModelGate"
    app_version: str = "1.0.0"
    environment: str = Field(default="development", alias="ENV")
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8080

    # Storage
    db_path: Optional[str] = Field(default=None, alias="MODELGATE_DB_PATH")
    datasources_file: Optional[str] = Field(default=None, alias="MODELGATE_DATASOURCES")

    # Result cache
    cache_enabled: bool = True
    cache_max_entries: int = 500
    cache_ttl_seconds: int = 300

    # Explore
    explore_default_limit: int = 1000
    explore_max_limit: int = 100000

    def resolved_db_path(self) -> str:
        """SQLite path for model and calculated-field storage."""
        if self.db_path:
            return self.db_path
        db_dir = PACKAGE_DIR / "db"
        db_dir.mkdir(exist_ok=True)
        return str(db_dir / "modelgate.db")

    def resolved_datasources_file(self) -> Path:
        if self.datasources_file:
            return Path(self.datasources_file)
        return PACKAGE_DIR.parent / "datasources.yaml"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
