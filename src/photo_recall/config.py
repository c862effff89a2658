"""Configuration using pydantic-settings."""

from functools import lru_cache
from pathlib import Path

import typer
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

APP_NAME = "recall"

SUPPORTED_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".bmp", ".tiff", ".tif", ".webp")


def default_data_dir() -> Path:
    """Per-user application data directory."""
    return Path(typer.get_app_dir(APP_NAME))


class Settings(BaseSettings):
    """Settings loaded from RECALL_* environment variables or a .env file."""

    model_config = SettingsConfigDict(
        env_prefix="RECALL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage
    data_dir: Path = Field(default_factory=default_data_dir)
    db_path: Path | None = None

    # OCR
    ocr_backend: str = "tesseract"
    # None means each backend uses its own default_language
    language: str | None = None
    max_workers: int = Field(default=1, ge=1)
    extensions: tuple[str, ...] = SUPPORTED_EXTENSIONS

    # Search
    search_limit: int = Field(default=10, ge=1)
    min_confidence: float = Field(default=0.0, ge=0.0, le=1.0)

    # Backend specific
    tesseract_cmd: str | None = None
    google_credentials_json: str | None = None

    @property
    def effective_db_path(self) -> Path:
        """Database file path, defaulting to data.sqlite inside data_dir."""
        if self.db_path is not None:
            return self.db_path
        return self.data_dir / "data.sqlite"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
