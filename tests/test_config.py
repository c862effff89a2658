"""Tests for settings loading."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from photo_recall.config import SUPPORTED_EXTENSIONS, Settings, get_settings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path: Path):
    """Isolate settings from the caller's environment and any .env file."""
    for name in ("DATA_DIR", "DB_PATH", "OCR_BACKEND", "LANGUAGE", "MAX_WORKERS", "SEARCH_LIMIT"):
        monkeypatch.delenv(f"RECALL_{name}", raising=False)
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.mark.unit
def test_defaults():
    settings = Settings()

    assert settings.ocr_backend == "tesseract"
    assert settings.language is None
    assert settings.max_workers == 1
    assert settings.search_limit == 10
    assert settings.extensions == SUPPORTED_EXTENSIONS
    assert settings.effective_db_path == settings.data_dir / "data.sqlite"


@pytest.mark.unit
def test_environment_overrides(monkeypatch, tmp_path: Path):
    monkeypatch.setenv("RECALL_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("RECALL_OCR_BACKEND", "google_vision")
    monkeypatch.setenv("RECALL_MAX_WORKERS", "4")

    settings = Settings()

    assert settings.effective_db_path == tmp_path / "data" / "data.sqlite"
    assert settings.ocr_backend == "google_vision"
    assert settings.max_workers == 4


@pytest.mark.unit
def test_db_path_overrides_data_dir(monkeypatch, tmp_path: Path):
    monkeypatch.setenv("RECALL_DB_PATH", str(tmp_path / "custom.sqlite"))

    assert Settings().effective_db_path == tmp_path / "custom.sqlite"


@pytest.mark.unit
def test_dotenv_file(tmp_path: Path):
    (tmp_path / ".env").write_text("RECALL_LANGUAGE=deu\n")

    assert Settings().language == "deu"


@pytest.mark.unit
def test_invalid_workers_rejected(monkeypatch):
    monkeypatch.setenv("RECALL_MAX_WORKERS", "0")

    with pytest.raises(ValidationError):
        Settings()


@pytest.mark.unit
def test_get_settings_is_cached():
    assert get_settings() is get_settings()
