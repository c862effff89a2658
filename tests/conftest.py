"""Pytest configuration and shared fixtures."""

import hashlib
import itertools
from collections.abc import Callable
from io import BytesIO
from pathlib import Path

import pytest
from PIL import Image

from photo_recall.backends.base import OCRBackend, load_image
from photo_recall.database import ResultStore
from photo_recall.models import BoundingBox, OCRResult, TextSpan


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: fast tests with no external dependencies")
    config.addinivalue_line(
        "markers", "integration: tests exercising ingest, store and search together"
    )


class FakeBackend(OCRBackend):
    """In-process OCR backend returning canned results keyed by image content."""

    name = "fake"
    default_language = "xx"

    def __init__(self):
        self.responses: dict[str, list[tuple] | Exception] = {}
        self.calls: list[str] = []
        self.languages: list[str] = []

    def register(self, path: Path, response: list[tuple] | Exception) -> None:
        """Register the result for an image file.

        Args:
            path: Image file; its current bytes are the lookup key
            response: List of (text, confidence, (x, y, width, height)) or an
                exception to raise
        """
        self.responses[hashlib.sha256(path.read_bytes()).hexdigest()] = response

    def process_single(self, image_bytes: bytes, language: str) -> OCRResult:
        key = hashlib.sha256(image_bytes).hexdigest()
        self.calls.append(key)
        self.languages.append(language)
        image = load_image(image_bytes)

        response = self.responses.get(key, [])
        if isinstance(response, Exception):
            raise response

        spans = [
            TextSpan(
                text=text,
                confidence=confidence,
                bbox=BoundingBox(x=box[0], y=box[1], width=box[2], height=box[3]),
                span_index=index,
            )
            for index, (text, confidence, box) in enumerate(response)
        ]
        return OCRResult(spans=spans, engine=self.name, width=image.width, height=image.height)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def store(tmp_path: Path):
    """Open result store in a temporary directory."""
    with ResultStore(tmp_path / "db" / "recall.sqlite") as result_store:
        yield result_store


@pytest.fixture
def photos_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "photos"
    directory.mkdir()
    return directory.resolve()


_colors = itertools.count(1)


@pytest.fixture
def make_image() -> Callable[..., Path]:
    """Factory writing a small image with unique content."""

    def _make(directory: Path, name: str, size: tuple[int, int] = (64, 48)) -> Path:
        # Unique color per image so every file has distinct bytes
        n = next(_colors)
        color = (n * 37 % 256, n * 91 % 256, n * 151 % 256)
        image = Image.new("RGB", size, color=color)

        buffer = BytesIO()
        suffix = Path(name).suffix.lower()
        image_format = {".jpg": "JPEG", ".jpeg": "JPEG"}.get(suffix, "PNG")
        image.save(buffer, format=image_format)

        path = directory / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(buffer.getvalue())
        return path.resolve()

    return _make
