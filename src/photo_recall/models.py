"""Data models for OCR results and stored image records."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field


class BoundingBox(BaseModel):
    """Text bounding box in pixels, top-left origin."""

    x: int
    y: int
    width: int
    height: int


class TextSpan(BaseModel):
    """One piece of recognized text with its location and confidence."""

    text: str
    confidence: float = Field(ge=0.0, le=1.0)
    bbox: BoundingBox
    span_index: int = 0


class OCRResult(BaseModel):
    """OCR results for a single image, as returned by a backend."""

    spans: list[TextSpan]
    engine: str
    width: int | None = None
    height: int | None = None

    @property
    def text(self) -> str:
        """All span text joined one span per line."""
        return "\n".join(span.text for span in self.spans)


class OCRStatus(Enum):
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ImageRecord:
    """A tracked photo and its OCR processing status.

    Attributes:
        id: Row id in the images table
        path: Absolute, resolved path of the photo
        status: Processing status
        content_hash: SHA-256 of the file bytes at the last OCR attempt
        processed_at: UTC time of the last OCR attempt (None while pending)
        engine: Backend name that produced the result
        error: Failure message when status is FAILED
        width: Decoded image width in pixels
        height: Decoded image height in pixels
    """

    id: int
    path: str
    status: OCRStatus
    content_hash: str | None = None
    processed_at: datetime | None = None
    engine: str | None = None
    error: str | None = None
    width: int | None = None
    height: int | None = None

    @property
    def name(self) -> str:
        return Path(self.path).name

    @property
    def directory(self) -> str:
        return str(Path(self.path).parent)

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"ImageRecord(id={self.id}, path={self.path!r}, status={self.status.value})"


@dataclass
class SearchHit:
    """An image matching a query, with only the spans that matched."""

    image: ImageRecord
    spans: list[TextSpan] = field(default_factory=list)
    score: float = 0.0


@dataclass
class IngestReport:
    """Counters for a single ingest run."""

    discovered: int = 0
    skipped: int = 0
    succeeded: int = 0
    failed: int = 0
    spans: int = 0
    failed_paths: list[str] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.succeeded + self.failed
