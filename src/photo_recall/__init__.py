"""photo_recall - OCR your photos and search the text in them.

Library usage:
    from photo_recall import ResultStore, get_backend, ingest_directory, search

    with ResultStore(db_path) as store:
        report = ingest_directory(store, photos_dir, get_backend("tesseract"))
        for hit in search(store, "open 24 hours"):
            print(hit.image.path, [span.text for span in hit.spans])
"""

from importlib.metadata import PackageNotFoundError, version

from .backends import OCRBackend, get_backend
from .database import ResultStore
from .errors import InvalidQuery, OcrFailure, RecallError, StoreWriteFailure
from .ingest import discover_images, ingest_directory, ingest_images
from .models import (
    BoundingBox,
    ImageRecord,
    IngestReport,
    OCRResult,
    OCRStatus,
    SearchHit,
    TextSpan,
)
from .search import MatchMode, search

try:
    __version__ = version("photo-recall")
except PackageNotFoundError:
    # Running from a source checkout without an install
    __version__ = "0.0.0.dev0+unknown"

__all__ = [
    "__version__",
    # Models
    "BoundingBox",
    "ImageRecord",
    "IngestReport",
    "OCRResult",
    "OCRStatus",
    "SearchHit",
    "TextSpan",
    # Errors
    "RecallError",
    "OcrFailure",
    "StoreWriteFailure",
    "InvalidQuery",
    # Backends
    "OCRBackend",
    "get_backend",
    # Store
    "ResultStore",
    # Ingest
    "discover_images",
    "ingest_images",
    "ingest_directory",
    # Search
    "MatchMode",
    "search",
]
