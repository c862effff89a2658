"""Discover photos, OCR the ones not yet indexed, and persist the results.

Each image's result is committed to the store before the next result is
written, so an interrupted run keeps everything processed so far. OCR
failures are recorded on the image and never stop the run; store failures
abort it.
"""

import hashlib
import logging
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from .backends.base import OCRBackend
from .config import SUPPORTED_EXTENSIONS
from .database import ResultStore
from .errors import OcrFailure
from .models import ImageRecord, IngestReport, OCRResult, OCRStatus

logger = logging.getLogger(__name__)


@dataclass
class OCROutcome:
    """Result of one OCR attempt, before it is written to the store."""

    path: Path
    content_hash: str | None = None
    result: OCRResult | None = None
    error: str | None = None


def discover_images(
    directory: Path,
    recursive: bool = False,
    extensions: Iterable[str] = SUPPORTED_EXTENSIONS,
) -> list[Path]:
    """Find supported image files in a directory.

    Args:
        directory: Directory to scan
        recursive: If True, also scan subdirectories
        extensions: Lower-case suffixes to accept (e.g., ".jpg")

    Returns:
        Resolved absolute paths, sorted and de-duplicated

    Raises:
        NotADirectoryError: If directory is not a directory
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise NotADirectoryError(f"Not a directory: {directory}")

    allowed = {ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in extensions}
    candidates = directory.rglob("*") if recursive else directory.iterdir()

    found = set()
    for path in candidates:
        if path.suffix.lower() not in allowed or not path.is_file():
            continue
        try:
            found.add(path.resolve(strict=True))
        except OSError as e:
            logger.error(f"Failed to resolve path {path}: {e}")

    return sorted(found)


def hash_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def is_stale(record: ImageRecord, path: Path) -> bool:
    """Check whether a done record no longer matches the file on disk.

    A record is stale when the file was modified after it was processed and
    its content hash changed. Touching a file without changing it is not enough.
    """
    if record.processed_at is None:
        return True
    try:
        modified = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
        if modified <= record.processed_at:
            return False
        return hash_bytes(path.read_bytes()) != record.content_hash
    except OSError as e:
        logger.warning(f"Failed to check {path} for changes: {e}")
        return True


def needs_ocr(record: ImageRecord, path: Path, force: bool = False) -> bool:
    """Pending and failed records are always retried; done records only when stale."""
    if force or record.status != OCRStatus.DONE:
        return True
    return is_stale(record, path)


def ocr_image(path: Path, backend: OCRBackend, language: str) -> OCROutcome:
    """Read one image and run it through the backend.

    Never raises for per-image problems; the error is carried on the outcome.
    """
    outcome = OCROutcome(path=path)
    try:
        image_bytes = path.read_bytes()
    except OSError as e:
        outcome.error = f"Failed to read image: {e}"
        return outcome

    outcome.content_hash = hash_bytes(image_bytes)
    try:
        result = backend.process_single(image_bytes, language)
    except OcrFailure as e:
        outcome.error = str(e)
        return outcome
    except Exception as e:
        # Engine errors are opaque; any of them only fails this image
        logger.debug(f"Unexpected OCR error on {path}", exc_info=True)
        outcome.error = f"{type(e).__name__}: {e}"
        return outcome

    # Whitespace-only spans carry nothing searchable
    spans = [span for span in result.spans if span.text.strip()]
    for span_index, span in enumerate(spans):
        span.text = span.text.strip()
        span.span_index = span_index
    result.spans = spans
    outcome.result = result
    return outcome


def _record_outcome(
    store: ResultStore,
    record: ImageRecord,
    outcome: OCROutcome,
    engine: str,
    report: IngestReport,
) -> None:
    """Persist one outcome. StoreWriteFailure propagates and aborts the run."""
    if outcome.result is not None:
        stored = store.save_result(record.id, outcome.result, outcome.content_hash)
        report.succeeded += 1
        report.spans += stored
        if stored:
            logger.info(f"Stored {stored} text spans for {outcome.path}")
        else:
            logger.info(f"No text found in the image: {outcome.path}")
    else:
        store.mark_failed(record.id, outcome.error or "unknown error", outcome.content_hash, engine)
        report.failed += 1
        report.failed_paths.append(str(outcome.path))
        logger.error(f"Error processing {outcome.path}: {outcome.error}")


def ingest_images(
    store: ResultStore,
    paths: Iterable[Path],
    backend: OCRBackend,
    language: str | None = None,
    force: bool = False,
    max_workers: int = 1,
    progress_callback: Callable[[int, int], None] | None = None,
) -> IngestReport:
    """OCR every image that needs it and store the results.

    Args:
        store: Open result store
        paths: Image paths; resolved and de-duplicated so each is processed once
        backend: OCR backend
        language: Language passed to the backend; None uses backend.default_language
        force: Re-OCR images even if already done (spans are replaced, not appended)
        max_workers: Concurrent OCR calls. Writes always happen on the calling thread.
        progress_callback: Optional callback (current, total) -> None

    Returns:
        IngestReport with per-run counters

    Raises:
        StoreWriteFailure: If a result cannot be persisted
    """
    language = language or backend.default_language
    unique_paths = list(dict.fromkeys(Path(p).resolve() for p in paths))
    report = IngestReport(discovered=len(unique_paths))

    pending: list[tuple[ImageRecord, Path]] = []
    for path in unique_paths:
        record = store.get_or_create_image(path)
        if needs_ocr(record, path, force=force):
            pending.append((record, path))
        else:
            report.skipped += 1
            logger.debug(f"Skipping already indexed file: {path}")

    total = len(pending)
    if total == 0:
        return report

    logger.info(f"Running OCR on {total} of {len(unique_paths)} images with {backend.name}")

    if max_workers <= 1:
        for completed, (record, path) in enumerate(pending, 1):
            logger.info(f"Processing file: {path}")
            outcome = ocr_image(path, backend, language)
            _record_outcome(store, record, outcome, backend.name, report)
            if progress_callback:
                progress_callback(completed, total)
        return report

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {
            executor.submit(ocr_image, path, backend, language): record
            for record, path in pending
        }
        try:
            for completed, future in enumerate(as_completed(futures), 1):
                _record_outcome(store, futures[future], future.result(), backend.name, report)
                if progress_callback:
                    progress_callback(completed, total)
        except BaseException:
            for future in futures:
                future.cancel()
            raise

    return report


def ingest_directory(
    store: ResultStore,
    directory: Path,
    backend: OCRBackend,
    language: str | None = None,
    recursive: bool = False,
    extensions: Iterable[str] = SUPPORTED_EXTENSIONS,
    force: bool = False,
    max_workers: int = 1,
    progress_callback: Callable[[int, int], None] | None = None,
) -> IngestReport:
    """Discover images in a directory and ingest them.

    See discover_images and ingest_images.
    """
    paths = discover_images(directory, recursive=recursive, extensions=extensions)
    logger.debug(f"Discovered {len(paths)} images in {directory}")
    return ingest_images(
        store,
        paths,
        backend,
        language=language,
        force=force,
        max_workers=max_workers,
        progress_callback=progress_callback,
    )
