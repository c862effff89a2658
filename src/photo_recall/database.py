"""SQLite result store for image records and recognized text spans.

The store is an explicitly owned handle: open it in a ``with`` block (or call
``open()``/``close()``) and pass it to the ingest and search functions. One
connection is held for the lifetime of the handle and is always closed on exit.

Schema:
    images          one row per photo, keyed by absolute path
    text_spans      one row per recognized span, owned by exactly one image
    text_spans_fts  FTS5 external-content index over text_spans.text,
                    maintained by triggers (read-only projection)
"""

import logging
import os
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from .errors import InvalidQuery, StoreWriteFailure
from .models import BoundingBox, ImageRecord, OCRResult, OCRStatus, TextSpan

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

# SQLite messages raised for a MATCH expression FTS5 cannot parse
FTS_QUERY_ERRORS = (
    "fts5: syntax error",
    "unterminated string",
    "no such column",
    "malformed match expression",
    "unknown special query",
)

SCHEMA = """
CREATE TABLE IF NOT EXISTS images (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    path TEXT NOT NULL UNIQUE,
    directory TEXT NOT NULL,
    content_hash TEXT,
    status TEXT NOT NULL DEFAULT 'pending' CHECK(status IN ('pending', 'done', 'failed')),
    processed_at TEXT,
    engine TEXT,
    error TEXT,
    width INTEGER,
    height INTEGER,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_images_directory ON images(directory);
CREATE INDEX IF NOT EXISTS idx_images_status ON images(status);

CREATE TABLE IF NOT EXISTS text_spans (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    image_id INTEGER NOT NULL REFERENCES images(id) ON DELETE CASCADE,
    span_index INTEGER NOT NULL,
    text TEXT NOT NULL,
    confidence REAL NOT NULL,
    x INTEGER NOT NULL,
    y INTEGER NOT NULL,
    width INTEGER NOT NULL,
    height INTEGER NOT NULL,
    UNIQUE(image_id, span_index)
);

CREATE INDEX IF NOT EXISTS idx_text_spans_image ON text_spans(image_id);

CREATE VIRTUAL TABLE IF NOT EXISTS text_spans_fts USING fts5(
    text,
    content='text_spans',
    content_rowid='id'
);

CREATE TRIGGER IF NOT EXISTS text_spans_ai AFTER INSERT ON text_spans BEGIN
    INSERT INTO text_spans_fts(rowid, text) VALUES (new.id, new.text);
END;

CREATE TRIGGER IF NOT EXISTS text_spans_ad AFTER DELETE ON text_spans BEGIN
    INSERT INTO text_spans_fts(text_spans_fts, rowid, text) VALUES ('delete', old.id, old.text);
END;

CREATE TRIGGER IF NOT EXISTS text_spans_au AFTER UPDATE ON text_spans BEGIN
    INSERT INTO text_spans_fts(text_spans_fts, rowid, text) VALUES ('delete', old.id, old.text);
    INSERT INTO text_spans_fts(rowid, text) VALUES (new.id, new.text);
END;
"""

IMAGE_COLUMNS = (
    "i.id, i.path, i.status, i.content_hash, i.processed_at, i.engine, i.error, i.width, i.height"
)
# Span dimensions are aliased so they don't shadow the image's width/height in joins
SPAN_COLUMNS = (
    "s.span_index, s.text, s.confidence, s.x, s.y, "
    "s.width AS span_width, s.height AS span_height"
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _row_to_image(row: sqlite3.Row) -> ImageRecord:
    processed_at = row["processed_at"]
    return ImageRecord(
        id=row["id"],
        path=row["path"],
        status=OCRStatus(row["status"]),
        content_hash=row["content_hash"],
        processed_at=datetime.fromisoformat(processed_at) if processed_at else None,
        engine=row["engine"],
        error=row["error"],
        width=row["width"],
        height=row["height"],
    )


def _row_to_span(row: sqlite3.Row) -> TextSpan:
    return TextSpan(
        text=row["text"],
        confidence=row["confidence"],
        bbox=BoundingBox(
            x=row["x"], y=row["y"], width=row["span_width"], height=row["span_height"]
        ),
        span_index=row["span_index"],
    )


def is_fts_query_error(error: sqlite3.OperationalError) -> bool:
    """True if the error is FTS5 rejecting the query, not a database failure."""
    message = str(error).lower()
    return any(fragment in message for fragment in FTS_QUERY_ERRORS)


class ResultStore:
    """Owned handle over one SQLite result database."""

    def __init__(self, db_path: Path | str):
        self.db_path = db_path if db_path == ":memory:" else Path(db_path)
        self._conn: sqlite3.Connection | None = None

    def __enter__(self) -> "ResultStore":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "open" if self._conn is not None else "closed"
        return f"ResultStore(db_path={str(self.db_path)!r}, {state})"

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    def open(self) -> None:
        """Open the connection and make sure the schema exists."""
        if self._conn is not None:
            return
        try:
            if isinstance(self.db_path, Path):
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            # Autocommit mode; write transactions are opened explicitly below
            conn = sqlite3.connect(self.db_path, isolation_level=None, timeout=30.0)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute("PRAGMA journal_mode = WAL")
        except (OSError, sqlite3.Error) as e:
            raise StoreWriteFailure(f"Failed to open database {self.db_path}: {e}") from e

        self._conn = conn
        logger.debug(f"Opened result store {self.db_path}")
        try:
            self.ensure_schema()
        except StoreWriteFailure:
            self.close()
            raise

    def close(self) -> None:
        if self._conn is None:
            return
        try:
            self._conn.close()
        finally:
            self._conn = None
            logger.debug(f"Closed result store {self.db_path}")

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("ResultStore is not open")
        return self._conn

    @contextmanager
    def _write(self) -> Iterator[sqlite3.Connection]:
        """Run a block as one IMMEDIATE transaction.

        Takes SQLite's write lock up front so concurrent writers serialize.
        Any sqlite3.Error rolls back and is raised as StoreWriteFailure.
        """
        conn = self.conn
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            raise StoreWriteFailure(f"Failed to begin write transaction: {e}") from e
        try:
            yield conn
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise StoreWriteFailure(f"Database write failed: {e}") from e
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise

    def ensure_schema(self) -> None:
        """Create tables, indexes, FTS index and triggers if missing."""
        try:
            version = self.conn.execute("PRAGMA user_version").fetchone()[0]
            if version >= SCHEMA_VERSION:
                return
            self.conn.executescript(SCHEMA)
            self.conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
        except sqlite3.Error as e:
            raise StoreWriteFailure(f"Failed to create schema: {e}") from e
        logger.info(f"Initialized result store schema v{SCHEMA_VERSION} in {self.db_path}")

    # =========================================================================
    # Image records
    # =========================================================================

    def get_image(self, path: Path | str) -> ImageRecord | None:
        """Get image record by absolute path, or None if never discovered."""
        row = self.conn.execute(
            f"SELECT {IMAGE_COLUMNS} FROM images i WHERE i.path = ?",
            (str(path),),
        ).fetchone()
        return _row_to_image(row) if row else None

    def get_or_create_image(self, path: Path | str) -> ImageRecord:
        """Return the record for path, creating a pending one on first discovery."""
        path = Path(path)
        with self._write() as conn:
            conn.execute(
                """
                INSERT INTO images (path, directory, status)
                VALUES (?, ?, 'pending')
                ON CONFLICT(path) DO NOTHING
                """,
                (str(path), str(path.parent)),
            )
        record = self.get_image(path)
        assert record is not None
        return record

    def save_result(self, image_id: int, result: OCRResult, content_hash: str | None = None) -> int:
        """Replace an image's spans with an OCR result and mark it done.

        Spans are replaced, never appended, so re-processing an image does not
        duplicate its text. Committed before returning.

        Returns:
            Number of spans stored
        """
        with self._write() as conn:
            conn.execute("DELETE FROM text_spans WHERE image_id = ?", (image_id,))
            conn.executemany(
                """
                INSERT INTO text_spans
                (image_id, span_index, text, confidence, x, y, width, height)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        image_id,
                        span_index,
                        span.text,
                        span.confidence,
                        span.bbox.x,
                        span.bbox.y,
                        span.bbox.width,
                        span.bbox.height,
                    )
                    for span_index, span in enumerate(result.spans)
                ],
            )
            cursor = conn.execute(
                """
                UPDATE images
                SET status = 'done', processed_at = ?, engine = ?, error = NULL,
                    content_hash = COALESCE(?, content_hash),
                    width = COALESCE(?, width), height = COALESCE(?, height)
                WHERE id = ?
                """,
                (
                    utc_now().isoformat(),
                    result.engine,
                    content_hash,
                    result.width,
                    result.height,
                    image_id,
                ),
            )
            if cursor.rowcount == 0:
                raise StoreWriteFailure(f"No image record with id {image_id}")
        return len(result.spans)

    def mark_failed(
        self,
        image_id: int,
        error: str,
        content_hash: str | None = None,
        engine: str | None = None,
    ) -> None:
        """Mark an image as failed. A failed image owns no spans."""
        with self._write() as conn:
            conn.execute("DELETE FROM text_spans WHERE image_id = ?", (image_id,))
            cursor = conn.execute(
                """
                UPDATE images
                SET status = 'failed', processed_at = ?, error = ?,
                    engine = COALESCE(?, engine),
                    content_hash = COALESCE(?, content_hash)
                WHERE id = ?
                """,
                (utc_now().isoformat(), error, engine, content_hash, image_id),
            )
            if cursor.rowcount == 0:
                raise StoreWriteFailure(f"No image record with id {image_id}")

    def list_images(self, status: OCRStatus | None = None) -> list[ImageRecord]:
        """List image records ordered by path, optionally filtered by status."""
        if status is None:
            rows = self.conn.execute(f"SELECT {IMAGE_COLUMNS} FROM images i ORDER BY i.path")
        else:
            rows = self.conn.execute(
                f"SELECT {IMAGE_COLUMNS} FROM images i WHERE i.status = ? ORDER BY i.path",
                (status.value,),
            )
        return [_row_to_image(row) for row in rows]

    def get_spans(self, image_id: int) -> list[TextSpan]:
        """Load all spans for an image in span_index order."""
        rows = self.conn.execute(
            f"SELECT {SPAN_COLUMNS} FROM text_spans s WHERE s.image_id = ? ORDER BY s.span_index",
            (image_id,),
        )
        return [_row_to_span(row) for row in rows]

    # =========================================================================
    # Search feeds
    # =========================================================================

    def _scope_clause(self, directory: Path | str | None, recursive: bool) -> tuple[str, list]:
        if directory is None:
            return "", []
        directory = str(directory)
        if not recursive:
            return "AND i.directory = ?", [directory]
        prefix = directory.rstrip(os.sep) + os.sep
        return (
            "AND (i.directory = ? OR substr(i.directory, 1, ?) = ?)",
            [directory, len(prefix), prefix],
        )

    def iter_spans(
        self,
        directory: Path | str | None = None,
        recursive: bool = False,
        min_confidence: float = 0.0,
    ) -> Iterator[tuple[ImageRecord, TextSpan]]:
        """Stream (image, span) pairs of done images, ordered by path and span_index."""
        scope_sql, scope_params = self._scope_clause(directory, recursive)
        rows = self.conn.execute(
            f"""
            SELECT {IMAGE_COLUMNS}, {SPAN_COLUMNS}
            FROM text_spans s
            JOIN images i ON i.id = s.image_id
            WHERE i.status = 'done' AND s.confidence >= ? {scope_sql}
            ORDER BY i.path, s.span_index
            """,
            [min_confidence, *scope_params],
        )
        for row in rows:
            yield _row_to_image(row), _row_to_span(row)

    def fts_match(
        self,
        fts_query: str,
        directory: Path | str | None = None,
        recursive: bool = False,
        min_confidence: float = 0.0,
    ) -> list[tuple[ImageRecord, TextSpan, float]]:
        """Run an FTS5 MATCH query over span text.

        Returns:
            (image, span, bm25 rank) tuples; lower rank is a better match

        Raises:
            InvalidQuery: If FTS5 rejects the query syntax
        """
        scope_sql, scope_params = self._scope_clause(directory, recursive)
        try:
            rows = self.conn.execute(
                f"""
                SELECT {IMAGE_COLUMNS}, {SPAN_COLUMNS}, bm25(text_spans_fts) AS rank
                FROM text_spans_fts
                JOIN text_spans s ON s.id = text_spans_fts.rowid
                JOIN images i ON i.id = s.image_id
                WHERE text_spans_fts MATCH ?
                  AND i.status = 'done' AND s.confidence >= ? {scope_sql}
                ORDER BY i.path, s.span_index
                """,
                [fts_query, min_confidence, *scope_params],
            ).fetchall()
        except sqlite3.OperationalError as e:
            if not is_fts_query_error(e):
                raise
            raise InvalidQuery(f"Invalid full-text query {fts_query!r}: {e}") from e

        return [(_row_to_image(row), _row_to_span(row), row["rank"]) for row in rows]

    # =========================================================================
    # Maintenance
    # =========================================================================

    def stats(self) -> dict:
        """Count image records by status and total stored spans."""
        by_status = {status.value: 0 for status in OCRStatus}
        for row in self.conn.execute("SELECT status, COUNT(*) AS n FROM images GROUP BY status"):
            by_status[row["status"]] = row["n"]
        total_spans = self.conn.execute("SELECT COUNT(*) FROM text_spans").fetchone()[0]
        return {
            "total_images": sum(by_status.values()),
            "by_status": by_status,
            "total_spans": total_spans,
        }

    def prune_missing(self) -> list[str]:
        """Delete records (and their spans) for files that no longer exist.

        Returns:
            Paths of the removed records
        """
        paths = [row["path"] for row in self.conn.execute("SELECT path FROM images ORDER BY path")]
        missing = [path for path in paths if not Path(path).exists()]
        if not missing:
            return []
        with self._write() as conn:
            conn.executemany("DELETE FROM images WHERE path = ?", [(path,) for path in missing])
        logger.info(f"Pruned {len(missing)} records for missing files")
        return missing

    def reset(self) -> None:
        """Delete every image record and span."""
        with self._write() as conn:
            conn.execute("DELETE FROM images")
        logger.info(f"Reset result store {self.db_path}")
