"""Error taxonomy for ingest, storage and search."""


class RecallError(Exception):
    """Base class for photo_recall errors."""

    pass


class OcrFailure(RecallError):
    """Raised when the OCR engine cannot process an image.

    Recorded on the image record as ``failed``. Never fatal to an ingest run.
    """

    pass


class StoreWriteFailure(RecallError):
    """Raised when a write to the result store fails.

    Aborts the current image and the ingest run.
    """

    pass


class InvalidQuery(RecallError):
    """Raised when a search query cannot be parsed."""

    pass
