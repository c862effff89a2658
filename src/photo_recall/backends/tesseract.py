"""Tesseract OCR backend using pytesseract."""

import logging

import pytesseract
from pytesseract import Output

from ..errors import OcrFailure
from ..models import BoundingBox, OCRResult, TextSpan
from .base import OCRBackend, load_image

logger = logging.getLogger(__name__)


class TesseractBackend(OCRBackend):
    """Local Tesseract backend.

    pytesseract.image_to_data returns one entry per detected word with its
    block/paragraph/line numbers. Words are grouped into one TextSpan per line:
    - Text is the line's words joined by single spaces
    - Bounding box is the union of the word boxes (pixels, top-left origin)
    - Confidence is the mean word confidence scaled from 0-100 to 0.0-1.0
    """

    name = "tesseract"
    default_language = "eng"

    def __init__(self, tesseract_cmd: str | None = None):
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
        try:
            version = pytesseract.get_tesseract_version()
        except pytesseract.TesseractNotFoundError as e:
            raise RuntimeError(
                "tesseract is not installed or not on PATH. "
                "Install it or set RECALL_TESSERACT_CMD."
            ) from e
        logger.debug(f"Using tesseract {version}")

    def process_single(self, image_bytes: bytes, language: str) -> OCRResult:
        """Process single image with Tesseract.

        Args:
            image_bytes: Image data as bytes
            language: Tesseract language code (e.g., "eng", "eng+deu")

        Returns:
            OCRResult with one span per recognized line

        Raises:
            OcrFailure: If the image can't be decoded or Tesseract fails
        """
        image = load_image(image_bytes)

        try:
            data = pytesseract.image_to_data(image, lang=language, output_type=Output.DICT)
        except (pytesseract.TesseractError, RuntimeError) as e:
            raise OcrFailure(f"Tesseract failed: {e}") from e

        lines: dict[tuple[int, int, int], list[int]] = {}
        for i, word in enumerate(data["text"]):
            # conf is -1 for block/paragraph/line rows that carry no text
            if not word or not word.strip() or float(data["conf"][i]) < 0:
                continue
            key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
            lines.setdefault(key, []).append(i)

        spans = []
        for key in sorted(lines):
            indices = lines[key]
            left = min(data["left"][i] for i in indices)
            top = min(data["top"][i] for i in indices)
            right = max(data["left"][i] + data["width"][i] for i in indices)
            bottom = max(data["top"][i] + data["height"][i] for i in indices)
            confidence = sum(float(data["conf"][i]) for i in indices) / len(indices) / 100.0

            spans.append(
                TextSpan(
                    text=" ".join(data["text"][i].strip() for i in indices),
                    confidence=min(max(confidence, 0.0), 1.0),
                    bbox=BoundingBox(x=left, y=top, width=right - left, height=bottom - top),
                    span_index=len(spans),
                )
            )

        return OCRResult(spans=spans, engine=self.name, width=image.width, height=image.height)
