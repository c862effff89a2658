"""LiveText OCR on macOS through the ocrmac bindings."""

import os
import tempfile
from pathlib import Path

from ..errors import OcrFailure
from ..models import BoundingBox, OCRResult, TextSpan
from .base import OCRBackend, load_image

# ocrmac only installs on macOS
try:
    from ocrmac import ocrmac

    OCRMAC_AVAILABLE = True
except ImportError:
    ocrmac = None
    OCRMAC_AVAILABLE = False


class LiveTextBackend(OCRBackend):
    """Apple Vision (LiveText framework) backend.

    ocrmac yields one annotation per recognized line as
    ``(text, confidence, [x, y, width, height])`` with fractional coordinates
    measured from the bottom-left corner. Each annotation becomes a TextSpan
    with a pixel box measured from the top-left corner.
    """

    name = "livetext"
    default_language = "en-US"

    def __init__(self):
        if not OCRMAC_AVAILABLE:
            raise RuntimeError("ocrmac is not installed; the livetext backend only runs on macOS.")

    def process_single(self, image_bytes: bytes, language: str) -> OCRResult:
        """Recognize text with LiveText.

        Args:
            image_bytes: Encoded image
            language: BCP 47 language preference (e.g., "en-US")

        Raises:
            OcrFailure: If the image can't be decoded or LiveText fails
        """
        image = load_image(image_bytes)
        image_width, image_height = image.size

        # ocrmac reads from disk, so hand it the upright decoded image
        fd, png_path = tempfile.mkstemp(suffix=".png")
        os.close(fd)
        try:
            image.save(png_path, format="PNG")
            try:
                annotations = ocrmac.OCR(
                    png_path, framework="livetext", language_preference=[language]
                ).recognize()
            except Exception as e:
                raise OcrFailure(f"LiveText OCR failed: {e}") from e
        finally:
            Path(png_path).unlink(missing_ok=True)

        spans = []
        for text, confidence, coords in annotations:
            if not text or not text.strip():
                continue
            x_frac, y_frac_bottom, width_frac, height_frac = coords

            width_pixel = int(width_frac * image_width)
            height_pixel = int(height_frac * image_height)
            # Bottom of the box in pixels from top is (1 - y) * height; top is bottom - box height
            y_pixel = int((1.0 - y_frac_bottom) * image_height) - height_pixel

            spans.append(
                TextSpan(
                    text=text.strip(),
                    confidence=min(max(float(confidence), 0.0), 1.0),
                    bbox=BoundingBox(
                        x=int(x_frac * image_width),
                        y=max(y_pixel, 0),
                        width=width_pixel,
                        height=height_pixel,
                    ),
                    span_index=len(spans),
                )
            )

        return OCRResult(spans=spans, engine=self.name, width=image_width, height=image_height)
