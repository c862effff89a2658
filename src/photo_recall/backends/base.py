"""Abstract base class for OCR backends."""

import io
from abc import ABC, abstractmethod

from PIL import Image, ImageOps, UnidentifiedImageError

from ..errors import OcrFailure
from ..models import OCRResult


def load_image(image_bytes: bytes) -> Image.Image:
    """Decode image bytes into an upright RGB Pillow image.

    Raises:
        OcrFailure: If the bytes are not a readable image
    """
    try:
        image = Image.open(io.BytesIO(image_bytes))
        image.load()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise OcrFailure(f"Failed to decode image: {e}") from e

    # Phone photos are often stored sideways with an EXIF orientation tag
    image = ImageOps.exif_transpose(image)
    if image.mode != "RGB":
        image = image.convert("RGB")
    return image


class OCRBackend(ABC):
    """Abstract base class for OCR backends. Backends process SINGLE images only.

    Engine-specific result shapes are mapped to TextSpan inside the backend;
    callers never see the engine library's own types.
    """

    name: str = ""
    # Used when no language is configured; each engine has its own code scheme
    default_language: str = ""

    @abstractmethod
    def process_single(self, image_bytes: bytes, language: str) -> OCRResult:
        """Process a single image and return OCR results.

        Raises:
            OcrFailure: If the engine cannot process the image
        """
        ...
