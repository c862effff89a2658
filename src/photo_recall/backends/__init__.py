"""OCR backends.

Backend selection priority:
1. Explicit backend name
2. Settings.ocr_backend (RECALL_OCR_BACKEND environment variable)

Available backends:
    tesseract      local Tesseract via pytesseract (default)
    livetext       macOS LiveText via ocrmac
    google_vision  Google Cloud Vision API
"""

from ..config import Settings, get_settings
from .base import OCRBackend, load_image
from .tesseract import TesseractBackend

# Optional backend imports - these may not be available in all environments
try:
    from .google_vision import GoogleVisionBackend
except ImportError:
    GoogleVisionBackend = None  # type: ignore

try:
    from .livetext import LiveTextBackend
except ImportError:
    LiveTextBackend = None  # type: ignore

BACKEND_NAMES = ("tesseract", "livetext", "google_vision")


def get_backend(backend_name: str | None = None, settings: Settings | None = None) -> OCRBackend:
    """Get an OCR backend instance by name or from settings.

    Args:
        backend_name: Optional explicit backend name
        settings: Settings to read defaults from (default: get_settings())

    Returns:
        Instantiated OCRBackend

    Raises:
        ValueError: If the backend is unknown or its library is not installed
    """
    if settings is None:
        settings = get_settings()
    if backend_name is None:
        backend_name = settings.ocr_backend

    backend_name = backend_name.lower()

    if backend_name == "tesseract":
        return TesseractBackend(tesseract_cmd=settings.tesseract_cmd)
    elif backend_name == "livetext":
        if LiveTextBackend is None:
            raise ValueError("LiveTextBackend not available. Install ocrmac: pip install ocrmac")
        return LiveTextBackend()
    elif backend_name == "google_vision":
        if GoogleVisionBackend is None:
            raise ValueError(
                "GoogleVisionBackend not available. Install google-cloud-vision: "
                "pip install google-cloud-vision"
            )
        return GoogleVisionBackend(credentials_json=settings.google_credentials_json)
    else:
        raise ValueError(
            f"Unknown backend: {backend_name}. Available: {', '.join(BACKEND_NAMES)}"
        )


__all__ = [
    "BACKEND_NAMES",
    "GoogleVisionBackend",
    "LiveTextBackend",
    "OCRBackend",
    "TesseractBackend",
    "get_backend",
    "load_image",
]
