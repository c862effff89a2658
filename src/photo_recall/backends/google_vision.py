"""Google Cloud Vision backend."""

import json

from google.cloud import vision
from google.oauth2 import service_account

from ..errors import OcrFailure
from ..models import BoundingBox, OCRResult, TextSpan
from .base import OCRBackend, load_image


def _paragraph_text(paragraph) -> str:
    words = ("".join(symbol.text for symbol in word.symbols) for word in paragraph.words)
    return " ".join(word for word in words if word)


def _vertex_box(vertices) -> BoundingBox:
    xs = [v.x for v in vertices]
    ys = [v.y for v in vertices]
    return BoundingBox(x=min(xs), y=min(ys), width=max(xs) - min(xs), height=max(ys) - min(ys))


class GoogleVisionBackend(OCRBackend):
    """Cloud Vision ``document_text_detection``, one TextSpan per paragraph.

    Credentials come from a service account JSON string
    (RECALL_GOOGLE_CREDENTIALS_JSON) or, when that is unset, from Google's
    application default credentials.
    """

    name = "google_vision"
    default_language = "en"

    def __init__(self, credentials_json: str | None = None):
        if credentials_json:
            credentials = service_account.Credentials.from_service_account_info(
                json.loads(credentials_json)
            )
            self.client = vision.ImageAnnotatorClient(credentials=credentials)
        else:
            self.client = vision.ImageAnnotatorClient()

    def process_single(self, image_bytes: bytes, language: str) -> OCRResult:
        """Send one image to Cloud Vision.

        Args:
            image_bytes: Encoded image, sent to the API as-is
            language: Language hint (e.g., "en"); empty for auto-detection

        Raises:
            OcrFailure: If the image can't be decoded or the API reports an error
        """
        # Unreadable files fail here without a billable request
        decoded = load_image(image_bytes)

        try:
            response = self.client.document_text_detection(
                image=vision.Image(content=image_bytes),
                image_context={"language_hints": [language]} if language else None,
            )
        except Exception as e:
            raise OcrFailure(f"Google Vision request failed: {e}") from e

        if response.error.message:
            raise OcrFailure(f"Google Vision API error: {response.error.message}")

        spans = []
        annotation = response.full_text_annotation
        paragraphs = (
            paragraph
            for page in (annotation.pages if annotation else [])
            for block in page.blocks
            for paragraph in block.paragraphs
        )
        for paragraph in paragraphs:
            text = _paragraph_text(paragraph)
            if not text.strip():
                continue
            spans.append(
                TextSpan(
                    text=text,
                    confidence=min(max(float(paragraph.confidence), 0.0), 1.0),
                    bbox=_vertex_box(paragraph.bounding_box.vertices),
                    span_index=len(spans),
                )
            )

        return OCRResult(spans=spans, engine=self.name, width=decoded.width, height=decoded.height)
