"""
Connect Card Vision Extractor.

ONE Gemini Vision call per card (front, optionally back) -> JSON fields.
Used by the backend's extraction endpoint; the processor never calls
Gemini directly, it sends raw bytes to that endpoint.
"""

import io
import json
import logging
import time
from typing import Any, Dict, Optional

import google.generativeai as genai
from PIL import Image, UnidentifiedImageError

from cardscan_backend.core.config import get_settings
from cardscan_workers.processing.prompts import CARD_FIELDS, get_extraction_prompt

logger = logging.getLogger(__name__)


class ExtractionError(Exception):
    """Gemini returned nothing usable for this card."""


class UnreadableImageError(ExtractionError):
    """The image bytes do not decode; retrying will not help."""


class CardVisionExtractor:
    """
    Extracts visitor fields from connect card photos with Gemini Vision.

    Usage:
        extractor = CardVisionExtractor()
        fields = extractor.extract(front_bytes, back_bytes)
    """

    def __init__(self, model: Optional[Any] = None):
        settings = get_settings()
        if model is None:
            self._configure_gemini(settings.gemini.api_key)
            model = genai.GenerativeModel(settings.gemini.model)
        self.model = model

    @staticmethod
    def _configure_gemini(api_key: Optional[str]) -> None:
        if not api_key:
            raise ValueError(
                "GEMINI_API_KEY not set. Please set the GEMINI__API_KEY environment variable "
                "or add it to your .env file."
            )
        genai.configure(api_key=api_key)

    def extract(self, front_bytes: bytes, back_bytes: Optional[bytes] = None) -> Dict[str, Any]:
        """
        Run extraction for one card.

        Raises:
            UnreadableImageError: image bytes do not decode
            ExtractionError: API failure or unparseable response
        """
        start = time.time()
        parts = [get_extraction_prompt(two_sided=back_bytes is not None), self._open(front_bytes, "front")]
        if back_bytes is not None:
            parts.append(self._open(back_bytes, "back"))

        try:
            response = self.model.generate_content(parts)
            result_text = response.text.strip()
        except Exception as e:
            logger.error(f"Gemini extraction call failed: {e}")
            raise ExtractionError(f"Vision extraction failed: {e}") from e

        try:
            data = json.loads(self._clean_json(result_text))
        except json.JSONDecodeError as e:
            logger.error(f"JSON parse error: {e}")
            logger.debug(f"Raw response: {result_text[:500]}")
            raise ExtractionError("Could not extract JSON from response") from e

        if not isinstance(data, dict):
            raise ExtractionError("Extraction response is not a JSON object")

        fields = {name: data.get(name) for name in CARD_FIELDS}
        logger.info(
            f"Extracted card fields in {time.time() - start:.1f}s "
            f"({sum(1 for v in fields.values() if v not in (None, '', []))} populated)"
        )
        return fields

    @staticmethod
    def _open(data: bytes, side: str) -> Image.Image:
        try:
            img = Image.open(io.BytesIO(data))
            img.load()
            return img
        except (UnidentifiedImageError, OSError) as e:
            raise UnreadableImageError(f"Unreadable {side} image: {e}") from e

    @staticmethod
    def _clean_json(text: str) -> str:
        """Strip markdown fences and surrounding prose Gemini sometimes adds."""
        text = text.strip()
        if text.startswith("```"):
            text = text.split("\n", 1)[1] if "\n" in text else ""
            if text.rstrip().endswith("```"):
                text = text.rstrip()[:-3]

        start = text.find("{")
        end = text.rfind("}")
        if start != -1 and end > start:
            return text[start:end + 1]
        return text.strip()


# Global instance
_extractor: Optional[CardVisionExtractor] = None


def get_extractor() -> CardVisionExtractor:
    """Get or create the shared extractor."""
    global _extractor
    if _extractor is None:
        _extractor = CardVisionExtractor()
    return _extractor
