"""
Image helpers for captured cards.

- SHA-256 content hash of raw bytes (duplicate detection key)
- Small JPEG preview rendered as a data URL (the only image data that
  survives in a session snapshot)
"""

import base64
import hashlib
import io
import logging
from dataclasses import dataclass

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)


@dataclass
class PreviewConfig:
    """Preview rendering configuration."""
    max_dimension: int = 320
    jpeg_quality: int = 70


def content_hash(data: bytes) -> str:
    """
    Hex SHA-256 digest of raw image bytes.

    Pure: identical bytes always give the identical hash, so a retried upload
    of the same capture produces the same duplicate-detection key.
    """
    hasher = hashlib.sha256()
    view = memoryview(data)
    for offset in range(0, len(view), 8192):
        hasher.update(view[offset:offset + 8192])
    return hasher.hexdigest()


def _to_rgb(img: Image.Image) -> Image.Image:
    # JPEG has no alpha channel; flatten onto white
    if img.mode in ('RGBA', 'LA', 'P'):
        img = img.convert('RGBA')
        background = Image.new('RGB', img.size, (255, 255, 255))
        background.paste(img, mask=img.split()[3])
        return background
    if img.mode != 'RGB':
        return img.convert('RGB')
    return img


def render_preview(data: bytes, config: PreviewConfig = PreviewConfig()) -> str:
    """
    Render a downscaled JPEG data URL for display and session snapshots.

    Returns an empty string when the bytes are not a decodable image; the
    preview is cosmetic and must never block processing.
    """
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        logger.warning(f"Could not render preview: {e}")
        return ""

    img = _to_rgb(img)
    img.thumbnail((config.max_dimension, config.max_dimension), Image.Resampling.LANCZOS)

    buffer = io.BytesIO()
    img.save(buffer, 'JPEG', quality=config.jpeg_quality, optimize=True)
    encoded = base64.b64encode(buffer.getvalue()).decode('ascii')
    return f"data:image/jpeg;base64,{encoded}"


def guess_content_type(data: bytes, default: str = "image/jpeg") -> str:
    """Sniff the MIME type from magic bytes."""
    if data.startswith(b'\x89PNG\r\n\x1a\n'):
        return "image/png"
    if data.startswith(b'\xff\xd8\xff'):
        return "image/jpeg"
    if data[:4] == b'RIFF' and data[8:12] == b'WEBP':
        return "image/webp"
    return default
