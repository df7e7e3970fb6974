"""Cover-art normalisation: square, at least 1400x1400, JPEG."""
from __future__ import annotations

import io
import logging

from PIL import Image, UnidentifiedImageError

from release_agent.core.errors import BackendError

logger = logging.getLogger(__name__)

MIN_ARTWORK_SIZE = 1400
JPEG_QUALITY = 95


def normalize_artwork(data: bytes, min_size: int = MIN_ARTWORK_SIZE) -> bytes:
    """Centre-crop to a square, upscale to ``min_size`` if smaller, encode as JPEG."""
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise BackendError(f"Artwork is not a readable image: {exc}") from exc

    image = image.convert("RGB")
    width, height = image.size
    side = min(width, height)
    if width != height:
        left = (width - side) // 2
        top = (height - side) // 2
        image = image.crop((left, top, left + side, top + side))
    if side < min_size:
        logger.info(f"Upscaling artwork from {side}px to {min_size}px")
        image = image.resize((min_size, min_size), Image.Resampling.LANCZOS)

    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=JPEG_QUALITY)
    return buffer.getvalue()
