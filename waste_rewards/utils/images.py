import base64
import io
import logging

import pillow_heif
from PIL import Image, ImageOps, UnidentifiedImageError

from waste_rewards.core.errors import InvalidImage

pillow_heif.register_heif_opener()  # phone cameras upload HEIC

logger = logging.getLogger(__name__)

DATA_URL_PREFIX = "data:image/jpeg;base64,"


def resize_image_to_data_url(content: bytes, max_width: int = 800, quality: int = 70) -> str:
    """Shrink an uploaded photo so it fits inline in a report document.

    The longest side is capped at ``max_width`` (aspect ratio kept), EXIF
    orientation is applied, and the result is re-encoded as JPEG and returned
    as a data URL.
    """
    if not content:
        raise InvalidImage("Select an image", title="Error")

    try:
        with Image.open(io.BytesIO(content)) as original:
            image = ImageOps.exif_transpose(original).convert("RGB")
            source_size = image.size
            image.thumbnail((max_width, max_width))
            buffer = io.BytesIO()
            image.save(buffer, format="JPEG", quality=quality, optimize=True)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        raise InvalidImage(f"Could not read the uploaded image: {e}") from e

    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    logger.debug(f"🖼️ Resized image {source_size} -> {image.size}, {len(content)} -> {len(buffer.getvalue())} bytes")
    return DATA_URL_PREFIX + encoded
