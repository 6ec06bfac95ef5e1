import base64
import io

import pytest
from PIL import Image

from conftest import make_jpeg
from waste_rewards.core.errors import InvalidImage
from waste_rewards.utils.images import DATA_URL_PREFIX, resize_image_to_data_url


def _decode(data_url: str) -> Image.Image:
    assert data_url.startswith(DATA_URL_PREFIX)
    return Image.open(io.BytesIO(base64.b64decode(data_url[len(DATA_URL_PREFIX):])))


def test_large_photo_is_capped_at_max_width():
    image = _decode(resize_image_to_data_url(make_jpeg(1600, 1200)))
    assert image.format == "JPEG"
    assert image.size == (800, 600)


def test_portrait_photo_keeps_aspect_ratio():
    image = _decode(resize_image_to_data_url(make_jpeg(900, 1800), max_width=400))
    assert image.size == (200, 400)


def test_small_photo_is_not_enlarged():
    image = _decode(resize_image_to_data_url(make_jpeg(320, 240)))
    assert image.size == (320, 240)


def test_png_input_is_reencoded_as_jpeg():
    buffer = io.BytesIO()
    Image.new("RGBA", (100, 50), (255, 0, 0, 128)).save(buffer, format="PNG")
    image = _decode(resize_image_to_data_url(buffer.getvalue()))
    assert image.format == "JPEG"
    assert image.mode == "RGB"


def test_missing_image_asks_for_a_selection():
    with pytest.raises(InvalidImage) as excinfo:
        resize_image_to_data_url(b"")
    assert excinfo.value.title == "Error"
    assert excinfo.value.message == "Select an image"


def test_unreadable_bytes_are_rejected():
    with pytest.raises(InvalidImage):
        resize_image_to_data_url(b"definitely not an image")
