"""图像工具函数测试。"""

from __future__ import annotations

from io import BytesIO

import pytest
from PIL import Image

from modules.utils import image_utils


def make_image(size=(400, 200), mode="RGBA", color=(0, 0, 0, 0)) -> bytes:
    buffer = BytesIO()
    Image.new(mode, size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def test_data_uri_round_trip():
    data = make_image((4, 4))
    uri = image_utils.to_data_uri(data)

    assert image_utils.is_data_uri(uri)
    assert image_utils.decode_image_payload(uri) == data


def test_compress_for_upload_caps_width_and_flattens():
    compressed = image_utils.compress_for_upload(make_image((4096, 1024)))

    with Image.open(BytesIO(compressed)) as image:
        assert image.format == "JPEG"
        assert image.size == (2048, 512)
        assert image.getpixel((10, 10)) == (255, 255, 255)


def test_convert_image_to_webp_with_bounds():
    converted = image_utils.convert_image(make_image(), "webp", quality=70, max_height=100)

    with Image.open(BytesIO(converted)) as image:
        assert image.format == "WEBP"
        assert image.size == (200, 100)


def test_convert_image_rejects_unknown_format():
    with pytest.raises(ValueError):
        image_utils.convert_image(make_image(), "gif")


def test_sniff_mime_type():
    assert image_utils.sniff_mime_type(make_image((2, 2))) == "image/png"
    assert image_utils.sniff_mime_type(b"\xff\xd8\xff\xe0") == "image/jpeg"


def test_fit_within_keeps_small_images():
    assert image_utils.fit_within((100, 50), max_width=200, max_height=200) == (100, 50)


def test_format_size():
    assert image_utils.format_size(0) == "0 B"
    assert image_utils.format_size(1536) == "1.5 KB"
    assert image_utils.export_extension("jpeg") == "jpg"
