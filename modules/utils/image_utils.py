"""Utility helpers for image encoding, compression and export."""

from __future__ import annotations

import base64
import re
from io import BytesIO
from typing import Optional, Tuple

from PIL import Image

_DATA_URI_PATTERN = re.compile(r"^data:(?P<mime>image/[\w.+-]+);base64,", re.IGNORECASE)

EXPORT_FORMATS = {
    "png": ("PNG", "image/png"),
    "jpeg": ("JPEG", "image/jpeg"),
    "jpg": ("JPEG", "image/jpeg"),
    "webp": ("WEBP", "image/webp"),
}


def to_data_uri(data: bytes, mime_type: str = "image/png") -> str:
    """Encode raw image bytes as a base64 data URI."""
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


def strip_data_uri(value: str) -> str:
    """Drop a ``data:image/...;base64,`` prefix if present."""
    return _DATA_URI_PATTERN.sub("", value, count=1)


def is_data_uri(value: str) -> bool:
    return bool(_DATA_URI_PATTERN.match(value or ""))


def decode_image_payload(value: str | bytes) -> bytes:
    """Return raw bytes from either bytes, a data URI or bare base64."""
    if isinstance(value, bytes):
        return value
    return base64.b64decode(strip_data_uri(value.strip()))


def sniff_mime_type(data: bytes) -> str:
    """Best-effort MIME detection from the leading magic bytes."""
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    return "image/png"


def open_image(data: bytes) -> Image.Image:
    """Open and fully decode image bytes."""
    image = Image.open(BytesIO(data))
    image.load()
    return image


def _flatten(image: Image.Image, background: Tuple[int, int, int] = (255, 255, 255)) -> Image.Image:
    """Composite transparent images over a solid background for JPEG output."""
    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        rgba = image.convert("RGBA")
        canvas = Image.new("RGB", rgba.size, background)
        canvas.paste(rgba, mask=rgba.split()[-1])
        return canvas
    if image.mode != "RGB":
        return image.convert("RGB")
    return image


def fit_within(
    size: Tuple[int, int],
    max_width: Optional[int] = None,
    max_height: Optional[int] = None,
) -> Tuple[int, int]:
    """Scale ``size`` down, keeping aspect ratio, so it fits the given bounds."""
    width, height = size
    ratio = width / height
    if max_width and width > max_width:
        width = max_width
        height = width / ratio
    if max_height and height > max_height:
        height = max_height
        width = height * ratio
    return max(1, round(width)), max(1, round(height))


def compress_for_upload(data: bytes, max_width: int = 2048, quality: int = 80) -> bytes:
    """Re-encode an image as JPEG for storage, capping its width.

    Transparent regions are filled with white before encoding.
    """
    image = open_image(data)
    target = fit_within(image.size, max_width=max_width)
    if target != image.size:
        image = image.resize(target, Image.LANCZOS)
    buffer = BytesIO()
    _flatten(image).save(buffer, format="JPEG", quality=quality)
    return buffer.getvalue()


def convert_image(
    data: bytes,
    fmt: str = "webp",
    quality: int = 80,
    max_width: Optional[int] = None,
    max_height: Optional[int] = None,
) -> bytes:
    """Re-encode image bytes into PNG, JPEG or WebP.

    Args:
        data: Source image bytes in any format Pillow can read.
        fmt: Target format name (``png``, ``jpeg``/``jpg`` or ``webp``).
        quality: Encoder quality from 1 to 100, ignored for PNG.
        max_width: Optional maximum output width.
        max_height: Optional maximum output height.

    Returns:
        The encoded image bytes.
    """
    key = fmt.lower()
    if key not in EXPORT_FORMATS:
        raise ValueError(f"不支持的导出格式：{fmt}")
    pil_format, _ = EXPORT_FORMATS[key]
    quality = max(1, min(int(quality), 100))

    image = open_image(data)
    target = fit_within(image.size, max_width=max_width, max_height=max_height)
    if target != image.size:
        image = image.resize(target, Image.LANCZOS)

    buffer = BytesIO()
    if pil_format == "JPEG":
        _flatten(image).save(buffer, format="JPEG", quality=quality)
    elif pil_format == "WEBP":
        if image.mode not in ("RGB", "RGBA"):
            image = image.convert("RGBA")
        image.save(buffer, format="WEBP", quality=quality)
    else:
        image.save(buffer, format="PNG")
    return buffer.getvalue()


def export_extension(fmt: str) -> str:
    key = fmt.lower()
    return "jpg" if key in ("jpeg", "jpg") else key


def format_size(num_bytes: int) -> str:
    """Human readable byte size, e.g. ``1.5 KB``."""
    if num_bytes <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB"]
    value = float(num_bytes)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{round(value, 2):g} {units[index]}"
