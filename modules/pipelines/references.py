"""Normalization of uploaded subject, reference and asset images."""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import uuid
from dataclasses import dataclass, replace
from io import BytesIO
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Sequence

from PIL import Image

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ImageUpload:
    """A raw file handed over by the UI before decoding."""

    name: str
    data: bytes
    mime_type: str


@dataclass(slots=True)
class ReferenceItem:
    """Canonical in-memory image with an optional free-text annotation."""

    id: str
    image: bytes
    description: str = ""
    mime_type: str = "image/png"


def new_item_id() -> str:
    return uuid.uuid4().hex


def load_upload(path: str | Path) -> ImageUpload:
    """Read a file from disk into an ImageUpload, guessing its MIME type."""
    file_path = Path(path)
    mime_type, _ = mimetypes.guess_type(file_path.name)
    return ImageUpload(
        name=file_path.name,
        data=file_path.read_bytes(),
        mime_type=mime_type or "application/octet-stream",
    )


def _decode(upload: ImageUpload) -> bytes:
    """Verify the upload is a readable picture and re-encode it as PNG."""
    with Image.open(BytesIO(upload.data)) as image:
        image.load()
        if image.mode not in ("RGB", "RGBA", "L", "LA"):
            image = image.convert("RGBA")
        buffer = BytesIO()
        image.save(buffer, format="PNG")
    return buffer.getvalue()


async def normalize_uploads(uploads: Iterable[ImageUpload]) -> List[ReferenceItem]:
    """Decode image uploads into ReferenceItems, preserving upload order.

    Non-image uploads are skipped. A file that fails to decode is dropped
    without affecting the others.
    """
    candidates = [
        upload for upload in uploads if (upload.mime_type or "").lower().startswith("image/")
    ]
    if not candidates:
        return []

    decoded = await asyncio.gather(
        *(asyncio.to_thread(_decode, upload) for upload in candidates),
        return_exceptions=True,
    )

    items: List[ReferenceItem] = []
    for upload, result in zip(candidates, decoded):
        if isinstance(result, BaseException):
            logger.warning("Dropping undecodable upload %s: %s", upload.name, result)
            continue
        items.append(ReferenceItem(id=new_item_id(), image=result))
    return items


class ReferenceList:
    """Ordered collection of ReferenceItems; position maps to prompt priority."""

    def __init__(self, items: Optional[Sequence[ReferenceItem]] = None) -> None:
        self._items: List[ReferenceItem] = list(items or [])

    def __iter__(self) -> Iterator[ReferenceItem]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __getitem__(self, index: int) -> ReferenceItem:
        return self._items[index]

    def items(self) -> List[ReferenceItem]:
        return list(self._items)

    def images(self) -> List[bytes]:
        return [item.image for item in self._items]

    def extend(self, items: Iterable[ReferenceItem]) -> None:
        """Append items for multi-value fields."""
        self._items.extend(items)

    def replace(self, items: Iterable[ReferenceItem]) -> None:
        """Replace the contents for single-value fields."""
        new_items = list(items)
        if new_items:
            self._items = new_items[:1]

    def clear(self) -> None:
        self._items.clear()

    def _index_of(self, item_id: str) -> int:
        for index, item in enumerate(self._items):
            if item.id == item_id:
                return index
        raise KeyError(f"参考图 '{item_id}' 不存在")

    def remove(self, item_id: str) -> None:
        self._items.pop(self._index_of(item_id))

    def move_up(self, item_id: str) -> None:
        index = self._index_of(item_id)
        if index > 0:
            self._items[index - 1], self._items[index] = self._items[index], self._items[index - 1]

    def move_down(self, item_id: str) -> None:
        index = self._index_of(item_id)
        if index < len(self._items) - 1:
            self._items[index + 1], self._items[index] = self._items[index], self._items[index + 1]

    def update_description(self, item_id: str, text: str) -> None:
        index = self._index_of(item_id)
        self._items[index] = replace(self._items[index], description=text)
