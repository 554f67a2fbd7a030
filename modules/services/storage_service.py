"""Object storage for generated images (Supabase Storage)."""

from __future__ import annotations

import time
from typing import Any, Callable

from modules.utils.image_utils import compress_for_upload


class StorageService:
    """Upload generated images to a public storage bucket."""

    def __init__(
        self,
        client: Any,
        bucket: str = "generated-images",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.bucket = bucket
        self._clock = clock

    def object_path(self, user_id: str) -> str:
        """Return ``<user_id>/<epoch millis>.jpg``."""
        return f"{user_id}/{int(self._clock() * 1000)}.jpg"

    def upload(self, image: bytes, user_id: str) -> str:
        """Compress ``image`` to JPEG, upload it and return its public URL."""
        payload = compress_for_upload(image, max_width=2048, quality=80)
        path = self.object_path(user_id)
        bucket = self.client.storage.from_(self.bucket)
        bucket.upload(path, payload, {"content-type": "image/jpeg", "upsert": "false"})
        return bucket.get_public_url(path)
