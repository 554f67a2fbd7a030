"""Best-effort persistence boundary used by the batch and project flows.

Every method is a coroutine and never raises: failures are logged and
reported as ``None``, ``False`` or an empty list.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, List, Optional, TypeVar

from supabase import create_client

from config.settings import AppConfig
from modules.services.history_service import (
    GenerationHistoryService,
    HistoryItem,
    ProjectRecord,
)
from modules.services.storage_service import StorageService

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PersistenceAdapter:
    """Async facade over the storage and history services."""

    def __init__(
        self,
        storage: StorageService,
        history: GenerationHistoryService,
        user_id: Optional[str] = None,
    ) -> None:
        self.storage = storage
        self.history = history
        self.user_id = user_id

    async def _call(self, label: str, fallback: T, func: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(func, *args)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Persistence call %s failed: %s", label, exc)
            return fallback

    def _resolve_user(self, user_id: Optional[str]) -> Optional[str]:
        return user_id or self.user_id

    async def upload(self, image: bytes, user_id: Optional[str] = None) -> Optional[str]:
        owner = self._resolve_user(user_id)
        if not owner:
            return None
        return await self._call("upload", None, self.storage.upload, image, owner)

    async def record_metadata(
        self,
        url: str,
        prompt: str,
        mode: str,
        section: str,
        project_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Optional[HistoryItem]:
        owner = self._resolve_user(user_id)
        if not owner:
            return None
        return await self._call(
            "record_metadata",
            None,
            self.history.record,
            owner,
            url,
            prompt,
            mode,
            section,
            project_id,
        )

    async def list_by_project(self, project_id: str) -> List[HistoryItem]:
        return await self._call("list_by_project", [], self.history.list_by_project, project_id)

    async def list_by_user(self, user_id: Optional[str] = None) -> List[HistoryItem]:
        owner = self._resolve_user(user_id)
        if not owner:
            return []
        return await self._call("list_by_user", [], self.history.list_by_user, owner)

    async def assign_project(self, record_ids: List[str], project_id: str) -> bool:
        return bool(
            await self._call(
                "assign_project", False, self.history.assign_project, list(record_ids), project_id
            )
        )

    async def create_project(
        self, name: str, mode: str, section: str, user_id: Optional[str] = None
    ) -> Optional[ProjectRecord]:
        owner = self._resolve_user(user_id)
        if not owner:
            return None
        return await self._call(
            "create_project", None, self.history.create_project, owner, name, mode, section
        )

    async def list_projects(self, user_id: Optional[str] = None) -> List[ProjectRecord]:
        owner = self._resolve_user(user_id)
        if not owner:
            return []
        return await self._call("list_projects", [], self.history.list_projects, owner)

    async def delete_project(self, project_id: str) -> bool:
        return bool(
            await self._call("delete_project", False, self.history.delete_project, project_id)
        )


def create_persistence(config: AppConfig) -> Optional[PersistenceAdapter]:
    """Build the Supabase-backed adapter, or None when Supabase is not configured."""
    if not config.supabase_configured:
        logger.info("Supabase not configured; results will stay in memory only.")
        return None
    try:
        client = create_client(config.supabase_url, config.supabase_key)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Failed to create Supabase client: %s", exc)
        return None
    return PersistenceAdapter(
        storage=StorageService(client, config.storage_bucket),
        history=GenerationHistoryService(client),
        user_id=config.supabase_user_id,
    )
