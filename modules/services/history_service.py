"""Generation history and project metadata backed by Supabase tables."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

GENERATIONS_TABLE = "generations"
PROJECTS_TABLE = "projects"


@dataclass(frozen=True, slots=True)
class HistoryItem:
    """Metadata describing one generated image. Immutable once created."""

    id: str
    url: str
    prompt: str
    timestamp: float
    mode: str
    section: str
    project_id: Optional[str] = None


@dataclass(slots=True)
class ProjectRecord:
    """Row of the ``projects`` table."""

    id: str
    name: str
    mode: str
    section: str
    created_at: float


def _timestamp(value: Any) -> float:
    """Convert a Postgres timestamp string (or number) to epoch seconds."""
    if value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).replace("Z", "+00:00")
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def to_history_item(row: Dict[str, Any]) -> HistoryItem:
    return HistoryItem(
        id=str(row["id"]),
        url=row.get("image_url", ""),
        prompt=row.get("prompt") or "",
        timestamp=_timestamp(row.get("created_at")),
        mode=row.get("mode") or "",
        section=row.get("section") or "",
        project_id=str(row["project_id"]) if row.get("project_id") else None,
    )


def to_project_record(row: Dict[str, Any]) -> ProjectRecord:
    return ProjectRecord(
        id=str(row["id"]),
        name=row.get("name") or "",
        mode=row.get("mode") or "",
        section=row.get("section") or "",
        created_at=_timestamp(row.get("created_at")),
    )


class GenerationHistoryService:
    """Read and write generation and project rows."""

    def __init__(self, client: Any) -> None:
        self.client = client

    def record(
        self,
        user_id: str,
        url: str,
        prompt: str,
        mode: str,
        section: str,
        project_id: Optional[str] = None,
    ) -> Optional[HistoryItem]:
        """Insert a generation row and return it as a HistoryItem."""
        row = {
            "user_id": user_id,
            "image_url": url,
            "prompt": prompt,
            "mode": mode,
            "section": section,
            "project_id": project_id,
        }
        response = self.client.table(GENERATIONS_TABLE).insert(row).execute()
        data = response.data or []
        return to_history_item(data[0]) if data else None

    def list_by_project(self, project_id: str) -> List[HistoryItem]:
        response = (
            self.client.table(GENERATIONS_TABLE)
            .select("*")
            .eq("project_id", project_id)
            .order("created_at", desc=True)
            .execute()
        )
        return [to_history_item(row) for row in response.data or []]

    def list_by_user(self, user_id: str) -> List[HistoryItem]:
        response = (
            self.client.table(GENERATIONS_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .execute()
        )
        return [to_history_item(row) for row in response.data or []]

    def assign_project(self, record_ids: List[str], project_id: str) -> bool:
        """Attach generation rows saved before their project was confirmed."""
        if not record_ids:
            return True
        (
            self.client.table(GENERATIONS_TABLE)
            .update({"project_id": project_id})
            .in_("id", record_ids)
            .execute()
        )
        return True

    def create_project(
        self, user_id: str, name: str, mode: str, section: str
    ) -> Optional[ProjectRecord]:
        row = {"user_id": user_id, "name": name, "mode": mode, "section": section}
        response = self.client.table(PROJECTS_TABLE).insert(row).execute()
        data = response.data or []
        return to_project_record(data[0]) if data else None

    def list_projects(self, user_id: str) -> List[ProjectRecord]:
        response = (
            self.client.table(PROJECTS_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .order("created_at", desc=False)
            .execute()
        )
        return [to_project_record(row) for row in response.data or []]

    def delete_project(self, project_id: str) -> bool:
        """Delete a project and its generation rows."""
        self.client.table(GENERATIONS_TABLE).delete().eq("project_id", project_id).execute()
        self.client.table(PROJECTS_TABLE).delete().eq("id", project_id).execute()
        return True
