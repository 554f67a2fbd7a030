"""Project tabs and generation history held for one UI session.

Tabs follow a small lifecycle: a tab is created locally as PENDING with a
temporary id, then becomes CONFIRMED (id swapped for the backend id) or
FAILED (kept visible, never rolled back). Project deletion is the reverse:
removed locally first, restored exactly once if the backend refuses.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from modules.optimization.prompt_presets import TITLE_LABELS, AppSection, GeneratorMode
from modules.services.history_service import HistoryItem
from modules.services.persistence import PersistenceAdapter

logger = logging.getLogger(__name__)

TEMP_PREFIX = "temp-"


class EntityStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"


@dataclass(slots=True)
class ProjectTab:
    """A workspace tab, optionally backed by a persisted project."""

    id: str
    title: str
    mode: str
    section: str
    created_at: float
    initial_data: Optional[Dict[str, Any]] = None
    status: EntityStatus = EntityStatus.PENDING


@dataclass(slots=True)
class _DeletedProject:
    tab: ProjectTab
    index: int
    history: List[Tuple[int, HistoryItem]]
    was_active: bool


def _value(item: Any) -> str:
    return item.value if isinstance(item, Enum) else str(item)


def default_title(mode: str, count: int) -> str:
    """Return e.g. ``项目 2 (产品)``."""
    try:
        label = TITLE_LABELS[GeneratorMode(mode)]
    except ValueError:
        label = str(mode)
    return f"项目 {count} ({label})"


@dataclass
class WorkspaceState:
    """Mutable session state shared by the Gradio callbacks."""

    tabs: List[ProjectTab] = field(default_factory=list)
    active_tab_id: Optional[str] = None
    history: List[HistoryItem] = field(default_factory=list)
    credential_valid: bool = True
    _deleting: Set[str] = field(default_factory=set)
    # temp tab id -> generation rows persisted without a project id
    _unassigned: Dict[str, List[str]] = field(default_factory=dict)

    # Tabs -----------------------------------------------------------------
    def get_tab(self, tab_id: Optional[str]) -> Optional[ProjectTab]:
        for tab in self.tabs:
            if tab.id == tab_id:
                return tab
        return None

    def section_tabs(self, section: AppSection | str) -> List[ProjectTab]:
        key = _value(section)
        return [tab for tab in self.tabs if tab.section == key]

    @property
    def active_tab(self) -> Optional[ProjectTab]:
        return self.get_tab(self.active_tab_id)

    def open_tab(
        self,
        mode: GeneratorMode | str,
        section: AppSection | str,
        title: Optional[str] = None,
        initial_data: Optional[Dict[str, Any]] = None,
    ) -> ProjectTab:
        """Insert a PENDING tab with a temporary id and make it active."""
        mode_value = _value(mode)
        section_value = _value(section)
        tab = ProjectTab(
            id=f"{TEMP_PREFIX}{uuid.uuid4().hex}",
            title=title or default_title(mode_value, len(self.section_tabs(section_value)) + 1),
            mode=mode_value,
            section=section_value,
            created_at=time.time(),
            initial_data=initial_data,
        )
        self.tabs.append(tab)
        self.active_tab_id = tab.id
        return tab

    def confirm_tab(self, temp_id: str, remote_id: str) -> Optional[ProjectTab]:
        """Swap a temporary id for the persisted one."""
        tab = self.get_tab(temp_id)
        if tab is None:
            return None
        tab.id = remote_id
        tab.status = EntityStatus.CONFIRMED
        if self.active_tab_id == temp_id:
            self.active_tab_id = remote_id
        self.history = [
            _with_project(item, remote_id) if item.project_id == temp_id else item
            for item in self.history
        ]
        return tab

    def fail_tab(self, temp_id: str) -> Optional[ProjectTab]:
        tab = self.get_tab(temp_id)
        if tab is not None:
            tab.status = EntityStatus.FAILED
        self._unassigned.pop(temp_id, None)
        return tab

    def defer_assignment(self, temp_id: str, record_ids: Iterable[str]) -> None:
        """Remember rows to attach once the pending tab gets its backend id."""
        self._unassigned.setdefault(temp_id, []).extend(record_ids)

    def take_unassigned(self, temp_id: str) -> List[str]:
        return self._unassigned.pop(temp_id, [])

    def select_tab(self, tab_id: Optional[str]) -> Optional[ProjectTab]:
        if tab_id is None:
            self.active_tab_id = None
            return None
        tab = self.get_tab(tab_id)
        if tab is None:
            raise KeyError(f"项目 '{tab_id}' 不存在")
        self.active_tab_id = tab.id
        return tab

    def _fallback_active(self, section: str) -> Optional[str]:
        remaining = self.section_tabs(section)
        return remaining[-1].id if remaining else None

    def close_tab(self, tab_id: str) -> Optional[str]:
        """Remove a tab; return the new active id.

        Closing the active tab selects the most recent remaining tab of the
        same section. Closing any other tab leaves the selection alone.
        """
        tab = self.get_tab(tab_id)
        if tab is None:
            return self.active_tab_id
        self.tabs.remove(tab)
        if self.active_tab_id == tab_id:
            self.active_tab_id = self._fallback_active(tab.section)
        return self.active_tab_id

    def load(self, tabs: Iterable[ProjectTab], history: Iterable[HistoryItem]) -> None:
        """Hydrate the session from persisted projects and history."""
        self.tabs = list(tabs)
        self.history = sorted(history, key=lambda item: item.timestamp, reverse=True)
        if self.get_tab(self.active_tab_id) is None:
            self.active_tab_id = self.tabs[-1].id if self.tabs else None

    # History --------------------------------------------------------------
    def add_history(
        self,
        url: str,
        prompt: str,
        mode: str,
        section: str,
        project_id: Optional[str] = None,
        item_id: Optional[str] = None,
    ) -> HistoryItem:
        item = HistoryItem(
            id=item_id or uuid.uuid4().hex,
            url=url,
            prompt=prompt,
            timestamp=time.time(),
            mode=_value(mode),
            section=_value(section),
            project_id=project_id,
        )
        self.add_history_item(item)
        return item

    def add_history_item(self, item: HistoryItem) -> None:
        """Prepend an item; history is append-only and newest first."""
        if any(existing.id == item.id for existing in self.history):
            return
        self.history.insert(0, item)

    def merge_history(self, items: Iterable[HistoryItem]) -> None:
        known = {item.id for item in self.history}
        merged = self.history + [item for item in items if item.id not in known]
        self.history = sorted(merged, key=lambda item: item.timestamp, reverse=True)

    def history_for(
        self, section: AppSection | str | None = None, project_id: Optional[str] = None
    ) -> List[HistoryItem]:
        items = self.history
        if section is not None:
            key = _value(section)
            items = [item for item in items if item.section == key]
        if project_id is not None:
            items = [item for item in items if item.project_id == project_id]
        return list(items)

    # Deletion -------------------------------------------------------------
    def _detach_project(self, tab_id: str) -> Optional[_DeletedProject]:
        tab = self.get_tab(tab_id)
        if tab is None:
            return None
        index = self.tabs.index(tab)
        removed = [
            (position, item)
            for position, item in enumerate(self.history)
            if item.project_id == tab_id
        ]
        was_active = self.active_tab_id == tab_id
        self.history = [item for item in self.history if item.project_id != tab_id]
        self.close_tab(tab_id)
        return _DeletedProject(tab=tab, index=index, history=removed, was_active=was_active)

    def _restore_project(self, snapshot: _DeletedProject) -> bool:
        """Re-insert a detached project unless it is already present."""
        if self.get_tab(snapshot.tab.id) is not None:
            return False
        self.tabs.insert(min(snapshot.index, len(self.tabs)), snapshot.tab)
        known = {item.id for item in self.history}
        for position, item in snapshot.history:
            if item.id not in known:
                self.history.insert(min(position, len(self.history)), item)
        if snapshot.was_active or self.active_tab_id is None:
            self.active_tab_id = snapshot.tab.id
        return True


def _with_project(item: HistoryItem, project_id: str) -> HistoryItem:
    return HistoryItem(
        id=item.id,
        url=item.url,
        prompt=item.prompt,
        timestamp=item.timestamp,
        mode=item.mode,
        section=item.section,
        project_id=project_id,
    )


async def create_project(
    state: WorkspaceState,
    persistence: Optional[PersistenceAdapter],
    mode: GeneratorMode | str,
    section: AppSection | str,
    user_id: Optional[str] = None,
    title: Optional[str] = None,
) -> ProjectTab:
    """Open a tab immediately, then persist it and confirm or mark it failed."""
    tab = state.open_tab(mode, section, title=title)
    temp_id = tab.id

    if persistence is None:
        tab.status = EntityStatus.CONFIRMED
        return tab

    record = await persistence.create_project(tab.title, tab.mode, tab.section, user_id)
    if record is None:
        logger.warning("Project %s was not persisted; keeping local tab", tab.title)
        state.fail_tab(temp_id)
        return tab

    confirmed = state.confirm_tab(temp_id, record.id)
    unassigned = state.take_unassigned(temp_id)
    if confirmed is not None and unassigned:
        if not await persistence.assign_project(unassigned, record.id):
            logger.warning("Could not attach %d generations to project %s", len(unassigned), record.id)
    return tab


async def delete_project(
    state: WorkspaceState,
    persistence: Optional[PersistenceAdapter],
    tab_id: str,
) -> bool:
    """Remove a project optimistically; restore it once if the backend delete fails.

    A delete already in flight for the same id is ignored and returns False.
    """
    if tab_id in state._deleting:
        return False
    tab = state.get_tab(tab_id)
    if tab is None:
        return False

    state._deleting.add(tab_id)
    try:
        snapshot = state._detach_project(tab_id)
        needs_backend = persistence is not None and tab.status is EntityStatus.CONFIRMED
        ok = await persistence.delete_project(tab_id) if needs_backend else True
        if not ok and snapshot is not None:
            state._restore_project(snapshot)
            logger.warning("Deleting project %s failed; restored", tab_id)
        return ok
    finally:
        state._deleting.discard(tab_id)
