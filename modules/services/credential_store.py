"""Local storage for user supplied API keys."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)

GEMINI_KEY = "gemini_api_key"
REPLICATE_KEY = "replicate_api_key"
KNOWN_KEYS = (GEMINI_KEY, REPLICATE_KEY)


class CredentialStore:
    """One string value per credential type, kept in a JSON file."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def _check(self, name: str) -> None:
        if name not in KNOWN_KEYS:
            raise KeyError(f"未知的凭据名称 '{name}'")

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable credential file %s", self.path)
            return {}
        return {key: str(value) for key, value in data.items() if key in KNOWN_KEYS}

    def _write(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")

    def get(self, name: str) -> Optional[str]:
        self._check(name)
        return self._read().get(name) or None

    def has(self, name: str) -> bool:
        return self.get(name) is not None

    def set(self, name: str, value: str) -> None:
        """Persist ``value``; an empty value clears the entry."""
        self._check(name)
        cleaned = (value or "").strip()
        if not cleaned:
            self.clear(name)
            return
        data = self._read()
        data[name] = cleaned
        self._write(data)

    def clear(self, name: str) -> None:
        self._check(name)
        data = self._read()
        if data.pop(name, None) is not None:
            self._write(data)
