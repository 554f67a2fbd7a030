"""Configuration helpers for the AI Design Builder project."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass(slots=True)
class AppConfig:
    """Centralized application configuration."""

    gemini_key: Optional[str] = None
    image_model: str = "gemini-3-pro-image-preview"
    prompt_model: str = "gemini-2.5-flash"
    image_size: str = "2K"
    max_concurrent_generations: int = 2
    replicate_key: Optional[str] = None
    replicate_base_url: str = "https://api.replicate.com/v1"
    remove_bg_version: str = "a029dff38972b5fda4ec5d75d7d1cd25aeff621d2cf4946a41055d7db66b80bc"
    remove_bg_poll_interval: float = 1.0
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    supabase_user_id: Optional[str] = None
    storage_bucket: str = "generated-images"
    log_dir: Path = Path("logs")
    credentials_path: Path = Path("logs/credentials.json")
    export_dir: Path = Path("exports")

    @property
    def supabase_configured(self) -> bool:
        """Return True when both the project URL and API key are present."""
        return bool(self.supabase_url and self.supabase_key)


def _load_env_file(path: Path) -> None:
    """Populate environment variables from a simple KEY=VALUE .env file."""
    if not path.exists():
        return

    for line in path.read_text(encoding="utf-8").splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        os.environ[key.strip()] = value.strip()


def _first_env(*names: str) -> Optional[str]:
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return None


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return max(1, int(raw))
    except ValueError:
        return default


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """Return an AppConfig instance with environment-aware settings."""
    env_path = Path(config_path) if config_path else Path(".env")
    _load_env_file(env_path)

    defaults = AppConfig()
    log_dir = Path(os.getenv("LOG_DIR", str(defaults.log_dir))).expanduser()
    credentials_path = Path(
        os.getenv("CREDENTIALS_PATH", str(log_dir / "credentials.json"))
    ).expanduser()

    return AppConfig(
        gemini_key=_first_env("GEMINI_API_KEY", "GOOGLE_API_KEY", "API_KEY"),
        image_model=os.getenv("IMAGE_MODEL", defaults.image_model),
        prompt_model=os.getenv("PROMPT_MODEL", defaults.prompt_model),
        image_size=os.getenv("IMAGE_SIZE", defaults.image_size),
        max_concurrent_generations=_int_env(
            "MAX_CONCURRENT_GENERATIONS", defaults.max_concurrent_generations
        ),
        replicate_key=_first_env("REPLICATE_API_TOKEN", "REPLICATE_API_KEY"),
        replicate_base_url=os.getenv("REPLICATE_BASE_URL") or defaults.replicate_base_url,
        supabase_url=os.getenv("SUPABASE_URL"),
        supabase_key=_first_env("SUPABASE_KEY", "SUPABASE_ANON_KEY"),
        supabase_user_id=os.getenv("SUPABASE_USER_ID"),
        storage_bucket=os.getenv("SUPABASE_BUCKET", defaults.storage_bucket),
        log_dir=log_dir,
        credentials_path=credentials_path,
        export_dir=Path(os.getenv("EXPORT_DIR", str(defaults.export_dir))).expanduser(),
    )
