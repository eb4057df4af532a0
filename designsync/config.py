"""Configuration paths and defaults for DesignSync."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict

BASE_DIR = Path(os.environ.get("DESIGNSYNC_HOME", str(Path.home() / ".designsync"))).expanduser()
MEMORY_DIR = BASE_DIR / "memory"
STATE_FILE = BASE_DIR / "state.json"

SUPPORTED_EXTENSIONS = {
    ".py", ".js", ".jsx", ".mjs", ".cjs", ".ts", ".tsx",
    ".json", ".md", ".markdown", ".txt", ".css", ".html",
}
SKIP_DIRS = {
    ".git", "node_modules", "__pycache__", ".venv", "venv", "dist", "build",
    ".next", ".mypy_cache", ".pytest_cache", ".designsync",
}

DEFAULT_LLM_PROVIDER = "ollama"
DEFAULT_LLM_MODEL = "qwen2.5-coder:7b"
DEFAULT_LLM_ENDPOINT = "http://127.0.0.1:11434/api/generate"


@dataclass
class SyncSettings:
    """Tunables for one commit. Overridable from the ``[sync]`` TOML section."""

    commit_limit: int = 4
    workers: int = 2
    max_attempts: int = 2
    change_threshold: float = 0.12
    max_file_chars: int = 120_000
    oracle_max_retries: int = 2
    oracle_retry_delay_ms: int = 800
    low_coverage_threshold: float = 0.6

    @classmethod
    def from_mapping(cls, raw: Dict[str, Any]) -> "SyncSettings":
        settings = cls()
        for f in fields(cls):
            if f.name not in raw:
                continue
            default = getattr(settings, f.name)
            try:
                setattr(settings, f.name, type(default)(raw[f.name]))
            except (TypeError, ValueError):
                continue
        return settings


def load_llm_settings() -> Dict[str, str]:
    """LLM provider settings from ``config.toml`` with Ollama defaults."""
    from .config_manager import load_config

    cfg = load_config()
    return {
        "provider": cfg.get("provider", DEFAULT_LLM_PROVIDER),
        "model": cfg.get("model", DEFAULT_LLM_MODEL),
        "api_key": cfg.get("api_key", ""),
        "endpoint": cfg.get("endpoint", DEFAULT_LLM_ENDPOINT),
    }


def load_sync_settings() -> SyncSettings:
    from .config_manager import load_sync_config

    return SyncSettings.from_mapping(load_sync_config())


def ensure_base_dirs() -> None:
    """Create base directories for local storage if needed."""
    MEMORY_DIR.mkdir(parents=True, exist_ok=True)
    BASE_DIR.mkdir(parents=True, exist_ok=True)
