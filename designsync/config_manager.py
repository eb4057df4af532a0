"""Configuration manager for DesignSync using TOML files."""

from __future__ import annotations

import logging
from typing import Any, Dict

import toml

from .config import BASE_DIR, DEFAULT_LLM_ENDPOINT, DEFAULT_LLM_MODEL

logger = logging.getLogger(__name__)

CONFIG_FILE = BASE_DIR / "config.toml"

ALL_PROVIDERS = ("ollama", "groq", "openai", "anthropic", "gemini", "openrouter")

# Default configurations for each provider
DEFAULT_CONFIGS = {
    "ollama": {
        "provider": "ollama",
        "model": DEFAULT_LLM_MODEL,
        "endpoint": DEFAULT_LLM_ENDPOINT,
    },
    "groq": {
        "provider": "groq",
        "model": "llama-3.3-70b-versatile",
        "api_key": "",
        "endpoint": "https://api.groq.com/openai/v1/chat/completions",
    },
    "openai": {
        "provider": "openai",
        "model": "gpt-4o-mini",
        "api_key": "",
        "endpoint": "https://api.openai.com/v1/chat/completions",
    },
    "anthropic": {
        "provider": "anthropic",
        "model": "claude-3-5-sonnet-20241022",
        "api_key": "",
    },
    "gemini": {
        "provider": "gemini",
        "model": "gemini-2.0-flash",
        "api_key": "",
    },
    "openrouter": {
        "provider": "openrouter",
        "model": "google/gemini-2.0-flash-exp:free",
        "api_key": "",
        "endpoint": "https://openrouter.ai/api/v1/chat/completions",
    },
}


def load_full_config() -> Dict[str, Any]:
    """Load the entire TOML config (all sections)."""
    if not CONFIG_FILE.exists():
        return {}
    try:
        with open(CONFIG_FILE, "r", encoding="utf-8") as f:
            return toml.load(f)
    except (OSError, toml.TomlDecodeError) as exc:
        logger.warning("Could not read %s: %s", CONFIG_FILE, exc)
        return {}


def _save_full_config(config: Dict[str, Any]) -> bool:
    """Write entire config dict to TOML file, preserving all sections."""
    try:
        CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
        with open(CONFIG_FILE, "w", encoding="utf-8") as f:
            toml.dump(config, f)
        return True
    except OSError as exc:
        logger.warning("Could not write %s: %s", CONFIG_FILE, exc)
        return False


def load_config() -> Dict[str, Any]:
    """Load the ``[llm]`` section.

    Returns:
        Provider settings. Falls back to Ollama defaults if the file or
        section doesn't exist.
    """
    full = load_full_config()
    return full.get("llm", DEFAULT_CONFIGS["ollama"].copy())


def save_config(provider: str, model: str, api_key: str = "", endpoint: str = "") -> bool:
    """Save LLM configuration to TOML file.

    Preserves other sections (e.g. ``[sync]``) in the file.
    """
    config = load_full_config()

    config["llm"] = {
        "provider": provider,
        "model": model,
    }
    if api_key:
        config["llm"]["api_key"] = api_key
    if endpoint:
        config["llm"]["endpoint"] = endpoint

    return _save_full_config(config)


def load_sync_config() -> Dict[str, Any]:
    """Load the ``[sync]`` section (commit limit, workers, thresholds)."""
    return load_full_config().get("sync", {})


def save_sync_config(values: Dict[str, Any]) -> bool:
    config = load_full_config()
    section = config.setdefault("sync", {})
    section.update(values)
    return _save_full_config(config)


def get_provider_config(provider: str) -> Dict[str, Any]:
    """Get default configuration for a specific provider."""
    return DEFAULT_CONFIGS.get(provider, DEFAULT_CONFIGS["ollama"]).copy()
