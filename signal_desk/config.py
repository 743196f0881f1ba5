"""Signal Desk configuration and Keychain helpers.

Config is read from ~/.signal_desk/config.json, with environment
variables taking precedence over the file. API keys come from the
environment or the macOS Keychain (set via `signal-desk set-key`).
"""

from __future__ import annotations

import copy
import json
import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".signal_desk"
DEFAULT_CONFIG_PATH = CONFIG_DIR / "config.json"
KEYCHAIN_SERVICE = "signal-desk"

DEFAULTS: Dict[str, Any] = {
    "db_path": str(CONFIG_DIR / "signal_desk.db"),
    "llm_provider": "gemini",
    "llm_model": None,
    "llm_timeout_seconds": 120,
    "embedding_url": "http://localhost:11434",
    "embedding_model": "nomic-embed-text",
    "serpapi_min_interval_seconds": 1.0,
    "agent": {
        "model": None,
        "temperature": 0.4,
        "max_tool_rounds": 10,
        "target_selections": 5,
        "candidate_pool_size": 30,
        "max_tokens": 4096,
    },
    "news": {
        "poll_interval_minutes": 120,
        "max_articles_per_query": 25,
        "lookback_hours": 24,
        "max_queries_per_cycle": 50,
    },
}

# env var -> (section or None, key, caster)
ENV_OVERRIDES = {
    "SIGNAL_DESK_DB": (None, "db_path", str),
    "SIGNAL_DESK_LLM_PROVIDER": (None, "llm_provider", str),
    "SIGNAL_DESK_LLM_MODEL": (None, "llm_model", str),
    "OLLAMA_URL": (None, "embedding_url", str),
    "NEWS_POLL_INTERVAL_MINUTES": ("news", "poll_interval_minutes", int),
    "NEWS_MAX_ARTICLES_PER_QUERY": ("news", "max_articles_per_query", int),
    "NEWS_LOOKBACK_HOURS": ("news", "lookback_hours", int),
    "NEWS_MAX_QUERIES_PER_CYCLE": ("news", "max_queries_per_cycle", int),
}


@dataclass(frozen=True)
class NewsIngestionConfig:
    poll_interval_minutes: int = 120
    max_articles_per_query: int = 25
    lookback_hours: int = 24
    max_queries_per_cycle: int = 50


def load_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Load config from disk merged over defaults, then apply env overrides."""
    config = copy.deepcopy(DEFAULTS)
    config_path = path or DEFAULT_CONFIG_PATH

    if config_path.exists():
        try:
            on_disk = json.loads(config_path.read_text())
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Ignoring unreadable config %s: %s", config_path, exc)
            on_disk = {}
        for key, value in on_disk.items():
            if isinstance(value, dict) and isinstance(config.get(key), dict):
                config[key].update(value)
            else:
                config[key] = value

    for env_var, (section, key, caster) in ENV_OVERRIDES.items():
        raw = os.environ.get(env_var)
        if not raw:
            continue
        try:
            value = caster(raw)
        except ValueError:
            logger.warning("Ignoring invalid %s=%r", env_var, raw)
            continue
        if section:
            config[section][key] = value
        else:
            config[key] = value

    return config


def save_config(config: Dict[str, Any], path: Optional[Path] = None):
    """Save config to disk."""
    config_path = path or DEFAULT_CONFIG_PATH
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(config, indent=2))


def news_config(config: Dict[str, Any]) -> NewsIngestionConfig:
    news = config.get("news", {})
    return NewsIngestionConfig(
        poll_interval_minutes=int(news.get("poll_interval_minutes", 120)),
        max_articles_per_query=int(news.get("max_articles_per_query", 25)),
        lookback_hours=int(news.get("lookback_hours", 24)),
        max_queries_per_cycle=int(news.get("max_queries_per_cycle", 50)),
    )


def get_api_key(env_var: str, keychain_account: str) -> Optional[str]:
    """Load API key from environment variable or macOS Keychain.

    Checks env var first, then Keychain (set via `signal-desk set-key`).
    """
    key = os.environ.get(env_var)
    if key:
        return key

    try:
        result = subprocess.run(
            ["security", "find-generic-password", "-a", keychain_account, "-s", KEYCHAIN_SERVICE, "-w"],
            capture_output=True, text=True,
        )
        if result.returncode == 0 and result.stdout.strip():
            return result.stdout.strip()
    except FileNotFoundError:
        pass

    return None


def get_serpapi_key() -> Optional[str]:
    return os.environ.get("SERPAPI_KEY") or get_api_key("SERPAPI_API_KEY", "serpapi")
