"""
Configuration persistence.

Stores sync timings and the remote ledger location in a JSON file next to
the local progress data. Environment variables override the file.
"""

import json
import logging
import os
from pathlib import Path
from typing import Mapping, TypedDict

logger = logging.getLogger(__name__)

ENV_PREFIX = "PROGRESS_SYNC_"


class Config(TypedDict, total=False):
    """Progress-sync configuration. Durations are in seconds."""
    data_dir: str  # Local progress store directory
    remote_url: str | None  # HTTP ledger base URL, None for in-memory
    remote_timeout: float  # Per-request timeout
    auto_sync_interval: float  # Periodic reconcile check
    local_publish_delay: float  # Publish after adopting local progress
    new_player_publish_delay: float  # Publish after creating a new player
    starting_credits: int
    experience_per_level: int
    outbox_max_attempts: int
    outbox_base_backoff: float
    outbox_max_backoff: float
    sync_stale_after: float  # Local copy needs sync after this long
    catalog_path: str | None  # YAML/JSON mission catalog, None for the built-in one


DEFAULT_CONFIG: Config = {
    "data_dir": "progress",
    "remote_url": None,
    "remote_timeout": 10.0,
    "auto_sync_interval": 300.0,
    "local_publish_delay": 2.0,
    "new_player_publish_delay": 3.0,
    "starting_credits": 1000,
    "experience_per_level": 1000,
    "outbox_max_attempts": 5,
    "outbox_base_backoff": 2.0,
    "outbox_max_backoff": 60.0,
    "sync_stale_after": 300.0,
    "catalog_path": None,
}

# Environment variable suffix -> (config key, parser)
ENV_OVERRIDES = {
    "DATA_DIR": ("data_dir", str),
    "REMOTE_URL": ("remote_url", str),
    "REMOTE_TIMEOUT": ("remote_timeout", float),
    "AUTO_SYNC_INTERVAL": ("auto_sync_interval", float),
    "CATALOG_PATH": ("catalog_path", str),
}


def get_config_path(data_dir: Path | str = "progress") -> Path:
    """Get path to config file."""
    return Path(data_dir) / ".progress_sync_config.json"


def apply_env(config: Config, environ: Mapping[str, str] | None = None) -> Config:
    """Overlay PROGRESS_SYNC_* variables. Unparsable values are ignored."""
    environ = os.environ if environ is None else environ
    for suffix, (key, parse) in ENV_OVERRIDES.items():
        raw = environ.get(ENV_PREFIX + suffix)
        if raw is None or raw == "":
            continue
        try:
            config[key] = parse(raw)
        except ValueError:
            logger.warning("Ignoring %s%s=%r: not a valid %s", ENV_PREFIX, suffix, raw, parse.__name__)
    return config


def load_config(data_dir: Path | str | None = None, environ: Mapping[str, str] | None = None) -> Config:
    """Load config from file, or defaults if missing or corrupt, then apply env."""
    environ = os.environ if environ is None else environ
    if data_dir is None:
        data_dir = environ.get(ENV_PREFIX + "DATA_DIR") or DEFAULT_CONFIG["data_dir"]

    config = DEFAULT_CONFIG.copy()
    config["data_dir"] = str(data_dir)
    path = get_config_path(data_dir)

    if path.exists():
        try:
            with open(path, "r", encoding="utf-8") as f:
                saved = json.load(f)
            # Merge with defaults to handle missing keys
            config.update(saved)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning("Config %s unreadable, using defaults: %s", path, e)

    return apply_env(config, environ)


def save_config(config: Config, data_dir: Path | str | None = None) -> bool:
    """Save config to file. Returns True on success."""
    path = get_config_path(data_dir or config.get("data_dir", DEFAULT_CONFIG["data_dir"]))

    # Ensure directory exists
    path.parent.mkdir(parents=True, exist_ok=True)

    try:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(config, f, indent=2)
        return True
    except IOError:
        return False


def seconds_to_ms(value: float) -> int:
    return int(value * 1000)
