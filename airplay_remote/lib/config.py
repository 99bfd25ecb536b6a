"""
Shared configuration loader for airplay-remote.

Loads a single JSON config file.  Search order:
  1. $AIRPLAY_REMOTE_CONFIG            (explicit override, e.g. --config)
  2. /etc/airplay-remote/config.json   (system install)
  3. config.json                       (CWD — handy for local dev)

Every value has a default, so running without any config file is fine.

Usage:
    from airplay_remote.lib.config import cfg

    ping_interval = cfg("airplay", "ping_interval", default=30)
    service_type  = cfg("discovery", "service_type", default="_airplay._tcp.local.")
    airplay       = cfg("airplay")  # returns the whole dict
"""

import json
import logging
import os

logger = logging.getLogger(__name__)

_config: dict | None = None

ENV_CONFIG_PATH = "AIRPLAY_REMOTE_CONFIG"

_DEFAULT_PATHS = [
    "/etc/airplay-remote/config.json",
    "config.json",
]

_NUMERIC_KEYS = ("ping_interval", "poll_interval", "request_timeout", "credential_timeout")


def _search_paths() -> list[str]:
    override = os.environ.get(ENV_CONFIG_PATH)
    if override:
        return [override] + _DEFAULT_PATHS
    return list(_DEFAULT_PATHS)


def _validate(config: dict, path: str) -> None:
    """Warn about missing or suspicious config values."""
    airplay = config.get("airplay") or {}
    if not isinstance(airplay, dict):
        logger.warning("Config %s: 'airplay' section is not an object — ignoring it", path)
        return
    for key in _NUMERIC_KEYS:
        if key not in airplay:
            continue
        val = airplay[key]
        if not isinstance(val, (int, float)) or isinstance(val, bool) or val <= 0:
            logger.warning("Config %s: airplay.%s should be a positive number, got %r",
                           path, key, val)


def load_config() -> dict:
    """Load config from the first JSON file found. Cached after first call."""
    global _config
    if _config is not None:
        return _config

    for path in _search_paths():
        try:
            with open(path) as f:
                _config = json.load(f)
                logger.info("Config loaded from %s", path)
                _validate(_config, path)
                return _config
        except FileNotFoundError:
            continue
        except json.JSONDecodeError as e:
            logger.error("Invalid JSON in %s: %s", path, e)
            continue

    logger.debug("No config.json found — using defaults")
    _config = {}
    return _config


def cfg(section: str, key: str | None = None, *, default=None):
    """Read a config value.

    cfg("airplay")                          → config["airplay"]
    cfg("airplay", "ping_interval")         → config["airplay"]["ping_interval"]
    cfg("airplay", "poll_interval", default=0.2)  → value or 0.2
    """
    config = load_config()
    val = config.get(section)
    if key is None:
        return val if val is not None else default
    if isinstance(val, dict):
        return val.get(key, default)
    return default


def reload_config():
    """Force re-read from disk (for testing or hot-reload)."""
    global _config
    _config = None
    return load_config()
