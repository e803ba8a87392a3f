"""
Shared configuration loader for the jukebox service.

Loads a single JSON config file per device.  Search order:
  1. $JUKEBOX_CONFIG                (explicit override)
  2. /etc/jukebox/config.json       (deployed)
  3. config.json                    (CWD — handy for local dev)
  4. ../../config/default.json      (repo fallback)

Usage:
    from .config import cfg

    source_type  = cfg("source", "type", default="file")
    page_size    = cfg("ui", "page_size", default=40)
    debug        = cfg("debug", default=False)
"""

import json
import logging
import os

logger = logging.getLogger(__name__)

_config: dict | None = None

SOURCE_TYPES = ("file", "usb", "url")


def _search_paths() -> list[str]:
    paths = [
        "/etc/jukebox/config.json",
        "config.json",
        os.path.join(os.path.dirname(__file__), "..", "..", "config", "default.json"),
    ]
    override = os.getenv("JUKEBOX_CONFIG")
    if override:
        paths.insert(0, override)
    return paths


def _validate(config: dict, path: str) -> None:
    """Warn about missing or suspicious config values."""
    source = config.get("source") or {}
    source_type = source.get("type", "file")
    if source_type not in SOURCE_TYPES:
        logger.warning("Config %s: unknown source.type '%s'", path, source_type)
    if source_type == "usb" and not source.get("usb_path") and not os.getenv("JUKEBOX_USB_PATH"):
        logger.warning("Config %s: USB source without source.usb_path — nothing to scan", path)
    if source_type == "url" and not source.get("tracks"):
        logger.warning("Config %s: URL source without source.tracks — catalog will be empty", path)


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

    logger.warning("No config.json found — using empty config")
    _config = {}
    return _config


def cfg(section: str, key: str | None = None, *, default=None):
    """Read a config value.

    cfg("debug")                      → config["debug"]
    cfg("source", "type")             → config["source"]["type"]
    cfg("ui", "page_size", default=40) → config["ui"]["page_size"] or 40
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
