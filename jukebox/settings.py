"""
Durable JSON key-value documents.

Two documents live side by side: the settings record (``{"volume": 0.8}``)
and the lightweight UI-state mirror (active index, paused/stopped flags,
random mode, last volume).  Neither may ever block startup: a missing or
malformed file reads as an empty mapping, and write failures are logged.
"""

import json
import logging
import math
import os
import tempfile

from .errors import PersistenceFailure

log = logging.getLogger(__name__)


class JsonStore:
    """Single JSON document; every write is read-merge-rewrite."""

    def __init__(self, path):
        self.path = str(path)

    def read(self) -> dict:
        try:
            with open(self.path, encoding='utf-8') as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            log.warning("Unreadable settings %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key, default=None):
        return self.read().get(key, default)

    def set(self, key, value) -> bool:
        return self.update({key: value})

    def update(self, values: dict) -> bool:
        data = self.read()
        data.update(values)
        try:
            self._write(data)
        except PersistenceFailure as e:
            log.error("Failed to write settings: %s", e)
            return False
        return True

    def _write(self, data: dict):
        """Write to a temp file in the same directory, then rename over."""
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp = tempfile.mkstemp(prefix='.settings-', suffix='.tmp', dir=directory)
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(data, f, indent=2)
                os.replace(tmp, self.path)
            except BaseException:
                try:
                    os.unlink(tmp)
                except OSError:
                    pass
                raise
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceFailure(f"{self.path}: {e}") from e


def clamp_volume(value) -> float:
    """Clamp to [0, 1]; anything non-numeric or NaN becomes 0."""
    try:
        v = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(v):
        return 0.0
    return max(0.0, min(1.0, v))


class SettingsStore(JsonStore):
    """The durable settings record."""

    def get_volume(self) -> float | None:
        value = self.get('volume')
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        if math.isnan(value):
            return None
        return clamp_volume(value)

    def save_volume(self, value) -> bool:
        return self.set('volume', clamp_volume(value))


class UIStateStore(JsonStore):
    """Mirror of the last playback snapshot, restored best-effort at startup."""

    def load(self) -> dict:
        data = self.read()
        active = data.get('activeIndex')
        volume = data.get('volume')
        return {
            'activeIndex': active if isinstance(active, int) and not isinstance(active, bool) else None,
            'paused': bool(data.get('paused')),
            'stopped': bool(data.get('stopped')),
            'randomMode': bool(data.get('randomMode')),
            'volume': clamp_volume(volume) if isinstance(volume, (int, float))
            and not isinstance(volume, bool) and not math.isnan(volume) else None,
        }

    def save(self, active_index, paused, stopped, random_mode) -> bool:
        return self.update({
            'activeIndex': active_index,
            'paused': bool(paused),
            'stopped': bool(stopped),
            'randomMode': bool(random_mode),
        })

    def save_volume(self, value) -> bool:
        return self.set('volume', clamp_volume(value))
