"""Test configuration and fixtures"""

import random

import pytest

from jukebox.errors import PlaybackFailure
from jukebox.lib import config
from jukebox.library import Catalog, Track
from jukebox.playback import MediaBackend, PlaybackMachine
from jukebox.settings import SettingsStore, UIStateStore


class FakeBackend(MediaBackend):
    """In-memory media handle; sources listed in *fail_sources* refuse to load."""

    def __init__(self, fail_sources=()):
        super().__init__()
        self.fail_sources = set(fail_sources)
        self.loads = []
        self.source = None
        self.volume = None
        self.position = 0.0
        self._paused = True
        self._loaded = False

    @property
    def paused(self):
        return self._paused

    @property
    def loaded(self):
        return self._loaded

    async def load(self, source):
        self.loads.append(source)
        if source in self.fail_sources:
            self._loaded = False
            raise PlaybackFailure(f"cannot decode {source}")
        self.source = source
        self._loaded = True
        self._paused = True
        self.position = 0.0

    async def play(self):
        self._paused = False

    async def pause(self):
        self._paused = True

    async def seek(self, seconds):
        self.position = seconds

    async def set_volume(self, volume):
        self.volume = volume

    async def release(self):
        self._loaded = False
        self.source = None


def make_catalog(*files):
    return Catalog([Track(id=i, file=f, title=f) for i, f in enumerate(files)])


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def stores(tmp_path):
    return SettingsStore(tmp_path / "settings.json"), UIStateStore(tmp_path / "ui_state.json")


@pytest.fixture
def machine(backend, stores):
    settings, ui_state = stores
    return PlaybackMachine(backend, settings=settings, ui_state=ui_state,
                           volume=0.5, volume_debounce=0.01, rng=random.Random(7))


@pytest.fixture
def app_config(monkeypatch, tmp_path):
    """Install an in-memory config; tests mutate the returned dict."""
    conf = {
        "source": {"type": "file"},
        "library": {"content_root": str(tmp_path / "sound_files")},
        "ui": {"notify_throttle_ms": 0, "volume_debounce_ms": 0},
        "storage": {
            "settings_file": str(tmp_path / "settings.json"),
            "ui_state_file": str(tmp_path / "ui_state.json"),
            "debug_file": str(tmp_path / ".logs" / "debugLog.txt"),
        },
    }
    monkeypatch.setattr(config, "_config", conf)
    monkeypatch.delenv("JUKEBOX_USB_PATH", raising=False)
    return conf
