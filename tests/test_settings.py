"""Test the durable settings documents"""

import json

from jukebox.settings import JsonStore, SettingsStore, UIStateStore, clamp_volume


class TestClampVolume:
    def test_clamps(self):
        assert clamp_volume(-0.5) == 0
        assert clamp_volume(1.7) == 1
        assert clamp_volume(float("nan")) == 0
        assert clamp_volume("abc") == 0
        assert clamp_volume(None) == 0
        assert clamp_volume("0.25") == 0.25


class TestJsonStore:
    def test_missing_file_is_empty(self, tmp_path):
        store = JsonStore(tmp_path / "settings.json")
        assert store.read() == {}
        assert store.get("volume") is None

    def test_malformed_file_is_empty(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("{not json")
        assert JsonStore(path).read() == {}

    def test_non_object_is_empty(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("[1, 2]")
        assert JsonStore(path).read() == {}

    def test_write_merges_keys(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"theme": "dark"}))
        store = JsonStore(path)
        assert store.set("volume", 0.3)
        assert json.loads(path.read_text()) == {"theme": "dark", "volume": 0.3}

    def test_write_creates_directory(self, tmp_path):
        store = JsonStore(tmp_path / "nested" / "settings.json")
        assert store.set("volume", 1)
        assert store.get("volume") == 1

    def test_write_failure_is_swallowed(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        store = JsonStore(blocker / "settings.json")
        assert store.set("volume", 0.5) is False
        assert store.read() == {}

    def test_no_temp_files_left_behind(self, tmp_path):
        store = JsonStore(tmp_path / "settings.json")
        store.set("a", 1)
        store.set("b", 2)
        assert [p.name for p in tmp_path.iterdir()] == ["settings.json"]


class TestSettingsStore:
    def test_volume_round_trip(self, tmp_path):
        store = SettingsStore(tmp_path / "settings.json")
        assert store.get_volume() is None
        store.save_volume(1.4)
        assert store.get_volume() == 1.0

    def test_non_numeric_volume_ignored(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"volume": "loud"}))
        assert SettingsStore(path).get_volume() is None


class TestUIStateStore:
    def test_load_defaults(self, tmp_path):
        assert UIStateStore(tmp_path / "ui.json").load() == {
            "activeIndex": None, "paused": False, "stopped": False,
            "randomMode": False, "volume": None,
        }

    def test_save_and_load(self, tmp_path):
        store = UIStateStore(tmp_path / "ui.json")
        store.save(3, paused=False, stopped=True, random_mode=True)
        store.save_volume(0.4)
        loaded = store.load()
        assert loaded["activeIndex"] == 3
        assert loaded["stopped"] is True
        assert loaded["randomMode"] is True
        assert loaded["volume"] == 0.4
