"""Test configuration loading"""

import json

from jukebox.lib import config


def test_env_override(monkeypatch, tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"source": {"type": "usb", "usb_path": "/mnt/x"}, "debug": True}))
    monkeypatch.setenv("JUKEBOX_CONFIG", str(path))
    monkeypatch.setattr(config, "_config", None)

    assert config.cfg("source", "type") == "usb"
    assert config.cfg("source", "usb_path") == "/mnt/x"
    assert config.cfg("debug") is True
    assert config.cfg("ui", "page_size", default=40) == 40
    assert config.cfg("missing", default="x") == "x"


def test_invalid_json_falls_through(monkeypatch, tmp_path):
    bad = tmp_path / "bad.json"
    bad.write_text("{")
    monkeypatch.setenv("JUKEBOX_CONFIG", str(bad))
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config, "_config", None)

    loaded = config.reload_config()
    assert isinstance(loaded, dict)
    assert loaded.get("source", {}).get("type") in (None, "file")
