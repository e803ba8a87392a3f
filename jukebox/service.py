# Jukebox
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Jukebox service (jukebox)

Scans a local or USB directory (or a curated URL list) into a catalog,
plays it through mpv, streams USB files over HTTP with byte ranges, and
pushes catalog/state events to the presentation shell over WebSocket.

Port: 8780
"""

import asyncio
import logging
import os

from aiohttp import web

from .errors import SyncFailure
from .lib.config import cfg
from .lib.debug_log import DebugLog
from .lib.service_base import ServiceBase, UnknownCommand
from .lib.timers import Throttle
from .library import catalog_from_urls, page_slice, scan
from .mpv import MpvBackend
from .playback import PlaybackMachine, build_media_source
from .settings import SettingsStore, UIStateStore, clamp_volume
from .streaming import add_stream_route
from .sync import sync

log = logging.getLogger(__name__)


def _resolve(path, base_dir):
    if not path:
        return ""
    return path if os.path.isabs(path) else os.path.join(base_dir, path)


class JukeboxService(ServiceBase):
    """Jukebox source — catalog, playback state, streaming."""

    name = "Jukebox"

    def __init__(self, backend=None, base_dir=None):
        super().__init__()
        base_dir = base_dir or os.getcwd()
        self.source_type = cfg("source", "type", default="file")
        self.usb_path = os.getenv('JUKEBOX_USB_PATH') or cfg("source", "usb_path", default="")
        self.sync_to_local = bool(cfg("source", "sync_to_local", default=False))
        self.url_tracks = cfg("source", "tracks", default=[]) or []
        self.content_root = _resolve(cfg("library", "content_root", default="sound_files"), base_dir)
        self.extensions = cfg("library", "extensions", default=[]) or []
        self.autostart_random = bool(cfg("playback", "autostart_random", default=False))
        self.continue_on_hide = bool(cfg("playback", "continue_on_hide", default=True))
        self.host = cfg("server", "host", default="0.0.0.0")
        self.port = int(cfg("server", "port", default=8780))
        self.public_url = cfg("server", "public_url", default=f"http://localhost:{self.port}")
        self.page_size = int(cfg("ui", "page_size", default=40))

        self.settings = SettingsStore(_resolve(
            cfg("storage", "settings_file", default="settings.json"), base_dir))
        self.ui_state = UIStateStore(_resolve(
            cfg("storage", "ui_state_file", default="ui_state.json"), base_dir))
        self.debug_log = DebugLog(_resolve(
            cfg("storage", "debug_file", default=".logs/debugLog.txt"), base_dir))

        saved = self.ui_state.load()
        default_volume = clamp_volume(cfg("playback", "default_volume", default=80) / 100)
        throttle_ms = max(0, cfg("ui", "notify_throttle_ms", default=100))
        debounce_ms = max(0, cfg("ui", "volume_debounce_ms", default=100))

        self._notify = Throttle(throttle_ms / 1000, self._broadcast_state)
        self.machine = PlaybackMachine(
            backend or MpvBackend(),
            resolve_source=self._media_source,
            settings=self.settings,
            ui_state=self.ui_state,
            on_change=self._state_changed,
            auto_advance=bool(cfg("playback", "auto_advance", default=False)),
            page_size=self.page_size,
            volume=saved['volume'] if saved['volume'] is not None else default_volume,
            volume_debounce=debounce_ms / 1000,
        )
        self.machine.restore(saved)
        self.tracks_loaded = False
        self._autostarted = False

    # ── Lifecycle ──

    async def on_start(self):
        if cfg("debug", default=False) is True:
            self.debug_log.enable(["[service] debug enabled"])
        await self.report_volume()
        if self.source_type == "usb" and self.usb_path:
            await self.probe(self.usb_path)
            if self.sync_to_local:
                await self.sync(self.usb_path)
        await self.scan()

    async def on_stop(self):
        self._notify.cancel()
        await self.machine.shutdown()
        self.debug_log.disable()

    def add_routes(self, app):
        add_stream_route(app)

    def _media_source(self, track):
        return build_media_source(track, self.source_type, self.content_root,
                                  self.usb_path, self.public_url)

    # ── Operations ──

    async def scan(self, source_type=None, path=None):
        """Rescan the source, optionally switching to another one first."""
        self.source_type = source_type = source_type or self.source_type
        if path and source_type == "usb":
            self.usb_path = path
        elif path and source_type == "file":
            self.content_root = path
        if source_type == "url":
            catalog = catalog_from_urls(self.url_tracks)
        else:
            root = self.usb_path if source_type == "usb" else self.content_root
            loop = asyncio.get_running_loop()
            catalog = await loop.run_in_executor(
                None, scan, root, self.extensions, source_type)
        await self.machine.load_catalog(catalog)
        self.tracks_loaded = True
        if not len(catalog):
            log.warning("No tracks found. Check your source path or extensions.")
        await self.broadcast('catalog_ready', self._catalog_payload())

        if self.autostart_random and not self._autostarted and len(catalog):
            self._autostarted = True
            await self.machine.start_random_play()
        return catalog

    async def report_volume(self):
        value = self.settings.get_volume()
        if value is not None:
            await self.machine.adopt_volume(value)
        await self.broadcast('volume_report', {'value': value})
        return value

    async def probe(self, path):
        try:
            if not os.path.isdir(path):
                if os.path.exists(path):
                    raise NotADirectoryError("Not a directory")
                raise FileNotFoundError(f"No such directory: {path}")
            os.listdir(path)
            result = {'ok': True}
        except OSError as e:
            log.warning("USB path probe failed: %s", e)
            result = {'ok': False, 'message': str(e)}
        await self.broadcast('probe_result', result)
        return result

    async def sync(self, remote_base=None):
        try:
            res = await sync(remote_base or self.usb_path, self.content_root, self.extensions)
            result = {'ok': True, **res.to_dict()}
        except SyncFailure as e:
            log.error("Sync error: %s", e)
            result = {'ok': False, 'error': str(e)}
        await self.broadcast('sync_result', result)
        return result

    # ── State events ──

    def _state_changed(self, snapshot):
        self._notify()

    async def _broadcast_state(self):
        await self.broadcast('state_changed', self.machine.snapshot())

    def _catalog_payload(self):
        return {
            'source': self.machine.catalog.source,
            'tracks': self.machine.catalog.to_list(),
        }

    # ── Service hooks ──

    async def on_ws_connect(self, ws: web.WebSocketResponse):
        if self.tracks_loaded:
            await self.send_event(ws, 'catalog_ready', self._catalog_payload())
        await self.send_event(ws, 'state_changed', self.machine.snapshot())

    async def handle_status(self) -> dict:
        state = self.machine.snapshot()
        visible = page_slice(self.machine.catalog, state['page'], self.page_size)
        return {
            'source': self.source_type,
            'tracks_loaded': self.tracks_loaded,
            'total_tracks': len(self.machine.catalog),
            'page_tracks': [t.to_dict() for t in visible],
            'playback': state,
        }

    async def handle_resync(self) -> dict:
        if self.tracks_loaded:
            await self.broadcast('catalog_ready', self._catalog_payload())
        await self._broadcast_state()
        return {'status': 'ok', 'resynced': True}

    async def handle_command(self, cmd, data) -> dict:
        m = self.machine
        result = {}
        if cmd == 'scan':
            catalog = await self.scan(data.get('source'), data.get('path'))
            result['total_tracks'] = len(catalog)
        elif cmd == 'play_track':
            try:
                index = int(data.get('index'))
            except (TypeError, ValueError):
                index = None
            result['ok'] = await m.play_track(index)
        elif cmd == 'random':
            result['ok'] = await m.start_random_play()
        elif cmd == 'next':
            result['ok'] = await m.play_next()
        elif cmd == 'prev':
            result['ok'] = await m.play_prev()
        elif cmd == 'toggle_pause':
            await m.toggle_pause()
        elif cmd == 'stop':
            await m.stop()
        elif cmd == 'play':
            await m.play_button_action()
        elif cmd == 'set_volume':
            result['volume'] = await m.set_volume(
                data.get('value'), persist=data.get('persist', True) is not False)
        elif cmd == 'volume_input':
            m.volume_input(data.get('value'))
        elif cmd == 'get_volume':
            result['value'] = await self.report_volume()
        elif cmd == 'probe':
            result.update(await self.probe(data.get('path') or self.usb_path))
        elif cmd == 'sync':
            result.update(await self.sync(data.get('path')))
        elif cmd == 'set_page':
            result['page'] = await m.set_page(data.get('page'))
        elif cmd == 'hide':
            await m.hide(self.continue_on_hide)
        elif cmd == 'suspend':
            await m.hide(False)
        elif cmd == 'set_debug':
            if data.get('enabled'):
                self.debug_log.enable(data.get('lines') or ())
            else:
                self.debug_log.disable()
        elif cmd == 'debug_log':
            self.debug_log.write(data.get('line', ''))
        else:
            raise UnknownCommand(cmd)
        result['playback'] = m.snapshot()
        return result


def main():
    logging.basicConfig(level=logging.INFO, format='[%(levelname)s] %(message)s')
    service = JukeboxService()
    asyncio.run(service.run())


if __name__ == '__main__':
    main()
