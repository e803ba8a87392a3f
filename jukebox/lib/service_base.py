# Jukebox
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
ServiceBase — HTTP command surface plus WebSocket event feed.

Subclass contract:

    class MyService(ServiceBase):
        name = "Jukebox"
        port = 8780

        async def handle_command(self, cmd, data) -> dict:
            '''Your command logic.  Return a dict merged into the response.'''

Built-in routes:
    GET  /status    — handle_status()
    POST /command   — {"command": ..., ...} → handle_command()
    GET  /resync    — handle_resync()
    GET  /ws        — push-only event feed; on_ws_connect() seeds new clients

Optional overrides:
    on_start()              — called after HTTP server is up
    on_stop()               — called during shutdown
    add_routes(app)         — add extra aiohttp routes
"""

import asyncio
import json
import logging
import signal

from aiohttp import web

log = logging.getLogger(__name__)


class UnknownCommand(Exception):
    pass


class ServiceBase:
    # ── Subclass must set these ──
    name: str = ""
    host: str = "0.0.0.0"
    port: int = 0

    def __init__(self):
        self._ws_clients: set[web.WebSocketResponse] = set()
        self._runner: web.AppRunner | None = None

    # ── Event broadcasting ──

    async def broadcast(self, event_type, data):
        """Push an event to all connected WebSocket clients."""
        if not self._ws_clients:
            return
        message = json.dumps({"type": event_type, "data": data})
        disconnected = set()
        for ws in self._ws_clients:
            try:
                await ws.send_str(message)
            except Exception:
                disconnected.add(ws)
        self._ws_clients -= disconnected
        log.debug("Broadcast %s to %d clients", event_type, len(self._ws_clients))

    async def send_event(self, ws, event_type, data):
        try:
            await ws.send_json({"type": event_type, "data": data})
        except Exception as e:
            log.error("Error sending %s: %s", event_type, e)

    # ── HTTP server ──

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/status", self._handle_status_route)
        app.router.add_post("/command", self._handle_command_route)
        app.router.add_options("/command", self._handle_cors)
        app.router.add_get("/resync", self._handle_resync_route)
        app.router.add_get("/ws", self._handle_ws)
        app.on_startup.append(self._on_app_startup)
        app.on_shutdown.append(self._on_app_shutdown)

        # Let subclass add extra routes
        self.add_routes(app)
        return app

    async def _on_app_startup(self, app):
        await self.on_start()

    async def _on_app_shutdown(self, app):
        await self.on_stop()
        for ws in list(self._ws_clients):
            await ws.close()
        self._ws_clients.clear()

    async def start(self):
        """Create the aiohttp app, register routes, start listening."""
        self._runner = web.AppRunner(self.make_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        log.info("%s: HTTP + WebSocket on port %d", self.name, self.port)

    async def stop(self):
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    async def run(self):
        """Convenience entry-point: start + wait for signal + stop."""
        await self.start()
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, stop_event.set)
        try:
            await stop_event.wait()
        finally:
            await self.stop()

    # ── CORS ──

    def _cors_headers(self):
        return {
            "Access-Control-Allow-Origin": "*",
            "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
            "Access-Control-Allow-Headers": "Content-Type",
        }

    async def _handle_cors(self, request):
        return web.Response(headers=self._cors_headers())

    # ── Route handlers (delegate to subclass) ──

    async def _handle_ws(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self._ws_clients.add(ws)
        log.info("WebSocket client connected (%d total)", len(self._ws_clients))
        try:
            await self.on_ws_connect(ws)
            async for msg in ws:
                pass  # push-only
        finally:
            self._ws_clients.discard(ws)
            log.info("WebSocket client disconnected (%d remaining)",
                     len(self._ws_clients))
        return ws

    async def _handle_status_route(self, request):
        result = await self.handle_status()
        return web.json_response(result, headers=self._cors_headers())

    async def _handle_resync_route(self, request):
        result = await self.handle_resync()
        return web.json_response(result, headers=self._cors_headers())

    async def _handle_command_route(self, request):
        try:
            data = await request.json()
        except (ValueError, UnicodeDecodeError):
            return web.json_response(
                {"status": "error", "message": "Invalid JSON"},
                status=400, headers=self._cors_headers())
        if not isinstance(data, dict):
            data = {}
        cmd = data.get("command", "")
        try:
            result = await self.handle_command(cmd, data)
        except UnknownCommand:
            return web.json_response(
                {"status": "error", "message": f"Unknown: {cmd}"},
                status=400, headers=self._cors_headers())
        except Exception as e:
            log.exception("Command error")
            return web.json_response(
                {"status": "error", "message": str(e)},
                status=500, headers=self._cors_headers())
        resp = {"status": "ok", "command": cmd}
        if result:
            resp.update(result)
        return web.json_response(resp, headers=self._cors_headers())

    # ── Subclass hooks (override as needed) ──

    async def on_start(self):
        """Called after the app starts."""

    async def on_stop(self):
        """Called during shutdown."""

    async def on_ws_connect(self, ws: web.WebSocketResponse):
        """Called when a new WebSocket client connects. Send initial state."""

    async def handle_status(self) -> dict:
        return {"name": self.name}

    async def handle_resync(self) -> dict:
        return {"status": "ok", "resynced": False}

    def add_routes(self, app: web.Application):
        """Add extra aiohttp routes to the app."""

    async def handle_command(self, cmd: str, data: dict) -> dict:
        """Handle a command. Must be implemented by subclass."""
        raise NotImplementedError
