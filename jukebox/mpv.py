"""mpv-backed MediaBackend.

Each load spawns one mpv process with a JSON IPC socket.  The process is
watched: exit code 0 is a natural end, anything else is an error.
Duration is queried over IPC once the file is open.
"""

import asyncio
import json
import logging
import os
import subprocess
import tempfile

from .errors import PlaybackFailure
from .playback import MediaBackend

log = logging.getLogger(__name__)


class MpvBackend(MediaBackend):
    """Plays one source at a time through an mpv subprocess."""

    DURATION_RETRIES = 20
    DURATION_INTERVAL = 0.25

    def __init__(self, mpv_path='mpv', audio_output=None, ipc_socket=None):
        super().__init__()
        self.mpv_path = mpv_path
        self.audio_output = audio_output
        self._ipc_socket = ipc_socket or os.path.join(
            tempfile.gettempdir(), f'jukebox-mpv-{os.getpid()}.sock')
        self.process: subprocess.Popen | None = None
        self._paused = False
        self._volume = 1.0
        self._watcher_task: asyncio.Task | None = None
        self._metadata_task: asyncio.Task | None = None

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def loaded(self) -> bool:
        return self.process is not None

    async def load(self, source):
        await self._terminate()
        args = [
            self.mpv_path,
            source,
            '--no-video', '--no-terminal',
            '--pause',
            f'--volume={round(self._volume * 100)}',
            f'--input-ipc-server={self._ipc_socket}',
        ]
        if self.audio_output:
            args.append(f'--ao={self.audio_output}')
        try:
            self.process = subprocess.Popen(
                args, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except OSError as e:
            self.process = None
            raise PlaybackFailure(f"Cannot start mpv: {e}") from e
        self._paused = True
        await self._wait_for_ipc(self.process)
        self._watcher_task = asyncio.create_task(self._watch_process(self.process))
        self._metadata_task = asyncio.create_task(self._fetch_duration())

    async def play(self):
        await self._set_property('pause', False)
        self._paused = False

    async def pause(self):
        await self._set_property('pause', True)
        self._paused = True

    async def seek(self, seconds):
        await self._command('seek', float(seconds), 'absolute')

    async def set_volume(self, volume):
        self._volume = volume
        if self.process:
            await self._set_property('volume', round(volume * 100))

    async def release(self):
        await self._terminate()

    # ── Process lifecycle ──

    async def _watch_process(self, process):
        """Poll mpv; report how it exited."""
        try:
            while process.poll() is None:
                await asyncio.sleep(0.25)
            if process is not self.process:
                return
            code = process.returncode
            self.process = None
            # the listener may load the next track, which must not cancel us
            self._watcher_task = None
            if code == 0:
                log.info("Track ended naturally")
                await self.emit('ended')
            else:
                await self.emit('error', f"mpv exited with code {code}")
        except asyncio.CancelledError:
            pass

    async def _wait_for_ipc(self, process, attempts=40):
        for _ in range(attempts):
            if process.poll() is not None:
                self.process = None
                raise PlaybackFailure(f"mpv exited with code {process.returncode}")
            if os.path.exists(self._ipc_socket) and await self._request('client_name'):
                return
            await asyncio.sleep(0.05)
        await self._terminate()
        raise PlaybackFailure("mpv IPC socket never came up")

    async def _fetch_duration(self):
        try:
            for _ in range(self.DURATION_RETRIES):
                await asyncio.sleep(self.DURATION_INTERVAL)
                if not self.process:
                    return
                reply = await self._request('get_property', 'duration')
                duration = reply.get('data') if reply else None
                if isinstance(duration, (int, float)) and duration > 0:
                    await self.emit('metadata', float(duration))
                    return
        except asyncio.CancelledError:
            pass

    async def _terminate(self):
        current = asyncio.current_task()
        for attr in ('_watcher_task', '_metadata_task'):
            task = getattr(self, attr)
            if task and task is not current:
                task.cancel()
            if task:
                setattr(self, attr, None)
        process, self.process = self.process, None
        self._paused = False
        if process:
            process.terminate()
            try:
                await asyncio.get_running_loop().run_in_executor(
                    None, process.wait, 2)
            except subprocess.TimeoutExpired:
                process.kill()

    # ── IPC ──

    async def _set_property(self, name, value):
        await self._command('set_property', name, value)

    async def _command(self, *args):
        if not self.process:
            raise PlaybackFailure("Nothing loaded")
        reply = await self._request(*args)
        if reply is None:
            raise PlaybackFailure(f"mpv did not answer {args[0]}")
        if reply.get('error', 'success') != 'success':
            raise PlaybackFailure(f"mpv {args[0]}: {reply['error']}")

    async def _request(self, *args):
        """Send one command over the IPC socket; return the reply or None."""
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_unix_connection(self._ipc_socket), timeout=2)
        except (OSError, asyncio.TimeoutError) as e:
            log.debug("mpv IPC unavailable: %s", e)
            return None
        try:
            writer.write((json.dumps({'command': list(args)}) + '\n').encode())
            await writer.drain()
            while True:
                line = await asyncio.wait_for(reader.readline(), timeout=2)
                if not line:
                    return None
                msg = json.loads(line)
                # skip unsolicited event lines
                if 'event' not in msg:
                    return msg
        except (OSError, ValueError, asyncio.TimeoutError) as e:
            log.error("mpv IPC error: %s", e)
            return None
        finally:
            writer.close()
