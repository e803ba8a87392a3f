# Jukebox
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Playback state machine.

One PlaybackMachine owns the PlaybackState.  Commands and media events are
serialized through a single lock, so no two transitions ever interleave.

Media is driven through a MediaBackend wrapped in a MediaSession.  Every
load gets a fresh session token; events carrying an older token are
dropped, so a superseded track can never advance the machine.  What
happens when the current track ends (or fails) is decided by the
machine's *intent*, which every explicit command replaces or clears.

Backend contract:

    class MyBackend(MediaBackend):
        async def load(self, source): ...      # raise PlaybackFailure on error
        async def play(self): ...
        async def pause(self): ...
        async def seek(self, seconds): ...
        async def set_volume(self, volume): ... # 0.0 – 1.0
        async def release(self): ...
        paused: bool
        loaded: bool

    Backends report ``metadata`` (duration), ``ended`` and ``error`` by
    awaiting the listener from their own tasks, never from inside one of
    the calls above.
"""

import asyncio
import enum
import logging
import random
from dataclasses import dataclass, field
from urllib.parse import quote

from .errors import PlaybackFailure
from .lib.timers import Debouncer
from .library import Catalog, clamp_page, page_for_index, total_pages
from .settings import clamp_volume

log = logging.getLogger(__name__)


class Mode(str, enum.Enum):
    IDLE = "idle"
    MANUAL = "manual"
    SEQUENTIAL = "sequential"
    RANDOM = "random"
    PAUSED = "paused"
    STOPPED = "stopped"


PLAYING_MODES = (Mode.MANUAL, Mode.SEQUENTIAL, Mode.RANDOM)


class Intent(enum.Enum):
    """What to do when the current track ends."""
    IDLE = "idle"
    SEQUENTIAL = "sequential"
    RANDOM = "random"


@dataclass
class PlaybackState:
    active_index: int | None = None
    mode: Mode = Mode.IDLE
    random_mode: bool = False
    random_order: list[int] = field(default_factory=list)
    random_cursor: int = 0
    last_active_index: int | None = None
    volume: float = 0.8
    page: int = 1

    @property
    def paused(self) -> bool:
        return self.mode == Mode.PAUSED

    @property
    def stopped(self) -> bool:
        return self.mode == Mode.STOPPED

    def snapshot(self, catalog_size: int = 0, page_size: int = 40) -> dict:
        return {
            'activeIndex': self.active_index,
            'mode': self.mode.value,
            'randomMode': self.random_mode,
            'randomOrder': list(self.random_order),
            'randomCursor': self.random_cursor,
            'lastActiveIndex': self.last_active_index,
            'volume': self.volume,
            'paused': self.paused,
            'stopped': self.stopped,
            'page': self.page,
            'totalPages': total_pages(catalog_size, page_size),
        }


# ── Pure index helpers ──

def first_playable(catalog: Catalog) -> int | None:
    for track in catalog:
        if track.is_playable:
            return track.id
    return None


def next_playable(catalog: Catalog, current: int | None) -> int | None:
    """Next playable index after *current*, wrapping at most once."""
    total = len(catalog)
    if not total:
        return None
    idx = ((current if current is not None else -1) + 1) % total
    for _ in range(total):
        if catalog.is_playable(idx):
            return idx
        idx = (idx + 1) % total
    return None


def prev_playable(catalog: Catalog, current: int | None) -> int | None:
    """Previous playable index before *current*, wrapping at most once."""
    total = len(catalog)
    if not total:
        return None
    idx = ((current if current is not None else 0) - 1) % total
    for _ in range(total):
        if catalog.is_playable(idx):
            return idx
        idx = (idx - 1) % total
    return None


def following_playable(catalog: Catalog, current: int) -> int | None:
    """Next playable index after *current* without wrapping."""
    for idx in range(current + 1, len(catalog)):
        if catalog.is_playable(idx):
            return idx
    return None


def shuffled(indices, rng=None) -> list[int]:
    """Fisher–Yates shuffle into a new list."""
    rng = rng or random
    order = list(indices)
    for i in range(len(order) - 1, 0, -1):
        j = rng.randrange(i + 1)
        order[i], order[j] = order[j], order[i]
    return order


def build_media_source(track, source_type="file", content_root="",
                       usb_path="", public_url="") -> str:
    """Resolve a track to something the media backend can open."""
    if source_type == "url" and track.url:
        return track.url
    if source_type == "usb":
        base = quote(usb_path, safe='')
        name = quote(track.file, safe='')
        return f"{public_url.rstrip('/')}/media/stream?base={base}&file={name}"
    if track.file:
        return f"{content_root.rstrip('/')}/{track.file}" if content_root else track.file
    return track.url


# ── Media ──

class MediaBackend:
    def __init__(self):
        self._listener = None

    def set_listener(self, listener):
        self._listener = listener

    async def emit(self, event, value=None):
        listener = self._listener
        if listener is not None:
            await listener(event, value)

    @property
    def paused(self) -> bool:
        raise NotImplementedError

    @property
    def loaded(self) -> bool:
        raise NotImplementedError

    async def load(self, source: str):
        raise NotImplementedError

    async def play(self):
        raise NotImplementedError

    async def pause(self):
        raise NotImplementedError

    async def seek(self, seconds: float):
        raise NotImplementedError

    async def set_volume(self, volume: float):
        raise NotImplementedError

    async def release(self):
        raise NotImplementedError


class MediaSession:
    """The one current playback session over a shared backend."""

    def __init__(self, backend: MediaBackend):
        self.backend = backend
        self.token = 0
        self.index: int | None = None

    @property
    def loaded(self) -> bool:
        return self.index is not None and self.backend.loaded

    async def replace(self, index, source, volume, listener) -> int:
        """Tear down the previous bindings, then load and start *source*."""
        self.backend.set_listener(None)
        self.token += 1
        token = self.token
        self.index = index

        async def bound(event, value=None):
            await listener(token, event, value)

        self.backend.set_listener(bound)
        await self.backend.load(source)
        await self.backend.set_volume(volume)
        await self.backend.play()
        return token

    async def release(self):
        self.backend.set_listener(None)
        self.token += 1
        self.index = None
        await self.backend.release()


class PlaybackMachine:
    def __init__(self, backend: MediaBackend, *, resolve_source=None,
                 settings=None, ui_state=None, on_change=None,
                 auto_advance=False, page_size=40, volume=0.8,
                 volume_debounce=0.1, rng=None):
        self.session = MediaSession(backend)
        self.catalog = Catalog()
        self.state = PlaybackState(volume=clamp_volume(volume))
        self.page_size = max(1, int(page_size))
        self.auto_advance = auto_advance
        self._resolve_source = resolve_source or build_media_source
        self._settings = settings
        self._ui_state = ui_state
        self._on_change = on_change
        self._rng = rng
        self._lock = asyncio.Lock()
        self._intent = Intent.IDLE
        self._resume_mode = Mode.MANUAL
        self._random_failures = 0
        self._restored: dict | None = None
        self._volume_input = Debouncer(volume_debounce, self._apply_volume_input)
        self._volume_generation = 0

    # ── Snapshot / persistence ──

    def snapshot(self) -> dict:
        return self.state.snapshot(len(self.catalog), self.page_size)

    def _changed(self):
        if self._ui_state is not None:
            self._ui_state.save(self.state.active_index, self.state.paused,
                                self.state.stopped, self.state.random_mode)
        if self._on_change is not None:
            try:
                self._on_change(self.snapshot())
            except Exception:
                log.exception("State change listener failed")

    def restore(self, saved: dict | None):
        """Remember a persisted snapshot; applied once a catalog arrives."""
        if not saved:
            return
        self._restored = dict(saved)
        if saved.get('volume') is not None:
            self.state.volume = clamp_volume(saved['volume'])

    # ── Catalog ──

    async def load_catalog(self, catalog: Catalog):
        async with self._lock:
            old_active = self.state.active_index
            self.catalog = catalog
            st = self.state
            if st.active_index is not None and not catalog.is_playable(st.active_index):
                st.active_index = None
            if st.last_active_index is not None and not catalog.is_playable(st.last_active_index):
                st.last_active_index = None
            if st.random_order and any(not catalog.is_playable(i) for i in st.random_order):
                st.random_mode = False
                st.random_order = []
                st.random_cursor = 0
            if old_active is not None and st.active_index is None and self.session.loaded:
                self._intent = Intent.IDLE
                await self._release_quietly()
                st.mode = Mode.IDLE

            if self._restored is not None:
                saved, self._restored = self._restored, None
                idx = saved.get('activeIndex')
                if st.active_index is None and catalog.is_playable(idx):
                    st.last_active_index = idx
                    st.page = page_for_index(idx, self.page_size)
                if saved.get('stopped') and st.mode == Mode.IDLE:
                    st.mode = Mode.STOPPED
            st.page = clamp_page(st.page, len(catalog), self.page_size)
            self._changed()

    # ── Commands ──

    async def play_track(self, index) -> bool:
        async with self._lock:
            return await self._play_track(index)

    async def start_random_play(self) -> bool:
        async with self._lock:
            await self._stop()
            order = shuffled(self.catalog.playable_indices(), self._rng)
            st = self.state
            st.random_cursor = 0
            self._random_failures = 0
            if not order:
                log.warning("Random play requested but no playable tracks were found")
                st.random_mode = False
                st.random_order = []
                self._changed()
                return False
            st.random_order = order
            st.random_mode = True
            return await self._play_random()

    async def advance_random(self) -> bool:
        async with self._lock:
            if not self.state.random_mode:
                return False
            return await self._advance_random(failed=False)

    async def stop(self):
        async with self._lock:
            await self._stop()

    async def toggle_pause(self):
        async with self._lock:
            st = self.state
            if not self.session.loaded:
                return
            if st.mode in PLAYING_MODES:
                try:
                    await self.session.backend.pause()
                except PlaybackFailure as e:
                    log.error("Pause failed: %s", e)
                    return
                self._resume_mode = st.mode
                st.mode = Mode.PAUSED
                self._changed()
            elif st.mode in (Mode.PAUSED, Mode.STOPPED):
                await self._resume()

    async def play_button_action(self):
        """Smart resume: paused → resume, else replay, else first playable."""
        async with self._lock:
            st = self.state
            if self.session.loaded and st.mode in (Mode.PAUSED, Mode.STOPPED):
                await self._resume()
                return
            if st.active_index is not None:
                await self._play_track(st.active_index)
            elif st.last_active_index is not None:
                await self._play_track(st.last_active_index)
            else:
                idx = first_playable(self.catalog)
                if idx is not None:
                    await self._play_track(idx)

    async def play_next(self) -> bool:
        async with self._lock:
            idx = next_playable(self.catalog, self.state.active_index)
            if idx is None:
                log.warning("Next: no playable tracks")
                return False
            return await self._play_track(idx)

    async def play_prev(self) -> bool:
        async with self._lock:
            idx = prev_playable(self.catalog, self.state.active_index)
            if idx is None:
                log.warning("Previous: no playable tracks")
                return False
            return await self._play_track(idx)

    async def set_volume(self, value, persist=True) -> float:
        async with self._lock:
            if persist:
                self._volume_input.cancel()
                self._volume_generation += 1
            return await self._set_volume(value, persist)

    def volume_input(self, value):
        """Continuous input (slider drag): applied once input goes quiet."""
        self._volume_input(value, self._volume_generation)

    async def _apply_volume_input(self, value, generation):
        async with self._lock:
            # a persisted volume landed after this drag value was taken
            if generation != self._volume_generation:
                return
            await self._set_volume(value, persist=False)

    async def adopt_volume(self, value):
        """Take a volume reported by the settings store; mirror it locally."""
        async with self._lock:
            v = await self._set_volume(value, persist=False)
            if self._ui_state is not None:
                self._ui_state.save_volume(v)

    async def set_page(self, page) -> int:
        async with self._lock:
            self.state.page = clamp_page(page, len(self.catalog), self.page_size)
            self._changed()
            return self.state.page

    async def hide(self, continue_on_hide=True):
        async with self._lock:
            if continue_on_hide and self.state.mode in PLAYING_MODES:
                return
            await self._stop()

    async def shutdown(self):
        async with self._lock:
            self._volume_input.cancel()
            self._intent = Intent.IDLE
            await self._release_quietly()

    # ── Transitions (lock held) ──

    async def _play_track(self, index) -> bool:
        if not self.catalog.is_playable(index):
            log.warning("play_track: invalid track at index %r", index)
            return False
        st = self.state
        st.random_mode = False
        intent = Intent.SEQUENTIAL if self.auto_advance else Intent.IDLE
        mode = Mode.SEQUENTIAL if self.auto_advance else Mode.MANUAL
        if await self._load(index, mode, intent):
            return True
        self._changed()
        return False

    async def _load(self, index, mode, intent) -> bool:
        """Start *index*.  On failure, converge to Idle and return False."""
        st = self.state
        track = self.catalog[index]
        st.active_index = index
        st.page = page_for_index(index, self.page_size)
        try:
            source = self._resolve_source(track)
            if not source:
                raise PlaybackFailure(f"No media source for track {index}")
            await self.session.replace(index, source, st.volume, self._on_media_event)
        except PlaybackFailure as e:
            log.error("Playback failed for track %d (%s): %s", index, track.title, e)
            st.active_index = None
            st.mode = Mode.IDLE
            self._intent = Intent.IDLE
            return False
        st.mode = mode
        self._intent = intent
        log.info("Playing [%d/%d] %s", index + 1, len(self.catalog), track.title)
        self._changed()
        return True

    async def _play_random(self) -> bool:
        """Play from the random cursor, skipping failures, one pass at most."""
        st = self.state
        while self._random_failures < len(st.random_order):
            idx = st.random_order[st.random_cursor]
            if await self._load(idx, Mode.RANDOM, Intent.RANDOM):
                return True
            self._random_failures += 1
            st.random_cursor = (st.random_cursor + 1) % len(st.random_order)
        log.error("Random play: every track in the shuffle failed, giving up")
        st.random_mode = False
        st.active_index = None
        st.mode = Mode.IDLE
        self._intent = Intent.IDLE
        self._changed()
        return False

    async def _advance_random(self, failed: bool) -> bool:
        st = self.state
        if failed:
            self._random_failures += 1
        else:
            self._random_failures = 0
        st.random_cursor = (st.random_cursor + 1) % len(st.random_order)
        return await self._play_random()

    async def _stop(self):
        st = self.state
        self._intent = Intent.IDLE
        if self.session.loaded:
            try:
                await self.session.backend.pause()
                await self.session.backend.seek(0)
            except PlaybackFailure as e:
                log.warning("Stop: %s", e)
        if st.active_index is not None:
            st.last_active_index = st.active_index
        st.active_index = None
        st.random_mode = False
        st.mode = Mode.STOPPED
        self._changed()

    async def _resume(self):
        st = self.state
        try:
            await self.session.backend.play()
        except PlaybackFailure as e:
            log.error("Resume failed: %s", e)
            st.active_index = None
            st.mode = Mode.IDLE
            self._intent = Intent.IDLE
            self._changed()
            return
        if st.mode == Mode.STOPPED:
            idx = self.session.index
            if st.last_active_index is not None and self.catalog.is_playable(st.last_active_index):
                idx = st.last_active_index
            st.active_index = idx
            st.mode = Mode.MANUAL
        else:
            st.mode = self._resume_mode
        self._changed()

    async def _set_volume(self, value, persist) -> float:
        v = clamp_volume(value)
        self.state.volume = v
        if self.session.loaded:
            try:
                await self.session.backend.set_volume(v)
            except PlaybackFailure as e:
                log.warning("Volume not applied: %s", e)
        if persist:
            if self._ui_state is not None:
                self._ui_state.save_volume(v)
            if self._settings is not None:
                self._settings.save_volume(v)
        self._changed()
        return v

    async def _release_quietly(self):
        try:
            await self.session.release()
        except PlaybackFailure as e:
            log.warning("Release failed: %s", e)

    # ── Media events ──

    async def _on_media_event(self, token, event, value=None):
        async with self._lock:
            if token != self.session.token:
                log.debug("Dropping stale %s event", event)
                return
            st = self.state
            if event == "metadata":
                track = self.catalog.get(self.session.index)
                if track is not None and value:
                    track.duration = float(value)
                self._changed()
            elif event == "ended":
                await self._on_ended()
            elif event == "error":
                log.error("Media error on track %s: %s", self.session.index, value)
                if self._intent == Intent.RANDOM and st.random_mode:
                    await self._advance_random(failed=True)
                elif st.mode != Mode.STOPPED:
                    st.active_index = None
                    st.mode = Mode.IDLE
                    self._intent = Intent.IDLE
                    self._changed()

    async def _on_ended(self):
        st = self.state
        if st.mode == Mode.STOPPED:
            return
        if self._intent == Intent.RANDOM and st.random_mode:
            await self._advance_random(failed=False)
            return
        if self._intent == Intent.SEQUENTIAL and st.active_index is not None:
            idx = following_playable(self.catalog, st.active_index)
            if idx is not None:
                if not await self._load(idx, Mode.SEQUENTIAL, Intent.SEQUENTIAL):
                    self._changed()
                return
            log.info("Reached end of catalog")
        st.active_index = None
        st.mode = Mode.IDLE
        self._intent = Intent.IDLE
        self._changed()
