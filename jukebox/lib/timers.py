"""Debounce and throttle adapters on top of the asyncio event loop.

Both take a plain or async callback.  Must be used from within a running
loop.

    volume_input = Debouncer(0.1, apply_volume)
    volume_input(0.42)          # fires once, 100 ms after the last call

    notify = Throttle(0.1, broadcast_state)
    notify()                    # at most one broadcast per 100 ms
"""

import asyncio
import inspect
import logging

log = logging.getLogger(__name__)

_UNSET = object()

# strong refs to callbacks still running; the loop only keeps weak ones
_tasks: set[asyncio.Future] = set()


def _task_done(task):
    _tasks.discard(task)
    if not task.cancelled() and task.exception() is not None:
        log.error("Timer callback failed", exc_info=task.exception())


def _invoke(fn, *args):
    try:
        result = fn(*args)
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            _tasks.add(task)
            task.add_done_callback(_task_done)
    except Exception:
        log.exception("Timer callback %r failed", fn)


class Debouncer:
    """Coalesce rapid calls into one, fired after *wait* seconds of quiet."""

    def __init__(self, wait: float, fn):
        self.wait = max(0.0, float(wait))
        self.fn = fn
        self._handle: asyncio.TimerHandle | None = None
        self._pending = _UNSET

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def __call__(self, *args):
        self.cancel()
        self._pending = args
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.wait, self._fire)

    def _fire(self):
        args = self._pending
        self._handle = None
        self._pending = _UNSET
        if args is not _UNSET:
            _invoke(self.fn, *args)

    def cancel(self):
        if self._handle:
            self._handle.cancel()
            self._handle = None
        self._pending = _UNSET


class Throttle:
    """Run *fn* at most once per *interval*.

    The first call fires immediately; calls inside the window collapse
    into one trailing call at the end of it.
    """

    def __init__(self, interval: float, fn):
        self.interval = max(0.0, float(interval))
        self.fn = fn
        self._handle: asyncio.TimerHandle | None = None
        self._dirty = False

    def __call__(self):
        if self._handle is not None:
            self._dirty = True
            return
        _invoke(self.fn)
        self._open_window()

    def _open_window(self):
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.interval, self._window_closed)

    def _window_closed(self):
        self._handle = None
        if self._dirty:
            self._dirty = False
            _invoke(self.fn)
            self._open_window()

    def cancel(self):
        if self._handle:
            self._handle.cancel()
            self._handle = None
        self._dirty = False
