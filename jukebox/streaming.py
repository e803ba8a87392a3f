"""
Range-streaming responder for media outside the local content root.

    GET /media/stream?base=<dir>&file=<name>

Honors single ``Range: bytes=start-end`` requests.  Stateless: each request
opens its own file handle and streams it in chunks off the event loop.
"""

import asyncio
import logging
import re
from pathlib import Path

from aiohttp import web

from .errors import (
    Forbidden,
    InternalError,
    NotFound,
    RangeNotSatisfiable,
    StreamingFailure,
    UnsupportedMediaType,
)

log = logging.getLogger(__name__)

STREAM_PATH = '/media/stream'
ALLOWED_EXTENSIONS = frozenset({'.mp3', '.wav', '.ogg', '.m4a'})
CONTENT_TYPES = {
    '.wav': 'audio/wav',
    '.ogg': 'audio/ogg',
    '.m4a': 'audio/mp4',
}
CHUNK_SIZE = 64 * 1024

_RANGE_RE = re.compile(r'bytes=(\d*)-(\d*)')


def content_type_for(path) -> str:
    return CONTENT_TYPES.get(Path(path).suffix.lower(), 'audio/mpeg')


def resolve_media_file(base: str, file_name: str) -> tuple[Path, int]:
    """Resolve and validate ``base/file_name``.  Returns (path, size).

    Containment is checked on canonical paths before anything touches the
    file, so traversal is refused whether or not the target exists.
    """
    root = Path(base).resolve()
    target = (root / file_name).resolve()
    if not target.is_relative_to(root):
        raise Forbidden()
    if not target.is_file():
        raise NotFound()
    ext = target.suffix.lower()
    if ext not in ALLOWED_EXTENSIONS:
        log.warning("Blocked streaming for disallowed extension: %s", ext)
        raise UnsupportedMediaType()
    return target, target.stat().st_size


def parse_range(header: str, size: int) -> tuple[int, int]:
    """Parse a single byte range into inclusive (start, end)."""
    match = _RANGE_RE.fullmatch(header.strip())
    if not match:
        raise RangeNotSatisfiable(size, f"Malformed range: {header}")
    start = int(match.group(1)) if match.group(1) else 0
    end = int(match.group(2)) if match.group(2) else size - 1
    if start > end or end >= size:
        raise RangeNotSatisfiable(size, f"Unsatisfiable range {header} for size {size}")
    return start, end


def _cors_headers():
    return {
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Allow-Headers": "Range",
        "Access-Control-Expose-Headers": "Content-Range, Content-Length, Accept-Ranges",
    }


def _error_response(err: StreamingFailure) -> web.Response:
    headers = _cors_headers()
    if isinstance(err, RangeNotSatisfiable):
        headers['Content-Range'] = f"bytes */{err.size}"
        return web.Response(status=err.status, headers=headers)
    return web.Response(status=err.status, text=err.reason, headers=headers)


def _read_chunk(f, n):
    return f.read(n)


async def _pump(request, resp, path, start, length):
    """Copy *length* bytes from *path* at *start* into *resp*."""
    loop = asyncio.get_running_loop()
    f = await loop.run_in_executor(None, open, path, 'rb')
    try:
        if start:
            await loop.run_in_executor(None, f.seek, start)
        remaining = length
        while remaining > 0:
            chunk = await loop.run_in_executor(
                None, _read_chunk, f, min(CHUNK_SIZE, remaining))
            if not chunk:
                raise OSError(f"Unexpected end of file: {path}")
            if not resp.prepared:
                await resp.prepare(request)
            await resp.write(chunk)
            remaining -= len(chunk)
    finally:
        await loop.run_in_executor(None, f.close)


async def handle_stream(request: web.Request) -> web.StreamResponse:
    base = request.query.get('base', '')
    file_name = request.query.get('file', '')
    if not base or not file_name:
        return web.Response(status=400, text="Missing base or file", headers=_cors_headers())

    try:
        path, size = resolve_media_file(base, file_name)
        range_header = request.headers.get('Range')
        if range_header:
            start, end = parse_range(range_header, size)
            status = 206
        else:
            start, end = 0, size - 1
            status = 200
    except RangeNotSatisfiable as e:
        log.warning("Invalid range header: %s", e)
        return _error_response(e)
    except StreamingFailure as e:
        return _error_response(e)
    except OSError as e:
        log.error("Stream setup failed for %s/%s: %s", base, file_name, e)
        return _error_response(InternalError())

    length = end - start + 1
    resp = web.StreamResponse(status=status, headers={
        **_cors_headers(),
        'Content-Type': content_type_for(path),
        'Accept-Ranges': 'bytes',
        'Content-Length': str(length),
    })
    if status == 206:
        resp.headers['Content-Range'] = f"bytes {start}-{end}/{size}"

    try:
        if length <= 0:
            await resp.prepare(request)
        else:
            await _pump(request, resp, path, start, length)
    except OSError as e:
        log.error("Stream error for %s: %s", path, e)
        if not resp.prepared:
            return _error_response(InternalError())
        # Headers are out; drop the connection rather than send a short body.
        if request.transport is not None:
            request.transport.close()
        return resp

    await resp.write_eof()
    return resp


def add_stream_route(app: web.Application, path: str = STREAM_PATH):
    app.router.add_get(path, handle_stream)
