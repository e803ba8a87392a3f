"""Test the range-streaming responder"""

from urllib.parse import quote

import aiohttp
import pytest
from aiohttp import web

from jukebox import streaming
from jukebox.errors import Forbidden, NotFound, RangeNotSatisfiable, UnsupportedMediaType
from jukebox.streaming import (
    CHUNK_SIZE,
    add_stream_route,
    content_type_for,
    parse_range,
    resolve_media_file,
)

PAYLOAD = bytes(range(256)) * 4  # 1024 bytes
SIZE = 1000


@pytest.fixture
def media_dir(tmp_path):
    root = tmp_path / "usb"
    root.mkdir()
    (root / "song.mp3").write_bytes(PAYLOAD[:SIZE])
    (root / "clip.ogg").write_bytes(b"ogg")
    (root / "notes.txt").write_bytes(b"text")
    (root / "empty.wav").write_bytes(b"")
    (tmp_path / "outside.mp3").write_bytes(b"secret")
    return root


@pytest.fixture
async def client(aiohttp_client):
    app = web.Application()
    add_stream_route(app)
    return await aiohttp_client(app)


def stream_url(base, name):
    return f"/media/stream?base={quote(str(base), safe='')}&file={quote(name, safe='')}"


class TestParseRange:
    def test_open_end(self):
        assert parse_range("bytes=500-", 1000) == (500, 999)

    def test_open_start(self):
        assert parse_range("bytes=-99", 1000) == (0, 99)

    def test_explicit(self):
        assert parse_range("bytes=10-19", 1000) == (10, 19)

    @pytest.mark.parametrize("header", [
        "bytes=2000-3000", "bytes=20-10", "bytes=0-1000", "bytes=a-b", "items=0-1", "bytes=0-1,5-6",
    ])
    def test_unsatisfiable(self, header):
        with pytest.raises(RangeNotSatisfiable) as exc:
            parse_range(header, 1000)
        assert exc.value.size == 1000


class TestResolve:
    def test_traversal_forbidden(self, media_dir):
        with pytest.raises(Forbidden):
            resolve_media_file(str(media_dir), "../outside.mp3")
        with pytest.raises(Forbidden):
            resolve_media_file(str(media_dir), "../../etc/passwd")

    def test_missing(self, media_dir):
        with pytest.raises(NotFound):
            resolve_media_file(str(media_dir), "nope.mp3")

    def test_disallowed_extension(self, media_dir):
        with pytest.raises(UnsupportedMediaType):
            resolve_media_file(str(media_dir), "notes.txt")

    def test_ok(self, media_dir):
        path, size = resolve_media_file(str(media_dir), "song.mp3")
        assert path.name == "song.mp3"
        assert size == SIZE

    def test_content_types(self):
        assert content_type_for("a.wav") == "audio/wav"
        assert content_type_for("a.OGG") == "audio/ogg"
        assert content_type_for("a.m4a") == "audio/mp4"
        assert content_type_for("a.mp3") == "audio/mpeg"


class TestStreamRoute:
    async def test_full_file(self, client, media_dir):
        resp = await client.get(stream_url(media_dir, "song.mp3"))
        assert resp.status == 200
        assert resp.headers["Content-Length"] == str(SIZE)
        assert resp.headers["Content-Type"] == "audio/mpeg"
        assert resp.headers["Accept-Ranges"] == "bytes"
        assert await resp.read() == PAYLOAD[:SIZE]

    async def test_partial_content(self, client, media_dir):
        resp = await client.get(stream_url(media_dir, "song.mp3"), headers={"Range": "bytes=500-"})
        assert resp.status == 206
        assert resp.headers["Content-Range"] == "bytes 500-999/1000"
        body = await resp.read()
        assert len(body) == 500
        assert body == PAYLOAD[500:SIZE]

    async def test_range_out_of_bounds(self, client, media_dir):
        resp = await client.get(stream_url(media_dir, "song.mp3"),
                                headers={"Range": "bytes=2000-3000"})
        assert resp.status == 416
        assert resp.headers["Content-Range"] == "bytes */1000"

    async def test_traversal(self, client, media_dir):
        resp = await client.get(stream_url(media_dir, "../../etc/passwd"))
        assert resp.status == 403

    async def test_missing_params(self, client, media_dir):
        resp = await client.get(f"/media/stream?base={quote(str(media_dir))}")
        assert resp.status == 400

    async def test_not_found(self, client, media_dir):
        resp = await client.get(stream_url(media_dir, "gone.mp3"))
        assert resp.status == 404

    async def test_unsupported(self, client, media_dir):
        resp = await client.get(stream_url(media_dir, "notes.txt"))
        assert resp.status == 415

    async def test_ogg_content_type(self, client, media_dir):
        resp = await client.get(stream_url(media_dir, "clip.ogg"))
        assert resp.status == 200
        assert resp.headers["Content-Type"] == "audio/ogg"

    async def test_empty_file(self, client, media_dir):
        resp = await client.get(stream_url(media_dir, "empty.wav"))
        assert resp.status == 200
        assert await resp.read() == b""


class TestReadFaults:
    """I/O errors while reading the file"""

    @pytest.fixture
    def big_file(self, media_dir):
        path = media_dir / "long.mp3"
        path.write_bytes(b"\x01" * (CHUNK_SIZE * 3))
        return path

    async def test_fault_before_headers_is_500(self, client, media_dir, big_file, monkeypatch):
        def fail(f, n):
            raise OSError("read error")

        monkeypatch.setattr(streaming, "_read_chunk", fail)
        resp = await client.get(stream_url(media_dir, "long.mp3"))
        assert resp.status == 500

    async def test_fault_mid_body_drops_connection(self, client, media_dir, big_file, monkeypatch):
        calls = []

        def fail_later(f, n):
            calls.append(n)
            if len(calls) > 1:
                raise OSError("read error")
            return f.read(n)

        monkeypatch.setattr(streaming, "_read_chunk", fail_later)
        resp = await client.get(stream_url(media_dir, "long.mp3"))
        assert resp.status == 200
        assert resp.headers["Content-Length"] == str(CHUNK_SIZE * 3)
        with pytest.raises(aiohttp.ClientError):
            await resp.read()
