"""
Track registry: builds the ordered catalog of playable tracks.

Directory sources are scanned non-recursively and sorted in natural
filename order; URL sources are curated by hand in the config and keep
the order they were given in.
"""

import functools
import logging
import math
import re
import unicodedata
from dataclasses import dataclass
from pathlib import Path

from .errors import ScanFailure

log = logging.getLogger(__name__)

DEFAULT_EXTENSIONS = frozenset({'.mp3', '.wav', '.ogg', '.m4a'})

_EXTENSION_RE = re.compile(r'\.[^/.]+$')
_NUMERIC_PREFIX_RE = re.compile(r'^\s*\d+\s*[-_.]?\s*(.*)$')
_LEADING_INT_RE = re.compile(r'^\s*([+-]?\d+)')


@dataclass
class Track:
    id: int
    file: str = ""
    url: str = ""
    title: str = ""
    artist: str = ""
    duration: float | None = None

    @property
    def is_playable(self) -> bool:
        return bool(self.file or self.url)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'file': self.file,
            'url': self.url,
            'title': self.title,
            'artist': self.artist,
            'duration': self.duration,
            'duration_text': format_duration(self.duration),
            'playable': self.is_playable,
        }


class Catalog:
    """Ordered, fixed sequence of tracks from one scan.

    The sequence itself never changes; only the display-only ``duration``
    of a track is filled in once media metadata arrives.
    """

    def __init__(self, tracks=(), source="file"):
        self._tracks = tuple(tracks)
        self.source = source

    def __len__(self):
        return len(self._tracks)

    def __getitem__(self, index) -> Track:
        return self._tracks[index]

    def __iter__(self):
        return iter(self._tracks)

    def get(self, index) -> Track | None:
        if isinstance(index, int) and 0 <= index < len(self._tracks):
            return self._tracks[index]
        return None

    def is_playable(self, index) -> bool:
        track = self.get(index)
        return track is not None and track.is_playable

    def playable_indices(self) -> list[int]:
        return [t.id for t in self._tracks if t.is_playable]

    def to_list(self) -> list[dict]:
        return [t.to_dict() for t in self._tracks]


def normalize_extensions(extensions) -> frozenset:
    """Lower-case, dot-prefixed extension set; defaults when empty."""
    allowed = set()
    for ext in extensions or ():
        if not ext:
            continue
        ext = ext.lower()
        allowed.add(ext if ext.startswith('.') else '.' + ext)
    return frozenset(allowed) if allowed else DEFAULT_EXTENSIONS


def is_audio_file(name: str, allowed) -> bool:
    match = _EXTENSION_RE.search(name.lower())
    return bool(match) and match.group(0) in allowed


def derive_title(filename: str) -> str:
    """'01 - Song Name.mp3' → 'Song Name', 'Track_Four.wav' → 'Track Four'."""
    base = _EXTENSION_RE.sub('', filename)
    clean = re.sub(r'_+', ' ', base).strip()
    match = _NUMERIC_PREFIX_RE.match(clean)
    if match and match.group(1):
        return match.group(1).strip()
    return clean


def _leading_int(name: str):
    match = _LEADING_INT_RE.match(name)
    return int(match.group(1)) if match else None


def _collation_key(name: str) -> str:
    # case- and accent-insensitive
    decomposed = unicodedata.normalize('NFKD', name.casefold())
    return ''.join(c for c in decomposed if not unicodedata.combining(c))


def natural_compare(a: str, b: str) -> int:
    na, nb = _leading_int(a), _leading_int(b)
    if na is not None and nb is not None:
        return (na > nb) - (na < nb)
    ka, kb = _collation_key(a), _collation_key(b)
    return (ka > kb) - (ka < kb)


def sort_filenames(names) -> list[str]:
    return sorted(names, key=functools.cmp_to_key(natural_compare))


def list_audio_files(root, extensions=None) -> list[str]:
    """Sorted audio filenames directly under *root*.  Raises ScanFailure."""
    allowed = normalize_extensions(extensions)
    path = Path(root)
    if not path.is_dir():
        raise ScanFailure(f"Not a directory: {root}")
    try:
        names = [e.name for e in path.iterdir()
                 if e.is_file() and is_audio_file(e.name, allowed)]
    except OSError as e:
        raise ScanFailure(f"Cannot list {root}: {e}") from e
    return sort_filenames(names)


def scan(root, extensions=None, source="file") -> Catalog:
    """Build a catalog from a directory.  Missing roots give an empty catalog."""
    if not root:
        return Catalog(source=source)
    try:
        names = list_audio_files(root, extensions)
    except ScanFailure as e:
        log.warning("Scan failed: %s", e)
        return Catalog(source=source)
    tracks = [Track(id=i, file=name, title=derive_title(name))
              for i, name in enumerate(names)]
    log.info("Scanned %s: %d tracks", root, len(tracks))
    return Catalog(tracks, source=source)


def catalog_from_urls(entries) -> Catalog:
    """Curated URL catalog, kept in the order given."""
    tracks = []
    for i, entry in enumerate(entries or ()):
        if isinstance(entry, str):
            entry = {'url': entry}
        url = entry.get('url') or ""
        title = entry.get('title') or (derive_title(url.rsplit('/', 1)[-1]) if url else "")
        tracks.append(Track(id=i, url=url, title=title, artist=entry.get('artist') or ""))
    return Catalog(tracks, source="url")


def format_duration(seconds) -> str:
    """Seconds → 'm:ss'; empty for missing or zero."""
    if not seconds or not isinstance(seconds, (int, float)) or math.isnan(seconds):
        return ""
    minutes = int(seconds // 60)
    secs = int(seconds % 60)
    return f"{minutes}:{secs:02d}"


# ── Pagination ──

def total_pages(count: int, page_size: int) -> int:
    page_size = max(1, int(page_size))
    return max(1, math.ceil(count / page_size))


def clamp_page(page, count: int, page_size: int) -> int:
    try:
        page = int(page)
    except (TypeError, ValueError):
        page = 1
    return min(max(1, page), total_pages(count, page_size))


def page_for_index(index: int, page_size: int) -> int:
    return index // max(1, int(page_size)) + 1


def page_slice(catalog: Catalog, page: int, page_size: int) -> list[Track]:
    page_size = max(1, int(page_size))
    page = clamp_page(page, len(catalog), page_size)
    start = (page - 1) * page_size
    return [catalog[i] for i in range(start, min(start + page_size, len(catalog)))]
