"""One-shot copy of USB audio files into the local content root."""

import asyncio
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path

from .errors import SyncFailure
from .library import is_audio_file, normalize_extensions

log = logging.getLogger(__name__)


@dataclass
class SyncResult:
    copied: int
    skipped: int
    dest: str

    def to_dict(self) -> dict:
        return {'copied': self.copied, 'skipped': self.skipped, 'dest': self.dest}


def needs_copy(src: Path, dst: Path) -> bool:
    """Copy when the destination is absent, differs in size, or is older."""
    try:
        s = src.stat()
    except OSError:
        return True
    try:
        d = dst.stat()
    except OSError:
        return True
    return s.st_size != d.st_size or s.st_mtime > d.st_mtime


def sync_directory(remote_base, local_dest, extensions=None) -> SyncResult:
    """Mirror audio files directly under *remote_base* into *local_dest*.

    Raises SyncFailure only when *remote_base* is unusable.  Individual
    copy failures count as skipped.
    """
    if not remote_base:
        raise SyncFailure("No USB base path provided")
    src_root = Path(remote_base)
    try:
        if not src_root.is_dir():
            if src_root.exists():
                raise SyncFailure("USB path is not a directory")
            raise SyncFailure("USB path not found")
        entries = list(src_root.iterdir())
    except OSError as e:
        raise SyncFailure(f"USB path not readable: {e}") from e

    dest = Path(local_dest)
    try:
        dest.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        log.warning("Cannot create %s: %s", dest, e)

    allowed = normalize_extensions(extensions)
    copied = skipped = 0
    for src in entries:
        if not src.is_file() or not is_audio_file(src.name, allowed):
            continue
        dst = dest / src.name
        if not needs_copy(src, dst):
            skipped += 1
            continue
        try:
            shutil.copy2(src, dst)
            copied += 1
        except OSError as e:
            log.warning("Copy failed for %s: %s", src.name, e)
            skipped += 1

    log.info("Sync %s -> %s: %d copied, %d skipped", src_root, dest, copied, skipped)
    return SyncResult(copied=copied, skipped=skipped, dest=os.fspath(dest))


async def sync(remote_base, local_dest, extensions=None) -> SyncResult:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(
        None, sync_directory, remote_base, local_dest, extensions)
