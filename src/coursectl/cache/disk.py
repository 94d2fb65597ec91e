"""File-per-entry response cache with per-entry expiration.

Each entry lives in its own JSON file named after the SHA-256 of its key
(see :func:`~coursectl.cache.keys.entry_filename`)::

    {"key": "v1:...", "value": "<base64 body>", "expiration": "2026-01-01T12:00:00Z"}

Writes go through a temp file in the same directory followed by
``os.replace``, so readers in this or another process never observe a
partially written entry.  Read paths never delete anything: expired entries
stay on disk until :meth:`DiskCache.clear_expired` or :meth:`DiskCache.clear`
removes them.

The cache is advisory.  Corrupt files and I/O failures are logged and
reported as misses; they never reach the caller.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Iterator, Optional, Union

from pydantic import ValidationError

from coursectl.cache.keys import entry_filename
from coursectl.config import _atomic_write
from coursectl.exceptions import CacheCorruptError
from coursectl.models import CacheEntry, CacheStats

logger = logging.getLogger(__name__)

TTL = Union[float, int, timedelta]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DiskCache:
    """Key/value store for response bodies backed by a directory of JSON files.

    Safe for concurrent use by several threads and processes as long as
    writers touch different keys; concurrent writers on the same key
    resolve last-rename-wins.

    Args:
        directory: Directory holding the entry files.  Created on first write.
        clock: Returns the current aware datetime.  Defaults to UTC wall time.

    Example::

        cache = DiskCache(Path("~/.cache/coursectl/responses").expanduser())
        cache.set(key, b'[{"id": 1}]', ttl=900)
        body = cache.get(key)
    """

    def __init__(
        self,
        directory: Union[str, Path],
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._dir = Path(directory)
        self._clock = clock or _utcnow

    @property
    def directory(self) -> Path:
        """Directory holding the entry files."""
        return self._dir

    def _path(self, key: str) -> Path:
        return self._dir / entry_filename(key)

    def _entry_files(self) -> Iterator[Path]:
        if not self._dir.is_dir():
            return iter(())
        return (p for p in self._dir.glob("*.json") if p.is_file())

    @staticmethod
    def _read(path: Path) -> CacheEntry:
        """Parse one entry file.

        Raises:
            FileNotFoundError: If the file vanished.
            CacheCorruptError: If it exists but cannot be read or parsed.
        """
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise
        except (OSError, UnicodeDecodeError) as exc:
            raise CacheCorruptError(f"cannot read cache entry {path.name}: {exc}") from exc
        try:
            return CacheEntry.model_validate_json(text)
        except ValidationError as exc:
            raise CacheCorruptError(
                f"cannot parse cache entry {path.name}: {exc.error_count()} error(s)"
            ) from exc

    # ------------------------------------------------------------------ #
    # Entry operations
    # ------------------------------------------------------------------ #

    def get(self, key: str) -> Optional[bytes]:
        """Return the cached value for *key*, or ``None`` on any kind of miss.

        Missing, expired, and corrupt entries are all misses.  Nothing is
        deleted here.
        """
        path = self._path(key)
        try:
            entry = self._read(path)
        except FileNotFoundError:
            return None
        except CacheCorruptError as exc:
            logger.debug("Cache miss on corrupt entry: %s", exc)
            return None
        if entry.key and entry.key != key:
            logger.debug("Cache entry %s holds a different key", path.name)
            return None
        if entry.is_expired(self._clock()):
            return None
        return entry.value

    def set(self, key: str, value: bytes, ttl: TTL) -> None:
        """Write or overwrite *key* with ``expiration = now + ttl``.

        Args:
            key: Cache key from :func:`~coursectl.cache.keys.make_key`.
            value: Raw body bytes.
            ttl: Seconds (or a :class:`~datetime.timedelta`) until expiry.
                A zero or negative TTL writes an already-expired entry.
        """
        if not isinstance(ttl, timedelta):
            ttl = timedelta(seconds=ttl)
        entry = CacheEntry(key=key, value=value, expiration=self._clock() + ttl)
        try:
            _atomic_write(self._path(key), entry.model_dump_json() + "\n")
        except OSError as exc:
            logger.warning("Could not write cache entry to %s: %s", self._dir, exc)

    def has(self, key: str) -> bool:
        """Return ``True`` if an entry file exists for *key*, expired or not."""
        return self._path(key).is_file()

    def delete(self, key: str) -> None:
        """Remove the entry for *key*.  Missing entries are ignored."""
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass

    # ------------------------------------------------------------------ #
    # Maintenance
    # ------------------------------------------------------------------ #

    def stats(self) -> CacheStats:
        """Classify every entry file in one directory scan.

        Unreadable files are skipped and excluded from all counts.  A missing
        directory yields zero stats.
        """
        now = self._clock()
        total = active = expired = 0
        for path in self._entry_files():
            try:
                entry = self._read(path)
            except FileNotFoundError:
                continue
            except CacheCorruptError as exc:
                logger.debug("Skipping in stats: %s", exc)
                continue
            total += 1
            if entry.is_expired(now):
                expired += 1
            else:
                active += 1
        return CacheStats(total=total, active=active, expired=expired)

    def clear(self) -> None:
        """Remove every entry file, including corrupt ones."""
        for path in self._entry_files():
            try:
                path.unlink()
            except FileNotFoundError:
                continue

    def clear_expired(self) -> int:
        """Remove entries whose parsed expiration has passed.

        Files that cannot be parsed are left in place.

        Returns:
            The number of entries removed.
        """
        now = self._clock()
        removed = 0
        for path in self._entry_files():
            try:
                entry = self._read(path)
            except FileNotFoundError:
                continue
            except CacheCorruptError as exc:
                logger.debug("Leaving unparseable entry in place: %s", exc)
                continue
            if not entry.is_expired(now):
                continue
            try:
                path.unlink()
                removed += 1
            except FileNotFoundError:
                continue
        return removed

    def size_bytes(self) -> int:
        """Total on-disk size of all entry files."""
        size = 0
        for path in self._entry_files():
            try:
                size += os.stat(path).st_size
            except FileNotFoundError:
                continue
        return size

    def __repr__(self) -> str:
        return f"DiskCache({str(self._dir)!r})"

