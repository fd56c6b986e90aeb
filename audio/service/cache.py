"""
On-disk cache of converted audio files.

Every (media_id, format) pair owns exactly one file in the cache
directory: <cache_dir>/<media_id>.<format>. Hits refresh the file's access
time so eviction can run least-recently-used.
"""
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from audio.service.constants import AUDIO_FORMATS, CONTENT_TYPES, MEDIA_ID_PATTERN, SOURCE_URL_TEMPLATE
from audio.service.errors import CacheIOError, InvalidCacheKey


@dataclass(frozen=True)
class CacheKey:
    """Identifies one cached artifact"""

    media_id: str
    format: str

    def __post_init__(self):
        if not isinstance(self.media_id, str) or not MEDIA_ID_PATTERN.match(self.media_id):
            raise InvalidCacheKey(f'Invalid media id: {self.media_id!r}')
        if self.format not in AUDIO_FORMATS:
            raise InvalidCacheKey(
                f'Invalid format: {self.format!r} (expected one of {", ".join(AUDIO_FORMATS)})'
            )

    @property
    def filename(self):
        return f'{self.media_id}.{self.format}'

    @property
    def content_type(self):
        return CONTENT_TYPES[self.format]

    @property
    def source_url(self):
        return SOURCE_URL_TEMPLATE.format(media_id=self.media_id)

    def __str__(self):
        return self.filename


@dataclass
class CacheHit:
    """A cached artifact that was found and read"""

    key: CacheKey
    path: Path
    data: bytes


class CacheStore:
    """
    Maps cache keys to files and serves hits.

    The store never writes artifact contents itself; files arrive through
    the download pipeline's finalize step (a rename onto canonical_path).
    """

    def __init__(self, cache_dir, logger=None):
        self.cache_dir = Path(cache_dir)
        self._logger = logger

    def log(self, message):
        if self._logger:
            self._logger(message)

    def ensure_dirs(self):
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def canonical_path(self, key: CacheKey) -> Path:
        """Path where the artifact for key lives. Pure function of the key."""
        return self.cache_dir / key.filename

    def contains(self, key: CacheKey) -> bool:
        return self.canonical_path(key).is_file()

    def lookup(self, key: CacheKey) -> Optional[CacheHit]:
        """
        Read the artifact for key if it is cached.

        Args:
            key: CacheKey to look up

        Returns:
            CacheHit, or None on a miss

        Raises:
            CacheIOError: if the file exists but cannot be read
        """
        path = self.canonical_path(key)
        if not path.is_file():
            return None

        try:
            data = path.read_bytes()
        except FileNotFoundError:
            # Evicted between the check and the read
            self.log(f'Cache entry vanished during read: {path.name}')
            return None
        except OSError as e:
            raise CacheIOError(path, e) from e

        self.touch(path)
        return CacheHit(key=key, path=path, data=data)

    def touch(self, path, now=None):
        """
        Refresh a file's access time, keeping its modification time.

        Best-effort: failures are logged and swallowed.
        """
        now = time.time() if now is None else now
        try:
            mtime = os.stat(path).st_mtime
            os.utime(path, (now, mtime))
        except OSError as e:
            self.log(f'Failed to refresh access time for {path}: {e}')
            return False
        return True
