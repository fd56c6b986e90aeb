"""
Advisory, TTL-based locking.

The lock is a marker file created with O_EXCL. A marker younger than the
TTL means someone is working; an older one was abandoned (crashed worker)
and may be reclaimed by anybody. Two parties may both reclaim the same
stale marker at once; callers must only guard idempotent work.
"""
import json
import os
import socket
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path

from audio.service.errors import LockContention


class LockProvider(ABC):
    """Mutual exclusion over a single named resource"""

    name = 'lock'

    @abstractmethod
    def try_acquire(self, ttl) -> bool:
        """Try to take the lock. Returns True if we now own it."""

    @abstractmethod
    def release(self):
        """Give up the lock. Safe to call when not held."""

    @contextmanager
    def held(self, ttl):
        """
        Hold the lock for the duration of a with block.

        Raises:
            LockContention: if another owner holds the lock
        """
        if not self.try_acquire(ttl):
            raise LockContention(self.name)
        try:
            yield self
        finally:
            self.release()


class FileLockProvider(LockProvider):
    """LockProvider backed by a marker file on the local filesystem"""

    def __init__(self, lock_dir, name='cache-cleanup.lock', logger=None, clock=time.time):
        self.lock_dir = Path(lock_dir)
        self.name = name
        self.path = self.lock_dir / name
        self._logger = logger
        self._clock = clock

    def log(self, message):
        if self._logger:
            self._logger(message)

    def marker_age(self):
        """Seconds since the marker was written, or None if there is none"""
        try:
            mtime = self.path.stat().st_mtime
        except FileNotFoundError:
            return None
        return max(0.0, self._clock() - mtime)

    def is_stale(self, ttl):
        age = self.marker_age()
        return age is not None and age >= ttl

    def try_acquire(self, ttl) -> bool:
        age = self.marker_age()
        if age is not None:
            if age < ttl:
                self.log(f'Lock {self.name} held ({age:.1f}s old), skipping')
                return False

            self.log(f'Reclaiming stale lock {self.name} ({age:.1f}s old)')
            try:
                self.path.unlink()
            except FileNotFoundError:
                # Another party reclaimed it first
                pass
            except OSError as e:
                self.log(f'Failed to remove stale lock {self.name}: {e}')

        self.lock_dir.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            self.log(f'Lock {self.name} was taken concurrently, skipping')
            return False

        with os.fdopen(fd, 'w') as f:
            json.dump(
                {'pid': os.getpid(), 'host': socket.gethostname(), 'created_at': self._clock()},
                f,
            )
        return True

    def release(self):
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            self.log(f'Failed to release lock {self.name}: {e}')
