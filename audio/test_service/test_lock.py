"""
Tests for service/lock.py
"""
import json
import os
import tempfile
import threading
import time
from pathlib import Path
from unittest.mock import patch

from django.test import TestCase

from audio.service.errors import LockContention
from audio.service.lock import FileLockProvider


class FileLockProviderTest(TestCase):
    """Tests for the marker-file lock"""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.lock_dir = Path(self._tmp.name) / 'locks'
        self.logs = []

    def tearDown(self):
        self._tmp.cleanup()

    def make_lock(self, **kwargs):
        return FileLockProvider(self.lock_dir, logger=self.logs.append, **kwargs)

    def age_marker(self, lock, seconds):
        old = time.time() - seconds
        os.utime(lock.path, (old, old))

    def test_acquire_creates_marker(self):
        """Test that acquiring writes a marker with owner details"""
        lock = self.make_lock()
        self.assertTrue(lock.try_acquire(ttl=300))
        self.assertTrue(lock.path.exists())

        data = json.loads(lock.path.read_text())
        self.assertEqual(data['pid'], os.getpid())
        self.assertIn('created_at', data)

    def test_release_removes_marker(self):
        """Test that release deletes the marker"""
        lock = self.make_lock()
        lock.try_acquire(ttl=300)
        lock.release()
        self.assertFalse(lock.path.exists())

    def test_release_without_marker_is_safe(self):
        """Test that releasing an unheld lock does nothing"""
        self.make_lock().release()

    def test_fresh_marker_rejects_second_owner(self):
        """Test that a marker younger than the TTL blocks other parties"""
        first = self.make_lock()
        second = self.make_lock()

        self.assertTrue(first.try_acquire(ttl=300))
        self.assertFalse(second.try_acquire(ttl=300))
        self.assertTrue(first.path.exists())

    def test_stale_marker_is_reclaimed(self):
        """Test that a marker at or beyond the TTL can be taken over"""
        first = self.make_lock()
        first.try_acquire(ttl=300)
        self.age_marker(first, 301)

        second = self.make_lock()
        self.assertTrue(second.is_stale(ttl=300))
        self.assertTrue(second.try_acquire(ttl=300))
        self.assertLess(second.marker_age(), 60)
        self.assertTrue(any('Reclaiming stale lock' in msg for msg in self.logs))

    def test_marker_exactly_at_ttl_is_stale(self):
        """Test that the TTL boundary counts as abandoned"""
        now = float(int(time.time()))
        lock = self.make_lock(clock=lambda: now)
        self.lock_dir.mkdir(parents=True)
        lock.path.write_text('{}')
        os.utime(lock.path, (now - 300, now - 300))

        self.assertTrue(lock.is_stale(ttl=300))
        self.assertTrue(lock.try_acquire(ttl=300))

    def test_stale_marker_already_removed_by_racer(self):
        """Test that a racer deleting the stale marker first is tolerated"""
        lock = self.make_lock()
        lock.try_acquire(ttl=300)
        self.age_marker(lock, 1000)

        with patch.object(Path, 'unlink', side_effect=FileNotFoundError()):
            # The marker is still on disk, so the exclusive create loses
            self.assertFalse(lock.try_acquire(ttl=300))

    def test_marker_reappearing_before_create_rejects(self):
        """Test that losing the exclusive-create race is a rejection"""
        lock = self.make_lock()
        self.lock_dir.mkdir(parents=True)

        with patch('audio.service.lock.os.open', side_effect=FileExistsError()):
            self.assertFalse(lock.try_acquire(ttl=300))

    def test_held_context_manager(self):
        """Test that held() releases the lock on exit"""
        lock = self.make_lock()
        with lock.held(ttl=300):
            self.assertTrue(lock.path.exists())
        self.assertFalse(lock.path.exists())

    def test_held_releases_on_error(self):
        """Test that held() releases even when the body raises"""
        lock = self.make_lock()
        with self.assertRaises(RuntimeError):
            with lock.held(ttl=300):
                raise RuntimeError('boom')
        self.assertFalse(lock.path.exists())

    def test_held_raises_lock_contention(self):
        """Test that held() raises LockContention when the lock is taken"""
        self.make_lock().try_acquire(ttl=300)
        with self.assertRaises(LockContention):
            with self.make_lock().held(ttl=300):
                pass

    def test_concurrent_acquire_has_single_winner(self):
        """Test that many threads racing for a free lock yield one owner"""
        results = []
        barrier = threading.Barrier(8)

        def contend():
            lock = self.make_lock()
            barrier.wait()
            results.append(lock.try_acquire(ttl=300))

        threads = [threading.Thread(target=contend) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(results.count(True), 1)
