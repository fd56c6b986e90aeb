"""
Tests for the audio download endpoint (/api/audio/download).
"""

import os
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

from django.test import Client, TestCase, override_settings

from audio.service.errors import DownloadFailed, DownloaderUnavailable, DownloadTimeout
from audio.views import get_pipeline

FAKE_YTDLP = """
import sys
args = sys.argv[1:]
out = args[args.index('--output') + 1]
fmt = args[args.index('--audio-format') + 1]
with open(out.replace('%(ext)s', fmt), 'wb') as f:
    f.write(b'downloaded ' + fmt.encode())
"""

URL = '/api/audio/download'


class AudioDownloadViewTest(TestCase):
    """Test cache hits, misses and error mapping"""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        root = Path(self._tmp.name)
        self.cache_dir = root / 'cache'
        self.cache_dir.mkdir()
        self.settings_override = override_settings(
            MUSICBOT_CACHE_DIR=str(self.cache_dir),
            MUSICBOT_LOCK_DIR=str(root / 'locks'),
            MUSICBOT_LOG_DIR=str(root / 'logs'),
            MUSICBOT_CANDIDATE_COMMANDS=[(sys.executable, '-c', FAKE_YTDLP)],
        )
        self.settings_override.enable()
        self.client = Client()

        cleanup_patcher = patch('audio.views.cleanup_cache')
        self.mock_cleanup = cleanup_patcher.start()
        self.addCleanup(cleanup_patcher.stop)

    def tearDown(self):
        self.settings_override.disable()
        get_pipeline.cache_clear()
        self._tmp.cleanup()

    def mock_pipeline(self, fetch):
        pipeline = MagicMock()
        pipeline.fetch.side_effect = fetch
        patcher = patch('audio.views.get_pipeline', return_value=pipeline)
        patcher.start()
        self.addCleanup(patcher.stop)
        return pipeline

    def test_cache_hit_serves_bytes(self):
        """Test that a cached file is returned with audio headers"""
        (self.cache_dir / 'dQw4w9WgXcQ.flac').write_bytes(b'fLaC cached')

        response = self.client.get(URL, {'videoId': 'dQw4w9WgXcQ'})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.content, b'fLaC cached')
        self.assertEqual(response['Content-Type'], 'audio/flac')
        self.assertEqual(response['Content-Disposition'], 'inline; filename="dQw4w9WgXcQ.flac"')
        self.assertEqual(response['Content-Length'], str(len(b'fLaC cached')))
        self.assertIn('immutable', response['Cache-Control'])
        self.mock_cleanup.assert_not_called()

    def test_mp3_hit(self):
        """Test that format=mp3 serves audio/mpeg"""
        (self.cache_dir / 'dQw4w9WgXcQ.mp3').write_bytes(b'ID3 cached')

        response = self.client.get(URL, {'videoId': 'dQw4w9WgXcQ', 'format': 'mp3'})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response['Content-Type'], 'audio/mpeg')
        self.assertEqual(response['Content-Disposition'], 'inline; filename="dQw4w9WgXcQ.mp3"')

    def test_cache_miss_downloads(self):
        """Test that a miss runs the downloader and serves the result"""
        response = self.client.get(URL, {'videoId': 'dQw4w9WgXcQ'})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.content, b'downloaded flac')
        self.assertTrue((self.cache_dir / 'dQw4w9WgXcQ.flac').exists())
        self.mock_cleanup.assert_called_once()

    def test_second_request_is_a_hit(self):
        """Test that a downloaded file is reused"""
        self.client.get(URL, {'videoId': 'dQw4w9WgXcQ', 'format': 'mp3'})
        pipeline = self.mock_pipeline(AssertionError('should not download'))

        response = self.client.get(URL, {'videoId': 'dQw4w9WgXcQ', 'format': 'mp3'})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.content, b'downloaded mp3')
        pipeline.fetch.assert_not_called()

    def test_missing_video_id(self):
        """Test that videoId is required"""
        response = self.client.get(URL)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'videoId parameter is required')

    def test_malformed_video_id(self):
        """Test that ids that are not 11 safe characters are rejected"""
        for bad in ['short', 'dQw4w9WgXcQQ', '../../../xx', 'dQw4w9WgX Q']:
            with self.subTest(video_id=bad):
                response = self.client.get(URL, {'videoId': bad})
                self.assertEqual(response.status_code, 400)

    def test_unsupported_format(self):
        """Test that only flac and mp3 are accepted"""
        response = self.client.get(URL, {'videoId': 'dQw4w9WgXcQ', 'format': 'wav'})
        self.assertEqual(response.status_code, 400)
        self.assertIn('flac', response.json()['error'])

    def test_post_not_allowed(self):
        """Test that only GET is served"""
        response = self.client.post(URL, {'videoId': 'dQw4w9WgXcQ'})
        self.assertEqual(response.status_code, 405)

    def test_timeout_is_504(self):
        """Test that a timed out download maps to Gateway Timeout"""
        self.mock_pipeline(DownloadTimeout(60.0))

        response = self.client.get(URL, {'videoId': 'dQw4w9WgXcQ'})

        self.assertEqual(response.status_code, 504)
        data = response.json()
        self.assertEqual(data['error'], 'Failed to download audio')
        self.assertIn('timed out', data['message'])

    def test_download_failure_is_500_with_hint(self):
        """Test that a failed download returns the error and an install hint"""
        self.mock_pipeline(DownloadFailed('yt-dlp', 1, 'ERROR: Video unavailable'))

        response = self.client.get(URL, {'videoId': 'dQw4w9WgXcQ'})

        self.assertEqual(response.status_code, 500)
        data = response.json()
        self.assertEqual(data['error'], 'Failed to download audio')
        self.assertIn('Video unavailable', data['message'])
        self.assertIn('yt-dlp', data['hint'])

    def test_no_downloader_is_500(self):
        """Test that a missing yt-dlp binary is reported with a hint"""
        self.mock_pipeline(DownloaderUnavailable(['yt-dlp', 'youtube-dl']))

        response = self.client.get(URL, {'videoId': 'dQw4w9WgXcQ'})

        self.assertEqual(response.status_code, 500)
        self.assertIn('No downloader found', response.json()['message'])

    @unittest.skipUnless(os.name == 'posix', 'requires exec semantics')
    def test_unrunnable_downloader_is_json_500(self):
        """Test that a downloader the OS refuses to exec still gets a JSON answer"""
        garbage = Path(self._tmp.name) / 'yt-dlp'
        garbage.write_bytes(b'\x00\x01\x02 definitely not a program\n')
        garbage.chmod(0o755)

        with self.settings(MUSICBOT_CANDIDATE_COMMANDS=[(str(garbage),)]):
            response = self.client.get(URL, {'videoId': 'dQw4w9WgXcQ'})

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response['Content-Type'], 'application/json')
        data = response.json()
        self.assertIn('No downloader found', data['message'])
        self.assertIn('yt-dlp', data['hint'])
        self.assertFalse((self.cache_dir / 'dQw4w9WgXcQ.flac').exists())

    def test_unexpected_error_is_json_500(self):
        """Test that an error outside the download errors is not a bare 500 page"""
        self.mock_pipeline(RuntimeError('boom'))

        response = self.client.get(URL, {'videoId': 'dQw4w9WgXcQ'})

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response['Content-Type'], 'application/json')
        data = response.json()
        self.assertEqual(data['error'], 'Failed to download audio')
        self.assertEqual(data['message'], 'boom')
        self.assertIn('yt-dlp', data['hint'])

    def test_cleanup_enqueue_failure_is_ignored(self):
        """Test that a broken task queue does not fail the request"""
        self.mock_cleanup.side_effect = RuntimeError('queue down')

        response = self.client.get(URL, {'videoId': 'dQw4w9WgXcQ'})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.content, b'downloaded flac')

    def test_miss_writes_download_log(self):
        """Test that download activity lands in download.log"""
        self.client.get(URL, {'videoId': 'dQw4w9WgXcQ'})

        log_text = (Path(self._tmp.name) / 'logs' / 'download.log').read_text()
        self.assertIn('[dQw4w9WgXcQ.flac] Cache miss', log_text)
        self.assertIn('Saved dQw4w9WgXcQ.flac', log_text)
