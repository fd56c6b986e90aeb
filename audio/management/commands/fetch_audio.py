"""
Django management command for fetching audio into the cache.

Downloads a YouTube video's audio as FLAC or MP3 the same way the web
endpoint does, so the next request is a cache hit. Optionally copies the
result to an output directory.
"""

import json
import shutil
from pathlib import Path

from django.core.management.base import BaseCommand, CommandError

from audio.service.cache import CacheKey, CacheStore
from audio.service.config import get_cache_config
from audio.service.constants import AUDIO_FORMATS, DEFAULT_AUDIO_FORMAT
from audio.service.download import DownloadPipeline
from audio.service.errors import DownloadError, InvalidCacheKey


class Command(BaseCommand):
    help = 'Download a video\'s audio into the cache (flac or mp3)'

    def add_arguments(self, parser):
        parser.add_argument('video_id', type=str, help='11-character YouTube video id')
        parser.add_argument(
            '--format',
            type=str,
            default=DEFAULT_AUDIO_FORMAT,
            choices=AUDIO_FORMATS,
            help=f'Audio format (default: {DEFAULT_AUDIO_FORMAT})',
        )
        parser.add_argument(
            '--outdir', type=str, help='Also copy the result to this directory'
        )
        parser.add_argument(
            '--force',
            action='store_true',
            help='Download again even if the audio is already cached',
        )
        parser.add_argument('--verbose', action='store_true', help='Enable verbose output')
        parser.add_argument('--json', action='store_true', help='Output result as JSON')

    def handle(self, *args, **options):
        verbose = options['verbose']
        output_json = options['json']

        try:
            key = CacheKey(options['video_id'], options['format'])
        except InvalidCacheKey as e:
            raise CommandError(str(e))

        def logger(message):
            if verbose and not output_json:
                self.stdout.write(message)

        config = get_cache_config()
        store = CacheStore(config.cache_dir, logger=logger)

        cached = store.contains(key) and not options['force']
        if cached:
            path = store.canonical_path(key)
            logger(f'Already cached: {path}')
        else:
            try:
                path = DownloadPipeline(config, store=store, logger=logger).fetch(key)
            except DownloadError as e:
                raise CommandError(f'{e}\nHint: {e.hint}')
            except Exception as e:
                raise CommandError(f'Failed to fetch audio: {e}')

        output_path = None
        if options['outdir']:
            outdir = Path(options['outdir'])
            output_path = outdir / key.filename
            try:
                outdir.mkdir(parents=True, exist_ok=True)
                shutil.copy2(path, output_path)
            except OSError as e:
                raise CommandError(f'Failed to copy to {outdir}: {e}')

        result = {
            'video_id': key.media_id,
            'format': key.format,
            'cached': cached,
            'cache_path': str(path),
            'output_path': str(output_path) if output_path else None,
            'file_size': path.stat().st_size,
        }

        if output_json:
            self.stdout.write(json.dumps(result, indent=2))
            return

        if cached:
            self.stdout.write(self.style.SUCCESS(f'✓ Already cached: {path}'))
        else:
            self.stdout.write(self.style.SUCCESS(
                f'✓ Downloaded: {path} ({result["file_size"]} bytes)'
            ))
        if output_path:
            self.stdout.write(f'Copied to: {output_path}')
