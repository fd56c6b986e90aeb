"""
Management command to run a cache cleanup pass.

Removes expired and over-budget audio files plus abandoned tmp-{id}
staging directories, under the same lock the background task uses.
Suitable for cron when no Huey worker is running.
"""
from django.core.management.base import BaseCommand

from audio.service.cleanup import CleanupCoordinator
from audio.service.config import get_cache_config


class Command(BaseCommand):
    help = 'Evict expired and least recently used audio files from the cache'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be deleted without actually deleting',
        )
        parser.add_argument(
            '--max-age-ms',
            type=int,
            help='Override MUSICBOT_CACHE_MAX_AGE_MS for this run',
        )
        parser.add_argument(
            '--max-size-bytes',
            type=int,
            help='Override MUSICBOT_CACHE_MAX_SIZE_BYTES for this run',
        )
        parser.add_argument('--verbose', action='store_true', help='Enable verbose output')

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        verbose = options['verbose']

        config = get_cache_config()
        overrides = {}
        if options['max_age_ms'] is not None:
            overrides['cache_max_age_ms'] = options['max_age_ms']
        if options['max_size_bytes'] is not None:
            overrides['cache_max_size_bytes'] = options['max_size_bytes']
        if overrides:
            config = config.with_overrides(**overrides)

        def logger(message):
            if verbose:
                self.stdout.write(message)

        result = CleanupCoordinator(config, logger=logger).run_once(dry_run=dry_run)

        if result.outcome == 'rejected':
            self.stdout.write(self.style.WARNING(
                'Another cleanup is in progress (lock held), nothing done'
            ))
            return

        if result.outcome == 'failed':
            self.stdout.write(self.style.ERROR(f'Cleanup failed: {result.error}'))
            return

        plan = result.plan
        report = result.report
        if not len(plan):
            self.stdout.write(self.style.SUCCESS(
                f'Nothing to evict ({plan.total_bytes / (1024 * 1024):.1f} MB cached)'
            ))
        elif dry_run:
            for path in plan.expired:
                self.stdout.write(f'expired    | {path.name}')
            for path in plan.oversize:
                self.stdout.write(f'over size  | {path.name}')
            self.stdout.write(self.style.WARNING(
                f'\nDRY RUN: Would delete {len(plan)} file{"s" if len(plan) != 1 else ""}'
            ))
            self.stdout.write('Run without --dry-run to actually delete')
        else:
            for error in report.errors:
                self.stdout.write(self.style.ERROR(f'✗ {error}'))

            self.stdout.write(self.style.SUCCESS(
                f'✓ Deleted {len(report.deleted)} of {len(plan)} '
                f'file{"s" if len(plan) != 1 else ""}, '
                f'freed {report.freed_bytes / (1024 * 1024):.1f} MB'
            ))

        stale_dirs = result.stale_staging_dirs
        if dry_run and stale_dirs:
            for tmp_dir in stale_dirs:
                self.stdout.write(f'abandoned  | {tmp_dir.name}/')
            self.stdout.write(self.style.WARNING(
                f'DRY RUN: Would remove {len(stale_dirs)} abandoned staging '
                f'director{"ies" if len(stale_dirs) != 1 else "y"}'
            ))

        if report.staging_removed:
            self.stdout.write(self.style.SUCCESS(
                f'✓ Removed {len(report.staging_removed)} abandoned staging '
                f'director{"ies" if len(report.staging_removed) != 1 else "y"}'
            ))
