"""
Cleanup coordinator.

Runs one eviction pass over the cache directory while holding the
cleanup lock. Meant to be fired opportunistically (see audio.tasks) and
never to fail loudly: every outcome is logged and returned, nothing is
raised to the caller.
"""
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from audio.service.errors import LockContention
from audio.service.eviction import (
    EvictionPlan,
    EvictionReport,
    evict,
    find_stale_staging_dirs,
    plan_evictions,
    remove_staging_dirs,
    scan_entries,
)
from audio.service.lock import FileLockProvider

OUTCOME_COMPLETED = 'completed'
OUTCOME_REJECTED = 'rejected'
OUTCOME_FAILED = 'failed'


@dataclass
class CleanupResult:
    """What a single cleanup attempt did"""

    outcome: str
    plan: Optional[EvictionPlan] = None
    report: EvictionReport = field(default_factory=EvictionReport)
    error: Optional[str] = None
    dry_run: bool = False
    stale_staging_dirs: List[Path] = field(default_factory=list)

    @property
    def ran(self):
        return self.outcome == OUTCOME_COMPLETED


class CleanupCoordinator:
    """
    Applies the eviction policy to a cache directory under a lock.

    Idle -> LockAttempt -> Running -> Released, or LockAttempt -> Rejected.
    The lock only keeps passes from piling up; eviction itself is
    idempotent, so two passes racing over a reclaimed lock converge.
    """

    def __init__(self, config, lock=None, logger=None, clock=time.time):
        self.config = config
        self.lock = lock or FileLockProvider(config.lock_dir, logger=logger, clock=clock)
        self._logger = logger
        self._clock = clock

    def log(self, message):
        if self._logger:
            self._logger(message)

    def run_once(self, dry_run=False) -> CleanupResult:
        """
        Attempt one cleanup pass.

        Args:
            dry_run: If True, plan but do not delete anything

        Returns:
            CleanupResult; outcome is 'completed', 'rejected' or 'failed'
        """
        try:
            with self.lock.held(self.config.lock_ttl):
                return self._run_locked(dry_run)
        except LockContention:
            return CleanupResult(outcome=OUTCOME_REJECTED, dry_run=dry_run)
        except Exception as e:
            self.log(f'Cache cleanup failed: {e}')
            return CleanupResult(outcome=OUTCOME_FAILED, error=str(e), dry_run=dry_run)

    def _run_locked(self, dry_run):
        now = self._clock()
        cache_dir = self.config.cache_dir

        entries = scan_entries(cache_dir)
        plan = plan_evictions(
            entries,
            now=now,
            max_age=self.config.cache_max_age,
            max_size=self.config.cache_max_size_bytes,
        )
        stale_dirs = find_stale_staging_dirs(cache_dir, now, self.config.staging_max_age)

        self.log(
            f'Cache scan: {len(entries)} files, {plan.total_bytes} bytes; '
            f'{len(plan.expired)} expired, {len(plan.oversize)} over budget, '
            f'{len(stale_dirs)} abandoned staging dirs'
        )

        result = CleanupResult(
            outcome=OUTCOME_COMPLETED, plan=plan, dry_run=dry_run, stale_staging_dirs=stale_dirs
        )
        if dry_run:
            return result

        result.report = evict(plan, entries, logger=self._logger)
        remove_staging_dirs(stale_dirs, result.report, logger=self._logger)

        if result.report.deleted or result.report.staging_removed:
            self.log(
                f'Cleanup complete: removed {len(result.report.deleted)} files, '
                f'freed {result.report.freed_bytes / 1024 / 1024:.1f} MB'
            )
        return result
