"""
Age and size based eviction for the audio cache.

plan_evictions() is a pure function over a snapshot of entries; evict()
carries out a plan, one file at a time, without letting one failure stop
the rest.
"""
import math
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from audio.service.constants import ARTIFACT_NAME_PATTERN, STAGING_PREFIX
from audio.service.errors import EvictionDeleteError


@dataclass(frozen=True)
class CacheEntry:
    """Snapshot of one cached file"""

    path: Path
    size_bytes: int
    modified_at: float
    accessed_at: Optional[float] = None

    @property
    def access_time(self):
        """Last access time, falling back to mtime when atime is unusable"""
        if self.accessed_at is not None and math.isfinite(self.accessed_at) and self.accessed_at > 0:
            return self.accessed_at
        return self.modified_at


@dataclass
class EvictionPlan:
    """Paths chosen for deletion, split by the rule that chose them"""

    expired: List[Path] = field(default_factory=list)
    oversize: List[Path] = field(default_factory=list)
    total_bytes: int = 0
    remaining_bytes: int = 0

    @property
    def deletions(self):
        return set(self.expired) | set(self.oversize)

    def __len__(self):
        return len(self.expired) + len(self.oversize)


@dataclass
class EvictionReport:
    """Outcome of carrying out an EvictionPlan"""

    deleted: List[Path] = field(default_factory=list)
    freed_bytes: int = 0
    errors: List[EvictionDeleteError] = field(default_factory=list)
    staging_removed: List[Path] = field(default_factory=list)


def scan_entries(cache_dir) -> List[CacheEntry]:
    """
    Snapshot the cached artifacts directly inside cache_dir.

    Only regular files named <media_id>.<format> count. Staging
    directories, lock markers and other stray files are skipped, as are
    files that disappear mid-scan.
    """
    cache_dir = Path(cache_dir)
    entries = []
    try:
        children = list(os.scandir(cache_dir))
    except FileNotFoundError:
        return entries

    for child in children:
        if not ARTIFACT_NAME_PATTERN.match(child.name):
            continue
        try:
            if not child.is_file(follow_symlinks=False):
                continue
            st = child.stat(follow_symlinks=False)
        except FileNotFoundError:
            continue
        entries.append(
            CacheEntry(
                path=Path(child.path),
                size_bytes=st.st_size,
                modified_at=st.st_mtime,
                accessed_at=st.st_atime,
            )
        )
    return entries


def plan_evictions(entries, now, max_age, max_size) -> EvictionPlan:
    """
    Decide which entries to delete.

    1. Every entry not accessed within max_age seconds expires. A max_age
       of zero or less expires everything.
    2. If the survivors still exceed max_size bytes, the least recently
       accessed ones go first (ties broken by path) until the total fits.

    Args:
        entries: list of CacheEntry
        now: current time, epoch seconds
        max_age: maximum idle time in seconds
        max_size: byte budget for the whole cache

    Returns:
        EvictionPlan
    """
    plan = EvictionPlan(total_bytes=sum(e.size_bytes for e in entries))

    remaining = []
    for entry in entries:
        if max_age <= 0 or now - entry.access_time > max_age:
            plan.expired.append(entry.path)
        else:
            remaining.append(entry)

    remaining_bytes = sum(e.size_bytes for e in remaining)
    if remaining_bytes > max_size:
        for entry in sorted(remaining, key=lambda e: (e.access_time, str(e.path))):
            if remaining_bytes <= max_size:
                break
            plan.oversize.append(entry.path)
            remaining_bytes -= entry.size_bytes

    plan.remaining_bytes = remaining_bytes
    return plan


def evict(plan, entries=None, logger=None) -> EvictionReport:
    """
    Delete every path in the plan, best-effort and independently.

    Args:
        plan: EvictionPlan from plan_evictions
        entries: optional list of CacheEntry used to report freed bytes
        logger: Optional callable(str) for logging

    Returns:
        EvictionReport
    """

    def log(message):
        if logger:
            logger(message)

    sizes = {e.path: e.size_bytes for e in entries or []}
    report = EvictionReport()

    for reason, paths in (('expired', plan.expired), ('over size budget', plan.oversize)):
        for path in paths:
            try:
                os.remove(path)
            except FileNotFoundError:
                # Already gone: another cleanup pass got here first
                continue
            except OSError as e:
                error = EvictionDeleteError(path, e)
                report.errors.append(error)
                log(str(error))
                continue
            report.deleted.append(path)
            report.freed_bytes += sizes.get(path, 0)
            log(f'Evicted {Path(path).name} ({reason})')

    return report


def find_stale_staging_dirs(cache_dir, now, max_age) -> List[Path]:
    """Staging directories (tmp-*) untouched for longer than max_age seconds"""
    cache_dir = Path(cache_dir)
    if not cache_dir.exists():
        return []

    stale = []
    for tmp_dir in cache_dir.glob(f'{STAGING_PREFIX}*'):
        try:
            if not tmp_dir.is_dir():
                continue
            age = now - tmp_dir.stat().st_mtime
        except FileNotFoundError:
            continue
        if age > max_age:
            stale.append(tmp_dir)
    return stale


def remove_staging_dirs(paths, report, logger=None):
    """Remove abandoned staging directories, recording them in report"""

    def log(message):
        if logger:
            logger(message)

    for tmp_dir in paths:
        try:
            shutil.rmtree(tmp_dir)
        except FileNotFoundError:
            continue
        except OSError as e:
            error = EvictionDeleteError(tmp_dir, e)
            report.errors.append(error)
            log(str(error))
            continue
        report.staging_removed.append(tmp_dir)
        log(f'Removed abandoned staging directory {tmp_dir.name}')
