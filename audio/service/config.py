"""
Configuration adapter for the audio cache.

Centralizes access to Django settings, ensuring the web app, the Huey
worker and the management commands all build components from the same
values. Components never read settings themselves; they receive a
CacheConfig through their constructor.
"""
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import List, Tuple

from django.conf import settings

DEFAULT_CANDIDATE_COMMANDS = ['yt-dlp', 'youtube-dl']


@dataclass(frozen=True)
class CacheConfig:
    """Immutable configuration shared by the cache components"""

    cache_dir: Path
    lock_dir: Path
    log_dir: Path
    cache_max_age_ms: int = 7 * 24 * 60 * 60 * 1000
    cache_max_size_bytes: int = 10 * 1024 * 1024 * 1024
    download_timeout_ms: int = 60 * 1000
    download_kill_grace_ms: int = 3 * 1000
    lock_ttl_ms: int = 5 * 60 * 1000
    log_buffer_bytes: int = 10 * 1024
    staging_max_age_ms: int = 60 * 60 * 1000
    candidate_commands: Tuple[Tuple[str, ...], ...] = field(
        default_factory=lambda: normalize_commands(DEFAULT_CANDIDATE_COMMANDS)
    )

    @property
    def cache_max_age(self):
        return self.cache_max_age_ms / 1000

    @property
    def download_timeout(self):
        return self.download_timeout_ms / 1000

    @property
    def download_kill_grace(self):
        return self.download_kill_grace_ms / 1000

    @property
    def lock_ttl(self):
        return self.lock_ttl_ms / 1000

    @property
    def staging_max_age(self):
        return self.staging_max_age_ms / 1000

    def with_overrides(self, **changes):
        """Return a copy with some fields replaced"""
        if 'candidate_commands' in changes:
            changes['candidate_commands'] = normalize_commands(changes['candidate_commands'])
        return replace(self, **changes)


def normalize_commands(commands) -> Tuple[Tuple[str, ...], ...]:
    """
    Normalize candidate commands to a tuple of argv prefixes.

    Each candidate may be a binary name ('yt-dlp') or an argv prefix
    (['python', '-m', 'yt_dlp']). A single comma-separated string is
    split into binary names, which is how the environment variable is read.

    Args:
        commands: str, or iterable of str / sequences of str

    Returns:
        tuple of tuples of str

    Example:
        >>> normalize_commands('yt-dlp, youtube-dl')
        (('yt-dlp',), ('youtube-dl',))
    """
    if isinstance(commands, str):
        commands = [c.strip() for c in commands.split(',')]

    normalized: List[Tuple[str, ...]] = []
    for command in commands:
        if isinstance(command, str):
            if command:
                normalized.append((command,))
        else:
            argv = tuple(str(part) for part in command)
            if argv:
                normalized.append(argv)

    if not normalized:
        raise ValueError('At least one candidate download command is required')
    return tuple(normalized)


def command_name(argv) -> str:
    """Human readable name of a candidate command, for log lines and errors"""
    return ' '.join(argv)


def get_cache_config() -> CacheConfig:
    """Build a CacheConfig from Django settings"""
    return CacheConfig(
        cache_dir=Path(settings.MUSICBOT_CACHE_DIR),
        lock_dir=Path(settings.MUSICBOT_LOCK_DIR),
        log_dir=Path(settings.MUSICBOT_LOG_DIR),
        cache_max_age_ms=int(settings.MUSICBOT_CACHE_MAX_AGE_MS),
        cache_max_size_bytes=int(settings.MUSICBOT_CACHE_MAX_SIZE_BYTES),
        download_timeout_ms=int(settings.MUSICBOT_DOWNLOAD_TIMEOUT_MS),
        download_kill_grace_ms=int(settings.MUSICBOT_DOWNLOAD_KILL_GRACE_MS),
        lock_ttl_ms=int(settings.MUSICBOT_LOCK_TTL_MS),
        log_buffer_bytes=int(settings.MUSICBOT_LOG_BUFFER_BYTES),
        staging_max_age_ms=int(settings.MUSICBOT_STAGING_MAX_AGE_MS),
        candidate_commands=normalize_commands(settings.MUSICBOT_CANDIDATE_COMMANDS),
    )
