"""
Exceptions raised by the audio cache and download pipeline.

Cleanup-side errors (LockContention, EvictionDeleteError) are handled
inside the service layer. Download-side errors propagate to the caller.
"""

INSTALL_HINT = 'Make sure yt-dlp and ffmpeg are installed on the server'


class AudioCacheError(Exception):
    """Base class for all audio cache errors"""

    pass


class InvalidCacheKey(AudioCacheError, ValueError):
    """Raised when a media id or format does not have the expected shape"""

    pass


class CacheIOError(AudioCacheError):
    """Raised when an existing cache entry cannot be read"""

    def __init__(self, path, cause):
        super().__init__(f'Failed to read cached file {path}: {cause}')
        self.path = path
        self.cause = cause


class LockContention(AudioCacheError):
    """Raised when the cleanup lock is held by someone else"""

    def __init__(self, name):
        super().__init__(f'Lock {name} is held by another owner')
        self.name = name


class EvictionDeleteError(AudioCacheError):
    """A single cache entry could not be deleted during eviction"""

    def __init__(self, path, cause):
        super().__init__(f'Failed to delete {path}: {cause}')
        self.path = path
        self.cause = cause


class DownloadError(AudioCacheError):
    """
    Base class for terminal download job failures.

    Carries a hint that is shown to the user alongside the message.
    """

    hint = INSTALL_HINT


class DownloadTimeout(DownloadError):
    """Raised when a download job exceeds its deadline"""

    hint = 'The download took too long; try again later'

    def __init__(self, timeout, command=None):
        super().__init__(f'Download timed out after {timeout:g}s')
        self.timeout = timeout
        self.command = command


class DownloaderUnavailable(DownloadError):
    """Raised when none of the candidate commands is installed"""

    def __init__(self, commands):
        super().__init__(
            f'No downloader found (tried: {", ".join(commands)}). '
            'Please install yt-dlp: https://github.com/yt-dlp/yt-dlp#installation'
        )
        self.commands = commands


class DownloadFailed(DownloadError):
    """Raised when the last invocable candidate exited non-zero"""

    def __init__(self, command, returncode, diagnostics):
        super().__init__(f'{command} failed (exit code {returncode}): {diagnostics}')
        self.command = command
        self.returncode = returncode
        self.diagnostics = diagnostics


class FinalizeError(DownloadError):
    """Raised when the produced file cannot be moved into the cache"""

    def __init__(self, message):
        super().__init__(message)


class DownloadInternalError(DownloadError):
    """Raised when a job breaks for a reason other than the downloader itself"""

    def __init__(self, message, cause=None):
        super().__init__(message)
        self.cause = cause
