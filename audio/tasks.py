from huey.contrib.djhuey import task

from audio.service.cleanup import CleanupCoordinator
from audio.service.config import get_cache_config
from audio.utils import CLEANUP_LOG, file_logger


def run_cleanup(dry_run=False, logger=None):
    """
    Run one cache cleanup pass with the configured limits.

    Shared by the Huey task and the cleanup_cache management command.

    Returns:
        CleanupResult
    """
    coordinator = CleanupCoordinator(get_cache_config(), logger=logger)
    return coordinator.run_once(dry_run=dry_run)


@task()
def cleanup_cache():
    """
    Background cache cleanup, enqueued on every cache miss.

    Runs in the Huey worker so the request that triggered it never waits.
    Concurrent passes (other workers, other hosts sharing the directory)
    are kept apart by the cleanup lock; a rejected pass simply does nothing.
    """
    log = file_logger(CLEANUP_LOG)
    result = run_cleanup(logger=log)
    log(f'Cleanup {result.outcome}')
    return result.outcome
