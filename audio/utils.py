import os
from datetime import datetime
from pathlib import Path

from django.conf import settings

DOWNLOAD_LOG = 'download.log'
CLEANUP_LOG = 'cleanup.log'


def write_log(log_path, message):
    """Append message to log file"""
    if log_path:
        os.makedirs(os.path.dirname(log_path), exist_ok=True)
        with open(log_path, 'a') as f:
            timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
            f.write(f'[{timestamp}] {message}\n')


def get_log_path(name):
    """Path of a named log file inside MUSICBOT_LOG_DIR"""
    return Path(settings.MUSICBOT_LOG_DIR) / name


def file_logger(name, prefix=None):
    """
    Build a logger callable that appends to a named log file.

    Args:
        name: Log file name (e.g., 'download.log')
        prefix: Optional tag prepended to every line

    Returns:
        callable(str)
    """
    log_path = get_log_path(name)

    def log(message):
        try:
            write_log(log_path, f'[{prefix}] {message}' if prefix else message)
        except OSError:
            # Logging must never break the request
            pass

    return log
