"""
Django settings for the music-bot project.

Every MUSICBOT_* value can be overridden with an environment variable of
the same name.
"""

import os
import sys
import tempfile
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def env_bool(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.lower() in ('1', 'true', 'yes', 'on')


def env_int(name, default):
    value = os.environ.get(name)
    return int(value) if value else default


TESTING = 'test' in sys.argv[1:2] or 'pytest' in sys.modules

SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'django-insecure-music-bot-dev-key')

DEBUG = env_bool('DJANGO_DEBUG', True)

ALLOWED_HOSTS = [h for h in os.environ.get('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',') if h]

INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'huey.contrib.djhuey',
    'audio',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.middleware.common.CommonMiddleware',
]

ROOT_URLCONF = 'musicbot.urls'

WSGI_APPLICATION = 'musicbot.wsgi.application'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': BASE_DIR / 'db.sqlite3',
    }
}

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_TZ = True

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# Huey task queue (cache cleanup runs in the worker: python manage.py run_huey)
HUEY = {
    'huey_class': 'huey.SqliteHuey',
    'name': 'musicbot',
    'filename': os.environ.get('MUSICBOT_HUEY_DB', str(BASE_DIR / 'huey.sqlite3')),
    'immediate': env_bool('MUSICBOT_HUEY_IMMEDIATE', TESTING),
    'consumer': {
        'workers': 1,
        'worker_type': 'thread',
    },
}

# Audio cache
_TMP = Path(tempfile.gettempdir())

MUSICBOT_CACHE_DIR = os.environ.get('MUSICBOT_CACHE_DIR', str(_TMP / 'music-bot-audio'))
MUSICBOT_LOCK_DIR = os.environ.get('MUSICBOT_LOCK_DIR', str(_TMP / 'music-bot-locks'))
MUSICBOT_LOG_DIR = os.environ.get('MUSICBOT_LOG_DIR', str(_TMP / 'music-bot-logs'))

MUSICBOT_CACHE_MAX_AGE_MS = env_int('MUSICBOT_CACHE_MAX_AGE_MS', 7 * 24 * 60 * 60 * 1000)
MUSICBOT_CACHE_MAX_SIZE_BYTES = env_int('MUSICBOT_CACHE_MAX_SIZE_BYTES', 10 * 1024 * 1024 * 1024)
MUSICBOT_DOWNLOAD_TIMEOUT_MS = env_int('MUSICBOT_DOWNLOAD_TIMEOUT_MS', 60 * 1000)
MUSICBOT_DOWNLOAD_KILL_GRACE_MS = env_int('MUSICBOT_DOWNLOAD_KILL_GRACE_MS', 3 * 1000)
MUSICBOT_LOCK_TTL_MS = env_int('MUSICBOT_LOCK_TTL_MS', 5 * 60 * 1000)
MUSICBOT_LOG_BUFFER_BYTES = env_int('MUSICBOT_LOG_BUFFER_BYTES', 10 * 1024)
MUSICBOT_STAGING_MAX_AGE_MS = env_int('MUSICBOT_STAGING_MAX_AGE_MS', 60 * 60 * 1000)

# Downloaders to try, in order (comma-separated in the environment)
MUSICBOT_CANDIDATE_COMMANDS = os.environ.get('MUSICBOT_CANDIDATE_COMMANDS', 'yt-dlp,youtube-dl')
