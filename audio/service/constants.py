"""
Audio format constants.

Centralized definitions of supported formats and their wire details.
"""
import re

# Supported output formats, in order of preference
AUDIO_FORMATS = ['flac', 'mp3']

DEFAULT_AUDIO_FORMAT = 'flac'

CONTENT_TYPES = {
    'flac': 'audio/flac',
    'mp3': 'audio/mpeg',
}

# yt-dlp --audio-quality per format: FLAC lossless, MP3 192kbps
AUDIO_QUALITY = {
    'flac': '0',
    'mp3': '192K',
}

MEDIA_ID_PATTERN = re.compile(r'^[A-Za-z0-9_-]{11}$')

# Names of finished cache entries; anything else in the cache dir is not ours to evict
ARTIFACT_NAME_PATTERN = re.compile(r'^[A-Za-z0-9_-]{11}\.(flac|mp3)$')

SOURCE_URL_TEMPLATE = 'https://www.youtube.com/watch?v={media_id}'

# Prefix for per-job scratch directories inside the cache directory
STAGING_PREFIX = 'tmp-'

# Intermediate files yt-dlp leaves behind while working
PARTIAL_SUFFIXES = ['.part', '.ytdl', '.temp']

CACHE_CONTROL_IMMUTABLE = 'public, max-age=31536000, immutable'

# Longest diagnostic excerpt carried by a DownloadFailed error
DIAGNOSTIC_MAX_CHARS = 1000
