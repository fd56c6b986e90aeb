from functools import lru_cache

from django.http import HttpResponse, JsonResponse
from django.views.decorators.http import require_http_methods

from audio.service.cache import CacheKey, CacheStore
from audio.service.config import get_cache_config
from audio.service.constants import (
    AUDIO_FORMATS,
    CACHE_CONTROL_IMMUTABLE,
    DEFAULT_AUDIO_FORMAT,
    MEDIA_ID_PATTERN,
)
from audio.service.download import DownloadPipeline
from audio.service.errors import INSTALL_HINT, AudioCacheError, DownloadTimeout
from audio.tasks import cleanup_cache
from audio.utils import DOWNLOAD_LOG, file_logger


@lru_cache(maxsize=8)
def get_pipeline(config):
    """
    One DownloadPipeline per configuration, so concurrent requests in this
    process for the same key share a single download job.
    """
    return DownloadPipeline(config, logger=file_logger(DOWNLOAD_LOG))


def _audio_response(hit):
    response = HttpResponse(hit.data, content_type=hit.key.content_type)
    response['Content-Disposition'] = f'inline; filename="{hit.key.filename}"'
    response['Content-Length'] = str(len(hit.data))
    response['Cache-Control'] = CACHE_CONTROL_IMMUTABLE
    return response


def _error_response(error, status=500):
    body = {'error': 'Failed to download audio', 'message': str(error)}
    body['hint'] = getattr(error, 'hint', INSTALL_HINT)
    return JsonResponse(body, status=status)


def _trigger_cleanup(log):
    """Enqueue a cleanup pass without letting its failure reach the caller"""
    try:
        cleanup_cache()
    except Exception as e:
        log(f'Failed to enqueue cache cleanup: {e}')


@require_http_methods(['GET'])
def audio_download_view(request):
    """
    Serve a video's audio as FLAC or MP3, downloading it on a cache miss.

    Params:
        videoId (required): 11-character YouTube video id
        format (optional): flac|mp3 (default: flac)

    Returns:
        Audio bytes, or a JSON error
    """
    media_id = request.GET.get('videoId')
    audio_format = request.GET.get('format') or DEFAULT_AUDIO_FORMAT

    if not media_id:
        return JsonResponse({'error': 'videoId parameter is required'}, status=400)

    if not MEDIA_ID_PATTERN.match(media_id):
        return JsonResponse(
            {'error': 'videoId must be an 11-character YouTube video id'}, status=400
        )

    if audio_format not in AUDIO_FORMATS:
        return JsonResponse({'error': 'format must be "flac" or "mp3"'}, status=400)

    key = CacheKey(media_id, audio_format)
    log = file_logger(DOWNLOAD_LOG, prefix=key.filename)

    try:
        config = get_cache_config()
        store = CacheStore(config.cache_dir, logger=log)
        hit = store.lookup(key)
        if hit:
            return _audio_response(hit)

        log('Cache miss')
        _trigger_cleanup(log)

        get_pipeline(config).fetch(key)

        hit = store.lookup(key)
        if hit is None:
            # Evicted between finalize and read; extremely unlikely
            return _error_response(AudioCacheError(f'{key} disappeared from the cache'))
        return _audio_response(hit)
    except DownloadTimeout as e:
        log(f'Audio download error: {e}')
        return _error_response(e, status=504)
    except AudioCacheError as e:
        log(f'Audio download error: {e}')
        return _error_response(e)
    except Exception as e:
        log(f'Unexpected error serving {key}: {e!r}')
        return _error_response(e)
