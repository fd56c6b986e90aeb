"""
Download service for audio files.

Runs yt-dlp (or a fallback downloader) as a subprocess to fetch a video's
audio and convert it with ffmpeg, then moves the result into the cache.

A DownloadJob walks its candidate commands in order. A missing binary and
a non-zero exit both move on to the next candidate. One deadline covers
the whole job, across all candidates; when it passes, the running process
is sent SIGTERM, then SIGKILL after a grace period.
"""
import os
import shutil
import signal
import subprocess
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from nanoid import generate

from audio.service.cache import CacheKey, CacheStore
from audio.service.config import command_name
from audio.service.constants import (
    AUDIO_QUALITY,
    DIAGNOSTIC_MAX_CHARS,
    PARTIAL_SUFFIXES,
    STAGING_PREFIX,
)
from audio.service.errors import (
    DownloadError,
    DownloadFailed,
    DownloadInternalError,
    DownloaderUnavailable,
    DownloadTimeout,
    FinalizeError,
)

READ_CHUNK_SIZE = 4096

# Downloaders run in their own session so the whole group can be signalled
PROCESS_GROUPS = os.name == 'posix'

SIGKILL = getattr(signal, 'SIGKILL', signal.SIGTERM)

# How long to wait for output readers after the process is gone
READER_JOIN_TIMEOUT = 2.0


class TailBuffer:
    """
    Keeps the last `capacity` bytes written to it.

    Used to hold a subprocess's output without letting a chatty process
    grow memory without bound.
    """

    def __init__(self, capacity):
        if capacity <= 0:
            raise ValueError('capacity must be positive')
        self.capacity = capacity
        self.total_bytes = 0
        self._buf = bytearray()
        self._lock = threading.Lock()

    def write(self, chunk):
        with self._lock:
            self.total_bytes += len(chunk)
            self._buf.extend(chunk)
            overflow = len(self._buf) - self.capacity
            if overflow > 0:
                del self._buf[:overflow]

    @property
    def truncated(self):
        return self.total_bytes > self.capacity

    def getvalue(self) -> bytes:
        with self._lock:
            return bytes(self._buf)

    def text(self) -> str:
        return self.getvalue().decode('utf-8', errors='replace')


def _pump(stream, buffer):
    """Copy a pipe into a TailBuffer until EOF"""
    try:
        for chunk in iter(lambda: stream.read(READ_CHUNK_SIZE), b''):
            buffer.write(chunk)
    except (OSError, ValueError):
        # Pipe closed underneath us after a kill
        pass
    finally:
        stream.close()


def _send_signal(proc, sig, group):
    if group:
        try:
            os.killpg(proc.pid, sig)
        except ProcessLookupError:
            pass
    elif sig == signal.SIGTERM:
        proc.terminate()
    else:
        proc.kill()


def terminate_process(proc, grace, logger=None, group=False):
    """
    Stop a process: SIGTERM, then SIGKILL if it outlives the grace period.

    Args:
        proc: subprocess.Popen
        grace: Seconds to wait between SIGTERM and SIGKILL
        logger: Optional callable(str) for logging
        group: If True, signal the process group led by proc, so helpers
            it spawned (ffmpeg) go down with it

    Returns:
        str: 'exited', 'terminated' or 'killed'
    """

    def log(message):
        if logger:
            logger(message)

    if proc.poll() is not None:
        return 'exited'

    _send_signal(proc, signal.SIGTERM, group)
    try:
        proc.wait(timeout=grace)
        outcome = 'terminated'
    except subprocess.TimeoutExpired:
        log(f'Process {proc.pid} ignored SIGTERM for {grace:g}s, killing')
        _send_signal(proc, SIGKILL, group)
        proc.wait()
        outcome = 'killed'

    if group:
        # Children that outlived the leader
        _send_signal(proc, SIGKILL, group)
    return outcome


def build_ytdlp_args(source_url, output_template, audio_format) -> List[str]:
    """
    Command-line arguments for yt-dlp / youtube-dl.

    Args:
        source_url: Video URL
        output_template: yt-dlp output template, e.g. '/cache/tmp-x/abc.%(ext)s'
        audio_format: 'flac' or 'mp3'

    Returns:
        list of str (without the binary itself)
    """
    return [
        source_url,
        '--extract-audio',
        '--audio-format', audio_format,
        '--audio-quality', AUDIO_QUALITY[audio_format],
        '--output', str(output_template),
        '--no-playlist',
        '--quiet',
        '--no-warnings',
    ]


def _diagnostic_tail(text, limit=DIAGNOSTIC_MAX_CHARS):
    text = text.strip()
    if len(text) > limit:
        text = '...' + text[-limit:]
    return text


@dataclass
class AttemptResult:
    """Outcome of running one candidate command"""

    command: str
    returncode: Optional[int] = None
    stdout: str = ''
    stderr: str = ''
    missing: bool = False

    @property
    def ok(self):
        return self.returncode == 0

    @property
    def diagnostics(self):
        return _diagnostic_tail(self.stderr or self.stdout)


class DownloadJob:
    """
    One download of one artifact.

    Ends in exactly one of the FINALIZED, FAILED or TIMED_OUT states. The
    outcome is available from run() and from `future`.
    """

    STATE_PENDING = 'pending'
    STATE_RUNNING = 'running'
    STATE_FINALIZING = 'finalizing'
    STATE_FINALIZED = 'finalized'
    STATE_FAILED = 'failed'
    STATE_TIMED_OUT = 'timed_out'

    def __init__(
        self,
        source_url,
        target_path,
        audio_format,
        candidate_commands,
        output_dir=None,
        timeout=60.0,
        kill_grace=3.0,
        log_buffer_bytes=10 * 1024,
        logger=None,
        clock=time.monotonic,
    ):
        self.source_url = source_url
        self.target_path = Path(target_path)
        self.format = audio_format
        self.candidate_commands = [tuple(c) for c in candidate_commands]
        self.output_dir = Path(output_dir) if output_dir else self.target_path.parent
        self.timeout = timeout
        self.kill_grace = kill_grace
        self.log_buffer_bytes = log_buffer_bytes
        self.state = self.STATE_PENDING
        self.attempts: List[AttemptResult] = []
        self.future: Future = Future()
        self._logger = logger
        self._clock = clock
        self._deadline = None

    def log(self, message):
        if self._logger:
            self._logger(message)

    @property
    def base_name(self):
        return self.target_path.stem

    @property
    def args(self):
        template = self.output_dir / f'{self.base_name}.%(ext)s'
        return build_ytdlp_args(self.source_url, template, self.format)

    def run(self) -> Path:
        """
        Run the job to completion.

        Returns:
            Path of the finalized artifact

        Raises:
            DownloadTimeout, DownloaderUnavailable, DownloadFailed, FinalizeError,
            DownloadInternalError (anything else that went wrong)
        """
        if self.state != self.STATE_PENDING:
            raise RuntimeError(f'Job already {self.state}')

        self.state = self.STATE_RUNNING
        self._deadline = self._clock() + self.timeout
        self.log(f'Downloading {self.source_url} as {self.format} (timeout {self.timeout:g}s)')

        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            path = self._run_candidates()
        except DownloadTimeout as e:
            self.state = self.STATE_TIMED_OUT
            self.future.set_exception(e)
            raise
        except DownloadError as e:
            self.state = self.STATE_FAILED
            self.future.set_exception(e)
            raise
        except Exception as e:
            self.state = self.STATE_FAILED
            error = DownloadInternalError(f'Download job failed unexpectedly: {e}', cause=e)
            self.future.set_exception(error)
            raise error from e

        self.state = self.STATE_FINALIZED
        self.future.set_result(path)
        return path

    def _remaining(self):
        return self._deadline - self._clock()

    def _run_candidates(self):
        for argv in self.candidate_commands:
            if self._remaining() <= 0:
                raise DownloadTimeout(self.timeout)

            attempt = self._attempt(argv)
            self.attempts.append(attempt)

            if attempt.ok:
                self.state = self.STATE_FINALIZING
                return self._finalize()

            if attempt.missing:
                self.log(f'{attempt.command} could not be started ({attempt.stderr}), trying next downloader')
            else:
                self.log(f'{attempt.command} exited with code {attempt.returncode}')
                if attempt.diagnostics:
                    self.log(f'{attempt.command} output: {attempt.diagnostics}')

        failed = [a for a in self.attempts if not a.missing]
        if not failed:
            raise DownloaderUnavailable([a.command for a in self.attempts])

        last = failed[-1]
        raise DownloadFailed(last.command, last.returncode, last.diagnostics)

    def _attempt(self, argv) -> AttemptResult:
        name = command_name(argv)
        cmd = [*argv, *self.args]
        self.log(f'Running: {name}')

        try:
            proc = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=PROCESS_GROUPS,
            )
        except OSError as e:
            # ENOENT, EACCES, ENOEXEC: this candidate cannot be used
            return AttemptResult(command=name, stderr=str(e), missing=True)

        stdout_tail = TailBuffer(self.log_buffer_bytes)
        stderr_tail = TailBuffer(self.log_buffer_bytes)
        readers = [
            threading.Thread(target=_pump, args=(proc.stdout, stdout_tail), daemon=True),
            threading.Thread(target=_pump, args=(proc.stderr, stderr_tail), daemon=True),
        ]
        for reader in readers:
            reader.start()

        try:
            returncode = proc.wait(timeout=max(0.0, self._remaining()))
        except subprocess.TimeoutExpired:
            how = terminate_process(proc, self.kill_grace, logger=self._logger, group=PROCESS_GROUPS)
            self.log(f'{name} timed out after {self.timeout:g}s ({how})')
            raise DownloadTimeout(self.timeout, command=name)
        finally:
            if proc.poll() is None:
                terminate_process(proc, self.kill_grace, logger=self._logger, group=PROCESS_GROUPS)
            for reader in readers:
                reader.join(timeout=READER_JOIN_TIMEOUT)

        return AttemptResult(
            command=name,
            returncode=returncode,
            stdout=stdout_tail.text(),
            stderr=stderr_tail.text(),
        )

    def _find_output(self) -> Optional[Path]:
        """The file the tool produced, matched by base name"""
        prefix = f'{self.base_name}.'
        produced = sorted(
            p
            for p in self.output_dir.iterdir()
            if p.is_file() and p.name.startswith(prefix) and p.suffix not in PARTIAL_SUFFIXES
        )
        preferred = [p for p in produced if p.suffix == f'.{self.format}']
        if preferred:
            return preferred[0]
        return produced[0] if produced else None

    def _finalize(self) -> Path:
        produced = self._find_output()
        if produced is None:
            raise FinalizeError(
                f'Downloader reported success but no {self.base_name}.* file was produced '
                f'in {self.output_dir}'
            )

        if produced != self.target_path:
            try:
                os.replace(produced, self.target_path)
            except OSError as e:
                raise FinalizeError(f'Failed to move {produced.name} into the cache: {e}') from e

        self.log(f'Saved {self.target_path.name} ({self.target_path.stat().st_size} bytes)')
        return self.target_path


class DownloadPipeline:
    """
    Populates cache entries by running download jobs.

    Concurrent fetch() calls for the same key within this process share
    one job. Separate processes may still download the same key at once;
    whichever rename lands last wins.
    """

    def __init__(self, config, store=None, logger=None):
        self.config = config
        self.store = store or CacheStore(config.cache_dir, logger=logger)
        self._logger = logger
        self._inflight: Dict[CacheKey, Future] = {}
        self._inflight_lock = threading.Lock()

    def log(self, message):
        if self._logger:
            self._logger(message)

    def fetch(self, key: CacheKey) -> Path:
        """
        Download key into the cache, joining an in-flight job if there is one.

        Returns:
            Path of the cached artifact
        """
        with self._inflight_lock:
            future = self._inflight.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._inflight[key] = future

        if not owner:
            self.log(f'Waiting for in-flight download of {key}')
            return future.result()

        try:
            path = self.download(key)
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(path)
            return path
        finally:
            with self._inflight_lock:
                self._inflight.pop(key, None)

    def make_job(self, key: CacheKey, output_dir) -> DownloadJob:
        return DownloadJob(
            source_url=key.source_url,
            target_path=self.store.canonical_path(key),
            audio_format=key.format,
            candidate_commands=self.config.candidate_commands,
            output_dir=output_dir,
            timeout=self.config.download_timeout,
            kill_grace=self.config.download_kill_grace,
            log_buffer_bytes=self.config.log_buffer_bytes,
            logger=self._logger,
        )

    def download(self, key: CacheKey) -> Path:
        """Run one download job for key in its own staging directory"""
        alphabet = 'ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789'
        staging_dir = self.store.cache_dir / f'{STAGING_PREFIX}{generate(alphabet, size=12)}'
        try:
            self.store.ensure_dirs()
            staging_dir.mkdir()
        except OSError as e:
            raise DownloadInternalError(
                f'Could not create staging directory in {self.store.cache_dir}: {e}', cause=e
            ) from e

        job = self.make_job(key, staging_dir)
        try:
            return job.run()
        finally:
            try:
                shutil.rmtree(staging_dir)
            except OSError as e:
                self.log(f'Failed to remove staging directory {staging_dir.name}: {e}')
