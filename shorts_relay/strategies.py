"""Fetch strategies: yt-dlp, pytubefix and plain HTTP, each with its own retry loop."""

import argparse
import importlib.util
import os
import sys
import time
import urllib.parse
from typing import Callable, List, Optional

import requests
import yt_dlp
from yt_dlp.utils import DownloadError, ExtractorError

from .errors import FetchAttemptError, StrategyExhausted, StrategyUnavailable
from .logger import DownloadLogger
from .models import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_DELAY,
    INDETERMINATE_PERCENT,
    is_youtube_url,
)
from .progress import ProgressCallback
from .ytdlp_options import build_browser_headers, build_ydl_options

STRATEGY_YTDLP = "yt-dlp"
STRATEGY_PYTUBEFIX = "pytubefix"
STRATEGY_HTTP = "http"

# Fixed priority order of the chain
STRATEGY_NAMES = (STRATEGY_YTDLP, STRATEGY_PYTUBEFIX, STRATEGY_HTTP)

DEFAULT_HTTP_TIMEOUT = 120.0
DEFAULT_CONNECT_TIMEOUT = 15.0
MAX_REDIRECTS = 10
CHUNK_SIZE = 64 * 1024

# Leftovers yt-dlp and pytubefix may write next to the destination
PARTIAL_SUFFIXES = ("", ".part", ".ytdl", ".temp")


def _ignore_progress(percent: float, transferred: int, total: int) -> None:
    return None


def remove_partial_output(destination: str) -> None:
    """Delete whatever a failed attempt left at or next to *destination*."""
    for suffix in PARTIAL_SUFFIXES:
        candidate = destination + suffix
        try:
            os.remove(candidate)
        except FileNotFoundError:
            continue
        except OSError as exc:
            print(f"Warning: could not remove partial file {candidate}: {exc}", file=sys.stderr)


def report_bytes(on_progress: ProgressCallback, transferred: int, total: int) -> None:
    """Report progress, switching to the indeterminate form when the total is unknown."""
    if total and total > 0:
        percent = min(100.0, transferred / total * 100)
        on_progress(percent, transferred, total)
    else:
        on_progress(INDETERMINATE_PERCENT, transferred, 0)


class RetryPolicy:
    """Exponential backoff: ``base_delay * 2 ** retry_index`` between attempts."""

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay: float = DEFAULT_RETRY_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be zero or positive")
        if base_delay < 0:
            raise ValueError("base_delay must be zero or positive")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.sleep = sleep

    @property
    def attempts(self) -> int:
        # The initial attempt plus every retry
        return self.max_retries + 1

    def delay_for(self, retry_index: int) -> float:
        return self.base_delay * (2 ** retry_index)


class FetchStrategy:
    """One way of fetching remote video bytes to a local path."""

    name = "strategy"

    def __init__(self, retry_policy: Optional[RetryPolicy] = None) -> None:
        self.retry_policy = retry_policy or RetryPolicy()

    def supports(self, url: str) -> bool:
        return True

    def check_available(self) -> Optional[str]:
        """Return a reason when the strategy cannot run here, otherwise None."""
        return None

    def attempt(
        self,
        url: str,
        destination: str,
        attempt_number: int,
        on_progress: ProgressCallback,
    ) -> str:
        raise NotImplementedError

    def fetch(
        self,
        url: str,
        destination: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        """Run attempts with backoff until one succeeds; raise StrategyExhausted otherwise."""
        callback = on_progress or _ignore_progress
        total_attempts = self.retry_policy.attempts
        last_error = "unknown error"

        for attempt_number in range(total_attempts):
            if attempt_number:
                print(f"[strategy {self.name}] Attempt {attempt_number + 1}/{total_attempts} for {url}")
            try:
                return self.attempt(url, destination, attempt_number, callback)
            except Exception as exc:
                last_error = str(exc) or type(exc).__name__
                remove_partial_output(destination)
                if attempt_number + 1 >= total_attempts:
                    break
                delay = self.retry_policy.delay_for(attempt_number)
                print(
                    f"[strategy {self.name}] Attempt {attempt_number + 1}/{total_attempts} failed: "
                    f"{last_error}. Retrying in {delay:g}s...",
                    file=sys.stderr,
                )
                self.retry_policy.sleep(delay)

        print(
            f"[strategy {self.name}] Giving up after {total_attempts} attempt(s): {last_error}",
            file=sys.stderr,
        )
        raise StrategyExhausted(self.name, total_attempts, last_error)


class YtDlpStrategy(FetchStrategy):
    """Primary extractor: yt-dlp run in-process with spoofed browser headers."""

    name = STRATEGY_YTDLP

    def __init__(self, args=None, retry_policy: Optional[RetryPolicy] = None) -> None:
        super().__init__(retry_policy)
        self.args = args if args is not None else argparse.Namespace()

    def attempt(self, url, destination, attempt_number, on_progress):
        label = os.path.splitext(os.path.basename(destination))[0]
        logger = DownloadLogger(item_id=label, strategy=self.name)
        logger.set_context(url, attempt_number)

        def hook(d):
            status = d.get("status")
            if status == "downloading":
                downloaded = d.get("downloaded_bytes") or 0
                total = d.get("total_bytes") or d.get("total_bytes_estimate") or 0
                report_bytes(on_progress, int(downloaded), int(total))
            elif status == "finished":
                total = d.get("total_bytes") or d.get("downloaded_bytes") or 0
                on_progress(100.0, int(total), int(total))

        # outtmpl is a template; escape literal percent signs in the path
        ydl_opts = build_ydl_options(self.args, destination.replace("%", "%%"), logger, hook)

        try:
            with yt_dlp.YoutubeDL(ydl_opts) as ydl:
                retcode = ydl.download([url])
        except (DownloadError, ExtractorError) as exc:
            raise FetchAttemptError(logger.record_exception(exc)) from exc

        if retcode:
            raise FetchAttemptError(logger.last_error or f"yt-dlp exited with code {retcode}")
        if not os.path.exists(destination):
            raise FetchAttemptError("yt-dlp finished without writing the output file")
        return destination


class PytubefixStrategy(FetchStrategy):
    """Secondary extractor: pytubefix, YouTube URLs only."""

    name = STRATEGY_PYTUBEFIX

    def supports(self, url: str) -> bool:
        return is_youtube_url(url)

    def check_available(self) -> Optional[str]:
        if importlib.util.find_spec("pytubefix") is None:
            return "pytubefix is not installed"
        return None

    @staticmethod
    def select_stream(streams):
        """Best progressive mp4, else the best video-only mp4."""
        stream = (
            streams.filter(progressive=True, file_extension="mp4")
            .order_by("resolution")
            .desc()
            .first()
        )
        if stream is None:
            stream = (
                streams.filter(only_video=True, file_extension="mp4")
                .order_by("resolution")
                .desc()
                .first()
            )
        return stream

    def attempt(self, url, destination, attempt_number, on_progress):
        from pytubefix import YouTube

        def on_chunk(stream, chunk, bytes_remaining):
            total = getattr(stream, "filesize", 0) or 0
            report_bytes(on_progress, max(0, total - bytes_remaining), total)

        yt = YouTube(url, on_progress_callback=on_chunk)
        title = yt.title
        stream = self.select_stream(yt.streams)
        if stream is None:
            raise FetchAttemptError(f"No mp4 stream available for {url}")

        kind = "audio+video" if getattr(stream, "is_progressive", False) else "video only"
        print(
            f"[strategy {self.name}] {title!r}: using {getattr(stream, 'resolution', None) or 'unknown'} "
            f"{getattr(stream, 'mime_type', 'video/mp4')} ({kind})"
        )

        output_dir, filename = os.path.split(destination)
        written = stream.download(output_path=output_dir or None, filename=filename, skip_existing=False)
        if written and os.path.abspath(written) != os.path.abspath(destination):
            os.replace(written, destination)
        if not os.path.exists(destination):
            raise FetchAttemptError("pytubefix finished without writing the output file")
        return destination


class HttpStrategy(FetchStrategy):
    """Last resort: direct GET with manual redirect handling."""

    name = STRATEGY_HTTP

    def __init__(
        self,
        retry_policy: Optional[RetryPolicy] = None,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        max_redirects: int = MAX_REDIRECTS,
    ) -> None:
        super().__init__(retry_policy)
        self.session = session or requests.Session()
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self.max_redirects = max_redirects

    def attempt(self, url, destination, attempt_number, on_progress):
        current = url
        for _ in range(self.max_redirects + 1):
            response = self.session.get(
                current,
                headers=build_browser_headers(),
                stream=True,
                allow_redirects=False,
                timeout=(self.connect_timeout, self.timeout),
            )
            try:
                status = response.status_code
                if 300 <= status < 400:
                    location = response.headers.get("Location")
                    if not location:
                        raise FetchAttemptError(f"HTTP {status} redirect without a Location header")
                    remove_partial_output(destination)
                    current = urllib.parse.urljoin(current, location)
                    print(f"[strategy {self.name}] Following redirect ({status}) to {current}")
                    continue
                if status != 200:
                    raise FetchAttemptError(f"HTTP {status} from {current}")
                self._write_body(response, destination, on_progress)
                return destination
            finally:
                response.close()

        raise FetchAttemptError(f"Too many redirects (more than {self.max_redirects})")

    @staticmethod
    def _write_body(response, destination: str, on_progress: ProgressCallback) -> None:
        try:
            total = int(response.headers.get("Content-Length") or 0)
        except ValueError:
            total = 0
        transferred = 0
        with open(destination, "wb") as handle:
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                if not chunk:
                    continue
                handle.write(chunk)
                transferred += len(chunk)
                report_bytes(on_progress, transferred, total)
        if total and transferred < total:
            raise FetchAttemptError(
                f"Connection closed after {transferred} of {total} bytes"
            )


def parse_strategy_names(value) -> List[str]:
    if value is None:
        return list(STRATEGY_NAMES)
    if isinstance(value, str):
        raw = value.split(",")
    else:
        raw = list(value)
    names = [str(name).strip().lower() for name in raw if str(name).strip()]
    unknown = [name for name in names if name not in STRATEGY_NAMES]
    if unknown:
        raise StrategyUnavailable(
            f"Unknown fetch strategy: {', '.join(unknown)} (choose from {', '.join(STRATEGY_NAMES)})"
        )
    # Selection may drop strategies but never reorders the chain
    return [name for name in STRATEGY_NAMES if name in names]


def build_strategy_chain(args, session: Optional[requests.Session] = None) -> List[FetchStrategy]:
    """Build the ordered chain, disabling strategies that fail their capability check."""
    policy = RetryPolicy(
        max_retries=getattr(args, "max_retries", DEFAULT_MAX_RETRIES),
        base_delay=getattr(args, "retry_delay", DEFAULT_RETRY_DELAY),
    )
    factories = {
        STRATEGY_YTDLP: lambda: YtDlpStrategy(args, policy),
        STRATEGY_PYTUBEFIX: lambda: PytubefixStrategy(policy),
        STRATEGY_HTTP: lambda: HttpStrategy(
            policy,
            session=session,
            timeout=getattr(args, "http_timeout", None) or DEFAULT_HTTP_TIMEOUT,
        ),
    }

    chain: List[FetchStrategy] = []
    for name in parse_strategy_names(getattr(args, "strategies", None)):
        strategy = factories[name]()
        reason = strategy.check_available()
        if reason:
            print(f"[strategy {name}] Disabled: {reason}", file=sys.stderr)
            continue
        chain.append(strategy)

    if not chain:
        raise StrategyUnavailable("No fetch strategy is available")
    print("Fetch strategy chain: " + " -> ".join(strategy.name for strategy in chain))
    return chain
