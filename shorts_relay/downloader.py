"""Download orchestration: URL normalization, temp paths, fallback chain and validation."""

import os
import re
import sys
import tempfile
from typing import List, Optional, Sequence

from .errors import DownloadFailed, RelayError, StrategyExhausted, ValidationFailed
from .models import (
    SMALL_FILE_THRESHOLD,
    VIDEO_EXTENSION,
    DownloadResult,
    extract_video_id,
    normalize_video_url,
)
from .progress import PHASE_DOWNLOAD, NullProgressSink, ProgressSink, StatusEvent, make_item_callback
from .strategies import FetchStrategy, remove_partial_output

# Container signatures accepted even when the file is tiny
MEDIA_SIGNATURES = (
    (4, b"ftyp"),  # ISO base media (mp4, m4v, mov)
    (0, b"\x1a\x45\xdf\xa3"),  # EBML (webm, mkv)
    (0, b"FLV"),
)

HTML_ERROR_MARKERS = ("<html", "<!doctype html", "error")

_UNSAFE_FILENAME_CHARS = re.compile(r"[^0-9A-Za-z_.-]+")


def looks_like_media(header: bytes) -> bool:
    for offset, signature in MEDIA_SIGNATURES:
        if header[offset:offset + len(signature)] == signature:
            return True
    return False


def validate_downloaded_file(path: str) -> DownloadResult:
    """Check that *path* holds plausible media rather than nothing or an error page."""
    if not path or not os.path.exists(path):
        return DownloadResult(local_path=path, size_bytes=0, valid=False, invalid_reason="missing")

    size = os.path.getsize(path)
    if size == 0:
        return DownloadResult(local_path=path, size_bytes=0, valid=False, invalid_reason="empty")

    if size < SMALL_FILE_THRESHOLD:
        with open(path, "rb") as handle:
            content = handle.read()
        if not looks_like_media(content):
            text = content.decode("utf-8", "ignore").lower()
            if any(marker in text for marker in HTML_ERROR_MARKERS):
                return DownloadResult(
                    local_path=path,
                    size_bytes=size,
                    valid=False,
                    invalid_reason="html_error_page",
                )

    return DownloadResult(local_path=path, size_bytes=size, valid=True)


def cleanup_temp_file(path: Optional[str]) -> None:
    """Remove a temp file; missing files are fine and failures are only reported."""
    if not path:
        return
    try:
        os.remove(path)
        print(f"[download] Removed temp file {path}")
    except FileNotFoundError:
        return
    except OSError as exc:
        print(f"Warning: Failed to remove temp file {path}: {exc}", file=sys.stderr)


class DownloadOrchestrator:
    """Runs the fetch strategy chain for one item and hands back a validated file."""

    def __init__(
        self,
        strategies: Sequence[FetchStrategy],
        temp_dir: Optional[str] = None,
        sink: Optional[ProgressSink] = None,
    ) -> None:
        if not strategies:
            raise ValueError("at least one fetch strategy is required")
        self.strategies: List[FetchStrategy] = list(strategies)
        self.temp_dir = temp_dir
        self.sink = sink or NullProgressSink()

    def temp_path_for(self, url: str, item_id: str) -> str:
        """Deterministic temp path from the video id, or the item id when there is none."""
        stem = extract_video_id(url) or item_id
        stem = _UNSAFE_FILENAME_CHARS.sub("_", str(stem)).strip("._") or "video"
        directory = self.temp_dir or tempfile.gettempdir()
        os.makedirs(directory, exist_ok=True)
        return os.path.join(directory, stem + VIDEO_EXTENSION)

    def download_video(self, source_url: str, item_id: str) -> DownloadResult:
        """Download *source_url* with the first strategy that yields a valid file."""
        try:
            url = normalize_video_url(source_url)
        except ValueError as exc:
            raise DownloadFailed(f"Invalid source URL: {exc}") from exc

        destination = self.temp_path_for(url, item_id)
        on_progress = make_item_callback(self.sink, item_id, PHASE_DOWNLOAD)
        if url != source_url.strip():
            print(f"[download] Normalized {source_url} -> {url}")

        last_error: Optional[str] = None
        for strategy in self.strategies:
            if not strategy.supports(url):
                print(f"[download] Skipping {strategy.name}: URL not supported ({url})")
                continue

            self.sink.report(StatusEvent(item_id, f"Downloading with {strategy.name}..."))
            remove_partial_output(destination)
            try:
                path = strategy.fetch(url, destination, on_progress)
            except StrategyExhausted as exc:
                last_error = str(exc)
                print(f"[download] {exc}; trying next strategy", file=sys.stderr)
                continue
            except RelayError as exc:
                last_error = f"{strategy.name}: {exc}"
                print(f"[download] {last_error}; trying next strategy", file=sys.stderr)
                continue

            result = validate_downloaded_file(path)
            if result.valid:
                print(f"[download] {strategy.name} produced {result.size_bytes} bytes at {path}")
                return result

            last_error = str(ValidationFailed(result.invalid_reason or "unknown", path))
            print(f"[download] {strategy.name}: {last_error}; trying next strategy", file=sys.stderr)
            cleanup_temp_file(path)

        cleanup_temp_file(destination)
        raise DownloadFailed(
            f"All download strategies failed for {url}: {last_error or 'no strategy supports this URL'}"
        )
