"""yt-dlp logger that captures failures for the primary fetch strategy."""

import sys
import time
from typing import List, Optional


class DownloadLogger:
    """Logger object handed to yt-dlp; prints with item context and remembers the last error."""

    UNAVAILABLE_FRAGMENTS = (
        "video unavailable",
        "video is unavailable",
        "content isn't available",
        "content is not available",
        "members-only",
        "requires purchase",
        "http error 410",
        "sign in to confirm your age",
        "this video is private",
        "the uploader has not made this video available",
    )

    THROTTLE_FRAGMENTS = (
        "http error 403",
        "forbidden",
        "http error 429",
        "too many requests",
    )

    def __init__(self, item_id: Optional[str] = None, strategy: str = "yt-dlp") -> None:
        self.item_id = item_id
        self.strategy = strategy
        self.attempt: Optional[int] = None
        self.current_url: Optional[str] = None
        self.last_error: Optional[str] = None
        self.errors: List[str] = []
        self.warnings = 0
        self.video_unavailable_errors = 0
        # Track 403/429 responses for throttle detection
        self.http_403_count = 0
        self.http_403_timestamps: List[float] = []

    def set_context(self, url: Optional[str], attempt: Optional[int] = None) -> None:
        self.current_url = url
        self.attempt = attempt
        self.last_error = None

    def _format_with_context(self, message: str) -> str:
        context_parts = [f"strategy={self.strategy}"]
        if self.item_id:
            context_parts.append(f"item={self.item_id}")
        if self.attempt is not None:
            context_parts.append(f"attempt={self.attempt + 1}")
        if self.current_url:
            context_parts.append(f"url={self.current_url}")
        return f"[{' '.join(context_parts)}] {message}"

    def _print(self, message: str, file=sys.stdout) -> None:
        print(self._format_with_context(message), file=file)

    def _handle_failure(self, text: str) -> None:
        lowered = text.lower()
        if any(fragment in lowered for fragment in self.THROTTLE_FRAGMENTS):
            self.http_403_count += 1
            self.http_403_timestamps.append(time.time())
            # Keep only recent timestamps (last 10 minutes)
            cutoff_time = time.time() - 600
            self.http_403_timestamps = [ts for ts in self.http_403_timestamps if ts > cutoff_time]
        if any(fragment in lowered for fragment in self.UNAVAILABLE_FRAGMENTS):
            self.video_unavailable_errors += 1
        self.last_error = text
        self.errors.append(text)

    @property
    def looks_throttled(self) -> bool:
        return self.http_403_count > 0

    @property
    def looks_unavailable(self) -> bool:
        return self.video_unavailable_errors > 0

    @staticmethod
    def _ensure_text(message) -> str:
        if isinstance(message, bytes):
            return message.decode("utf-8", "ignore")
        return str(message)

    def debug(self, message) -> None:  # yt-dlp calls this
        text = self._ensure_text(message)
        # yt-dlp routes plain info lines through debug with this prefix
        if text.startswith("[debug] "):
            return
        self.info(text)

    def info(self, message) -> None:
        self._print(self._ensure_text(message))

    def warning(self, message) -> None:
        self.warnings += 1
        self._print(self._ensure_text(message), file=sys.stderr)

    def error(self, message) -> None:
        text = self._ensure_text(message)
        self._print(text, file=sys.stderr)
        self._handle_failure(text)

    def record_exception(self, exc: BaseException) -> str:
        """Record an exception raised by yt-dlp and return its text."""
        text = self._ensure_text(str(exc)) or type(exc).__name__
        if text != self.last_error:
            self._handle_failure(text)
        return text
