"""Data models, enums, and constants for the shorts relay pipeline."""

import re
import time
import urllib.parse
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Union


# Retry policy defaults for a single fetch strategy
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 2.0  # seconds, doubled after every failed attempt

# Requeue delay after an auth token or dispatch failure
DEFAULT_REQUEUE_DELAY = 5.0

# Every downloaded file is written with this container extension
VIDEO_EXTENSION = ".mp4"

# Files smaller than this are inspected for HTML error pages
SMALL_FILE_THRESHOLD = 1024

# Sentinel percentage reported when the total size is unknown
INDETERMINATE_PERCENT = -1.0

DEFAULT_NAMESPACE = "shorts"
DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Statuses written back to the listener collaborator
STATUS_SUCCEEDED = "downloaded"
STATUS_FAILED = "processing_failed"
PENDING_STATUSES = ("downloading", "pending")

REFERER = "https://www.youtube.com/"

# User-Agent rotation pool to appear as different browsers
USER_AGENTS = [
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15',
    'Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
    'Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0',
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0',
]

# Environment variable names
ENV_STORAGE_ENDPOINT = "MINIO_ENDPOINT"
ENV_STORAGE_PORT = "MINIO_PORT"
ENV_STORAGE_USE_SSL = "MINIO_USE_SSL"
ENV_STORAGE_ACCESS_KEY = "MINIO_ACCESS_KEY"
ENV_STORAGE_SECRET_KEY = "MINIO_SECRET_KEY"
ENV_STORAGE_BUCKET = "MINIO_BUCKET_NAME"
ENV_API_BASE_URL = "SHORTS_RELAY_API_BASE_URL"
ENV_AUTH_TOKEN = "SHORTS_RELAY_AUTH_TOKEN"
ENV_AUTH_TOKEN_FILE = "SHORTS_RELAY_AUTH_TOKEN_FILE"
ENV_COOKIES_FROM_BROWSER = "SHORTS_RELAY_COOKIES_FROM_BROWSER"

YOUTUBE_HOSTS = ("youtube.com", "youtu.be", "youtube-nocookie.com")
_VIDEO_ID_PATTERN = re.compile(r"^[0-9A-Za-z_-]+$")


class ItemState(Enum):
    """Lifecycle of a work item inside the relay; discovery is the listener's business."""
    QUEUED = "queued"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class TargetKind(Enum):
    """Upload route chosen for an item."""
    DIRECT_BUCKET = "direct_bucket"
    PRESIGNED_PUT = "presigned_put"


@dataclass(frozen=True)
class WorkItem:
    """A pending video reported by the listener collaborator."""
    source_url: str
    owner_id: str
    item_id: str
    original_status: str = "downloading"


@dataclass(frozen=True)
class DownloadResult:
    """Validation verdict for a downloaded file."""
    local_path: str
    size_bytes: int
    valid: bool
    invalid_reason: Optional[str] = None


@dataclass(frozen=True)
class DirectBucketTarget:
    bucket_name: str
    object_key: str
    kind: TargetKind = TargetKind.DIRECT_BUCKET


@dataclass(frozen=True)
class PreSignedPutTarget:
    url: str
    object_key: str
    kind: TargetKind = TargetKind.PRESIGNED_PUT


UploadTarget = Union[DirectBucketTarget, PreSignedPutTarget]


@dataclass(frozen=True)
class PreSignedUpload:
    """Upload URL handed out by the backend API."""
    upload_url: str
    object_key: Optional[str] = None


@dataclass(frozen=True)
class UploadReceipt:
    success: bool
    etag: Optional[str] = None


@dataclass(frozen=True)
class ProcessingOutcome:
    """Terminal record emitted once per dequeued work item."""
    item_id: str
    owner_id: str
    success: bool
    storage_path: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def status_text(self) -> str:
        """Short human-readable verdict suitable for a status line."""
        if self.success:
            return "Succeeded"
        message = str(self.error_message or "Unknown processing error")
        if len(message) > 50:
            return f"Failed - {message[:50]}..."
        return f"Failed - {message}"


def normalize_url(url: str) -> str:
    """Normalize and validate a URL."""
    cleaned = url.strip()
    if not cleaned:
        raise ValueError("missing URL")

    if not re.match(r"^[a-zA-Z][a-zA-Z0-9+.-]*://", cleaned):
        cleaned = "https://" + cleaned.lstrip("/")

    return cleaned


def is_youtube_url(url: str) -> bool:
    host = urllib.parse.urlparse(url).netloc.lower().split(":")[0]
    return any(host == known or host.endswith("." + known) for known in YOUTUBE_HOSTS)


def extract_video_id(url: str) -> Optional[str]:
    """Return the YouTube video identifier embedded in *url*, if any."""
    try:
        parsed = urllib.parse.urlparse(normalize_url(url))
    except ValueError:
        return None

    if not is_youtube_url(parsed.geturl()):
        return None

    host = parsed.netloc.lower()
    path = parsed.path or ""
    candidate: Optional[str] = None

    if host.endswith("youtu.be"):
        candidate = path.lstrip("/").split("/")[0]
    elif path.startswith("/shorts/"):
        candidate = path[len("/shorts/"):].split("/")[0]
    elif path.startswith("/watch"):
        values = urllib.parse.parse_qs(parsed.query).get("v")
        candidate = values[0] if values else None

    if candidate and _VIDEO_ID_PATTERN.match(candidate):
        return candidate
    return None


def normalize_video_url(url: str) -> str:
    """Rewrite shorts and share links to the canonical watch-page form."""
    normalized = normalize_url(url)
    parsed = urllib.parse.urlparse(normalized)
    host = parsed.netloc.lower()

    if host.endswith("youtu.be"):
        video_id = extract_video_id(normalized)
        if video_id:
            return f"https://www.youtube.com/watch?v={video_id}"
        return normalized

    if is_youtube_url(normalized) and parsed.path.startswith("/shorts/"):
        video_id = extract_video_id(normalized)
        if video_id:
            return f"{parsed.scheme}://{parsed.netloc}/watch?v={video_id}"

    return normalized


def build_object_key(namespace: str, item_id: str, filename: str) -> str:
    """Object key used when the backend does not supply one."""
    prefix = namespace.strip("/") if namespace else ""
    parts = [part for part in (prefix, item_id, filename) if part]
    return "/".join(parts)


@dataclass
class ErrorPattern:
    """Tracks a specific failure pattern and its occurrences."""
    error_type: str
    count: int = 0
    item_ids: List[str] = field(default_factory=list)
    sample_messages: List[str] = field(default_factory=list)
    first_seen: Optional[float] = None
    last_seen: Optional[float] = None

    def record(self, item_id: Optional[str], message: str) -> None:
        """Record an occurrence of this failure pattern."""
        self.count += 1
        timestamp = time.time()

        if self.first_seen is None:
            self.first_seen = timestamp
        self.last_seen = timestamp

        if item_id and item_id not in self.item_ids:
            self.item_ids.append(item_id)

        # Keep only the first 5 sample messages to avoid memory bloat
        if len(self.sample_messages) < 5 and message not in self.sample_messages:
            self.sample_messages.append(message)
