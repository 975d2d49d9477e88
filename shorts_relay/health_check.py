"""Health check: YouTube connectivity through yt-dlp plus the configured upload route."""

import os
import tempfile
import time
from typing import Optional, Tuple

import requests
import yt_dlp
from yt_dlp.utils import DownloadError, ExtractorError

from .errors import RelayError
from .logger import DownloadLogger
from .service import build_storage_settings
from .uploader import CONNECT_TIMEOUT, UploadDispatcher
from .ytdlp_options import build_ydl_options

# A popular, stable video that's unlikely to be removed
TEST_URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"


def check_youtube(args, logger: DownloadLogger) -> Tuple[bool, Optional[str]]:
    def noop_hook(_):
        return None

    destination = os.path.join(tempfile.gettempdir(), "shorts-relay-health-check.mp4")
    ydl_opts = build_ydl_options(args, destination, logger, noop_hook)
    ydl_opts["skip_download"] = True

    try:
        with yt_dlp.YoutubeDL(ydl_opts) as ydl:
            info = ydl.extract_info(TEST_URL, download=False)
    except (DownloadError, ExtractorError) as exc:
        return False, logger.record_exception(exc)

    if not info or not info.get("id"):
        return False, "yt-dlp returned no metadata"
    print(f"✓ Successfully retrieved metadata for: {info.get('title', 'Unknown')}")
    print(f"✓ Video duration: {info.get('duration', 0)} seconds")
    return True, None


def check_upload_route(args) -> Tuple[bool, str]:
    api_base_url = getattr(args, "api_base_url", None)
    if api_base_url:
        try:
            response = requests.get(api_base_url, timeout=CONNECT_TIMEOUT)
        except requests.RequestException as exc:
            return False, f"Backend API {api_base_url} is unreachable: {exc}"
        if response.status_code >= 500:
            return False, f"Backend API {api_base_url} answered HTTP {response.status_code}"
        return True, f"Backend API {api_base_url} answered HTTP {response.status_code}"

    storage = build_storage_settings(args)
    if storage.configured:
        try:
            UploadDispatcher(storage).ensure_bucket(storage.bucket)
        except RelayError as exc:
            return False, str(exc)
        return True, f"Bucket {storage.bucket} exists"

    return False, "No upload route configured (set --api-base-url or --storage-bucket)"


def run_health_check(args) -> int:
    """Run the checks, print a report and return a process exit code."""

    print("=" * 80)
    print("Shorts Relay Health Check".center(80))
    print("=" * 80)
    print()
    print(f"Testing connectivity with: {TEST_URL}")
    print(f"Using cookies: {getattr(args, 'cookies_from_browser', None) or 'none'}")
    print()

    logger = DownloadLogger(strategy="health-check")
    start_time = time.time()
    youtube_ok, youtube_error = check_youtube(args, logger)
    elapsed = time.time() - start_time
    upload_ok, upload_message = check_upload_route(args)

    print()
    print("=" * 80)
    print("Health Check Results".center(80))
    print("=" * 80)

    if youtube_ok:
        print(f"✓ YouTube reachable (response time: {elapsed:.2f}s)")
    else:
        print(f"✗ YouTube check failed after {elapsed:.2f}s: {youtube_error or 'Unknown error'}")
    print(f"{'✓' if upload_ok else '✗'} {upload_message}")

    if youtube_ok and upload_ok:
        print()
        print("✓ Status: HEALTHY")
        return 0

    print()
    print("✗ Status: UNHEALTHY")
    print()
    print("Recommendations:")
    if not youtube_ok:
        if logger.looks_throttled:
            print(f"  - HTTP 403/429 responses detected ({logger.http_403_count}); wait 10-30 minutes")
            print("  - Use browser cookies: --cookies-from-browser chrome")
            print("  - Route through a proxy: --proxy or --proxy-file")
        elif logger.looks_unavailable:
            print("  - The test video looks unavailable or geo-restricted from this network")
        else:
            print("  - Check your internet connection and that YouTube opens in a browser")
    if not upload_ok:
        print("  - Check --api-base-url, or the --storage-* settings and MINIO_* environment variables")
    return 1
