"""Configuration and argument parsing for the shorts relay."""

import argparse
import json
import os
import sys
from typing import Any, Dict, List, Optional

from .models import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_NAMESPACE,
    DEFAULT_REQUEUE_DELAY,
    DEFAULT_RETRY_DELAY,
    ENV_API_BASE_URL,
    ENV_AUTH_TOKEN,
    ENV_AUTH_TOKEN_FILE,
    ENV_COOKIES_FROM_BROWSER,
    ENV_STORAGE_ACCESS_KEY,
    ENV_STORAGE_BUCKET,
    ENV_STORAGE_ENDPOINT,
    ENV_STORAGE_PORT,
    ENV_STORAGE_SECRET_KEY,
    ENV_STORAGE_USE_SSL,
)
from .strategies import DEFAULT_HTTP_TIMEOUT, STRATEGY_NAMES
from .uploader import DEFAULT_UPLOAD_TIMEOUT
from .watcher import DEFAULT_WATCH_INTERVAL
from .ytdlp_options import DEFAULT_FORMAT

DEFAULT_CONFIG_PATH = "relay_config.json"

VALID_CONFIG_KEYS = {
    'temp_dir', 'max_retries', 'retry_delay', 'strategies', 'format',
    'cookies_from_browser', 'proxy', 'proxy_file', 'rate_limit', 'http_timeout',
    'api_base_url', 'namespace', 'upload_timeout',
    'storage_endpoint', 'storage_port', 'storage_use_ssl', 'storage_access_key',
    'storage_secret_key', 'storage_bucket', 'storage_region',
    'auth_token_file', 'items_file', 'owner_id', 'watch_interval', 'requeue_delay',
    'error_log',
}


def positive_int(value: str) -> int:
    """Return *value* parsed as a positive integer for argparse."""

    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise argparse.ArgumentTypeError("Expected a positive integer") from exc

    if parsed <= 0:
        raise argparse.ArgumentTypeError("Expected a positive integer")

    return parsed


def non_negative_int(value: str) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise argparse.ArgumentTypeError("Expected zero or a positive integer") from exc

    if parsed < 0:
        raise argparse.ArgumentTypeError("Expected zero or a positive integer")

    return parsed


def non_negative_float(value: str) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError) as exc:
        raise argparse.ArgumentTypeError("Expected a number of seconds") from exc

    if parsed < 0:
        raise argparse.ArgumentTypeError("Expected zero or a positive number of seconds")

    return parsed


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Load configuration from a JSON file.

    Returns a dictionary with configuration values that can be used as defaults
    for command-line arguments. If the file doesn't exist or is invalid, returns
    an empty dictionary.
    """
    if not os.path.exists(config_path):
        return {}

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config = json.load(f)
    except json.JSONDecodeError as exc:
        print(f"Warning: Failed to parse config file {config_path}: {exc}. Ignoring.", file=sys.stderr)
        return {}
    except OSError as exc:
        print(f"Warning: Failed to read config file {config_path}: {exc}. Ignoring.", file=sys.stderr)
        return {}

    if not isinstance(config, dict):
        print(f"Warning: Config file {config_path} must contain a JSON object. Ignoring.", file=sys.stderr)
        return {}

    invalid_keys = set(config.keys()) - VALID_CONFIG_KEYS
    if invalid_keys:
        print(f"Warning: Unknown config keys ignored: {', '.join(sorted(invalid_keys))}", file=sys.stderr)

    return {k: v for k, v in config.items() if k in VALID_CONFIG_KEYS}


def _validated_config_value(config: Dict[str, Any], key: str, default: Any, validator) -> Any:
    """Run a config file value through the same validator argparse uses for the flag."""
    if config.get(key) is None:
        return default
    try:
        return validator(str(config[key]))
    except argparse.ArgumentTypeError as exc:
        print(f"Warning: Ignoring invalid config value {key}={config[key]!r}: {exc}", file=sys.stderr)
        return default


def _config_path_from_argv(argv: List[str]) -> str:
    config_path = DEFAULT_CONFIG_PATH
    for index, value in enumerate(argv):
        if value == "--config" and index + 1 < len(argv):
            config_path = argv[index + 1]
        elif value.startswith("--config="):
            config_path = value.split("=", 1)[1]
    return config_path


def build_parser(config: Optional[Dict[str, Any]] = None) -> argparse.ArgumentParser:
    config = dict(config or {})
    for key, default, validator in (
        ("max_retries", DEFAULT_MAX_RETRIES, non_negative_int),
        ("retry_delay", DEFAULT_RETRY_DELAY, non_negative_float),
        ("http_timeout", DEFAULT_HTTP_TIMEOUT, non_negative_float),
        ("upload_timeout", DEFAULT_UPLOAD_TIMEOUT, non_negative_float),
        ("storage_port", None, positive_int),
        ("watch_interval", DEFAULT_WATCH_INTERVAL, non_negative_float),
        ("requeue_delay", DEFAULT_REQUEUE_DELAY, non_negative_float),
    ):
        if key in config:
            config[key] = _validated_config_value(config, key, default, validator)
    if isinstance(config.get("storage_use_ssl"), str):
        config["storage_use_ssl"] = _env_flag(config["storage_use_ssl"])
    parser = argparse.ArgumentParser(
        description=(
            "Download pending videos with yt-dlp (falling back to pytubefix and plain HTTP) "
            "and upload them to object storage, one item at a time."
        )
    )
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to JSON configuration file (default: {DEFAULT_CONFIG_PATH})",
    )

    download = parser.add_argument_group("download")
    download.add_argument("--temp-dir", default=config.get("temp_dir"), help="Directory for temporary downloads (default: system temp dir)")
    download.add_argument(
        "--max-retries",
        type=non_negative_int,
        default=config.get("max_retries", DEFAULT_MAX_RETRIES),
        help=f"Retries per fetch strategy after the first attempt (default: {DEFAULT_MAX_RETRIES})",
    )
    download.add_argument(
        "--retry-delay",
        type=non_negative_float,
        default=config.get("retry_delay", DEFAULT_RETRY_DELAY),
        help=f"Base backoff delay in seconds, doubled after every failed attempt (default: {DEFAULT_RETRY_DELAY:g})",
    )
    download.add_argument(
        "--strategies",
        default=config.get("strategies", ",".join(STRATEGY_NAMES)),
        help=f"Comma-separated fetch strategies to enable (default: {','.join(STRATEGY_NAMES)})",
    )
    download.add_argument("--format", default=config.get("format", DEFAULT_FORMAT), help=f"Format selector passed to yt-dlp (default: {DEFAULT_FORMAT})")
    download.add_argument("--cookies-from-browser", default=config.get("cookies_from_browser"), help="Use cookies from your browser (chrome, safari, firefox, edge, etc.)")
    download.add_argument(
        "--proxy",
        default=config.get("proxy"),
        help="Use a single proxy for yt-dlp requests (e.g., http://proxy.example.com:8080 or socks5://127.0.0.1:1080)",
    )
    download.add_argument(
        "--proxy-file",
        default=config.get("proxy_file"),
        help="Path to a file containing proxy URLs (one per line). Proxies will be rotated randomly.",
    )
    download.add_argument("--rate-limit", default=config.get("rate_limit"), help="Limit download speed, e.g., 2M or 500K (passed to yt-dlp)")
    download.add_argument(
        "--http-timeout",
        type=non_negative_float,
        default=config.get("http_timeout", DEFAULT_HTTP_TIMEOUT),
        help=f"Read timeout in seconds for the plain HTTP strategy (default: {DEFAULT_HTTP_TIMEOUT:g})",
    )

    upload = parser.add_argument_group("upload")
    upload.add_argument(
        "--api-base-url",
        default=config.get("api_base_url"),
        help=f"Backend API base URL; enables pre-signed uploads (env: {ENV_API_BASE_URL})",
    )
    upload.add_argument(
        "--namespace",
        default=config.get("namespace", DEFAULT_NAMESPACE),
        help=f"Object key prefix when the backend does not supply a key (default: {DEFAULT_NAMESPACE})",
    )
    upload.add_argument(
        "--upload-timeout",
        type=non_negative_float,
        default=config.get("upload_timeout", DEFAULT_UPLOAD_TIMEOUT),
        help=f"Transfer timeout in seconds for uploads; connecting is capped at 15s (default: {DEFAULT_UPLOAD_TIMEOUT:g})",
    )
    upload.add_argument("--storage-endpoint", default=config.get("storage_endpoint"), help=f"S3-compatible endpoint host (env: {ENV_STORAGE_ENDPOINT})")
    upload.add_argument("--storage-port", type=positive_int, default=config.get("storage_port"), help=f"Endpoint port (env: {ENV_STORAGE_PORT})")
    upload.add_argument(
        "--storage-use-ssl",
        dest="storage_use_ssl",
        action="store_true",
        help=f"Use HTTPS for the storage endpoint (env: {ENV_STORAGE_USE_SSL})",
    )
    upload.add_argument(
        "--no-storage-use-ssl",
        dest="storage_use_ssl",
        action="store_false",
        help="Use plain HTTP for the storage endpoint",
    )
    parser.set_defaults(storage_use_ssl=config.get("storage_use_ssl"))
    upload.add_argument("--storage-access-key", default=config.get("storage_access_key"), help=f"Access key (env: {ENV_STORAGE_ACCESS_KEY})")
    upload.add_argument("--storage-secret-key", default=config.get("storage_secret_key"), help=f"Secret key (env: {ENV_STORAGE_SECRET_KEY})")
    upload.add_argument("--storage-bucket", default=config.get("storage_bucket"), help=f"Bucket for direct uploads (env: {ENV_STORAGE_BUCKET})")
    upload.add_argument("--storage-region", default=config.get("storage_region"), help="Bucket region (default: us-east-1)")

    auth = parser.add_argument_group("auth")
    auth.add_argument("--auth-token", default=None, help=f"Bearer token for the backend API (env: {ENV_AUTH_TOKEN})")
    auth.add_argument(
        "--auth-token-file",
        default=config.get("auth_token_file"),
        help=f"File holding the bearer token, re-read before every upload (env: {ENV_AUTH_TOKEN_FILE})",
    )

    queue = parser.add_argument_group("queue")
    queue.add_argument("--items-file", default=config.get("items_file"), help="JSON file listing work items and their status")
    queue.add_argument("--owner-id", default=config.get("owner_id"), help="Owner id for items that do not name one")
    queue.add_argument("--watch", action="store_true", help="Keep running and pick up new pending items from --items-file")
    queue.add_argument(
        "--watch-interval",
        type=non_negative_float,
        default=config.get("watch_interval", DEFAULT_WATCH_INTERVAL),
        help=f"Seconds between checks of --items-file when watching (default: {DEFAULT_WATCH_INTERVAL:g})",
    )
    queue.add_argument(
        "--requeue-delay",
        type=non_negative_float,
        default=config.get("requeue_delay", DEFAULT_REQUEUE_DELAY),
        help=f"Seconds to wait before retrying an item after an auth or dispatch failure (default: {DEFAULT_REQUEUE_DELAY:g})",
    )
    queue.add_argument("--error-log", default=config.get("error_log"), help="Append every failed item to this file")

    parser.add_argument(
        "--health-check",
        action="store_true",
        help=(
            "Test YouTube connectivity and the configured upload route, "
            "report results and exit without processing items."
        ),
    )
    return parser


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments, using the JSON config file for defaults."""
    if argv is None:
        argv = sys.argv[1:]

    config_path = _config_path_from_argv(argv)
    config = load_config_file(config_path)
    if config:
        print(f"Loaded configuration from {config_path}")

    return build_parser(config).parse_args(argv)


def _normalize_env_str(value: Optional[str]) -> Optional[str]:
    """Normalize environment variable string value."""
    if not value:
        return None
    stripped = value.strip()
    return stripped if stripped else None


def _env_flag(value: Optional[str]) -> bool:
    """Parse a boolean flag from environment variable."""
    if value is None:
        return False
    normalized = value.strip().lower()
    return normalized in {"1", "true", "yes", "on"}


def apply_environment_defaults(args, environ: Optional[Dict[str, str]] = None) -> None:
    """Populate storage, API and auth args from the environment when missing."""

    if environ is None:
        environ = os.environ

    string_defaults = (
        ("storage_endpoint", ENV_STORAGE_ENDPOINT),
        ("storage_access_key", ENV_STORAGE_ACCESS_KEY),
        ("storage_secret_key", ENV_STORAGE_SECRET_KEY),
        ("storage_bucket", ENV_STORAGE_BUCKET),
        ("api_base_url", ENV_API_BASE_URL),
        ("auth_token", ENV_AUTH_TOKEN),
        ("auth_token_file", ENV_AUTH_TOKEN_FILE),
        ("cookies_from_browser", ENV_COOKIES_FROM_BROWSER),
    )
    for attribute, env_name in string_defaults:
        if not getattr(args, attribute, None):
            value = _normalize_env_str(environ.get(env_name))
            if value:
                setattr(args, attribute, value)

    if not getattr(args, "storage_port", None):
        port_env = _normalize_env_str(environ.get(ENV_STORAGE_PORT))
        if port_env:
            try:
                args.storage_port = positive_int(port_env)
            except argparse.ArgumentTypeError:
                print(f"Warning: Ignoring invalid {ENV_STORAGE_PORT}={port_env!r}", file=sys.stderr)
                args.storage_port = None
        else:
            args.storage_port = None

    if getattr(args, "storage_use_ssl", None) is None:
        args.storage_use_ssl = _env_flag(environ.get(ENV_STORAGE_USE_SSL))
