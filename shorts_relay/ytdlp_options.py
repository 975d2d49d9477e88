"""yt-dlp options builder for the primary fetch strategy."""

import random
import sys
from typing import Callable, List, Optional

from .logger import DownloadLogger
from .models import REFERER, USER_AGENTS

DEFAULT_FORMAT = "best[ext=mp4]/best"


def select_random_user_agent() -> str:
    """Select a random User-Agent from the pool to rotate through different browsers."""
    return random.choice(USER_AGENTS)


def load_proxies_from_file(proxy_file: str) -> List[str]:
    """Load proxy URLs from a file, one per line."""
    proxies: List[str] = []
    try:
        with open(proxy_file, "r", encoding="utf-8") as f:
            for line in f:
                stripped = line.strip()
                # Skip empty lines and comments
                if stripped and not stripped.startswith("#"):
                    proxies.append(stripped)
        if proxies:
            print(f"Loaded {len(proxies)} proxies from {proxy_file}")
        else:
            print(f"Warning: No proxies found in {proxy_file}", file=sys.stderr)
        return proxies
    except FileNotFoundError:
        print(f"Error: Proxy file not found: {proxy_file}", file=sys.stderr)
        return []
    except OSError as exc:
        print(f"Error reading proxy file {proxy_file}: {exc}", file=sys.stderr)
        return []


def select_proxy(args) -> Optional[str]:
    """
    Select a proxy based on args.
    Returns a single proxy URL, or None if no proxy is configured.
    """
    proxy = getattr(args, "proxy", None)
    if proxy:
        return proxy

    proxy_file = getattr(args, "proxy_file", None)
    if proxy_file:
        # Load proxies and store in args to avoid re-reading the file
        if not hasattr(args, "_proxy_pool"):
            args._proxy_pool = load_proxies_from_file(proxy_file)

        if args._proxy_pool:
            return random.choice(args._proxy_pool)

    return None


def build_browser_headers(user_agent: Optional[str] = None) -> dict:
    """Browser-like request headers shared by every strategy."""
    return {
        "User-Agent": user_agent or select_random_user_agent(),
        "Referer": REFERER,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.5",
    }


def build_ydl_options(
    args,
    destination: str,
    logger: DownloadLogger,
    hook: Callable[[dict], None],
) -> dict:
    """Build the yt-dlp options dictionary for downloading one video to *destination*."""
    user_agent = select_random_user_agent()
    proxy = select_proxy(args)
    format_selector = getattr(args, "format", None) or DEFAULT_FORMAT

    ydl_opts = {
        # A literal template: the file always lands at the orchestrator's path
        "outtmpl": destination,
        "format": format_selector,
        "noplaylist": True,
        "overwrites": True,
        "continuedl": False,
        "nocheckcertificate": True,
        "prefer_free_formats": True,
        "noprogress": True,
        "quiet": True,
        "no_warnings": True,
        # Retries are driven by the strategy chain, not by yt-dlp
        "retries": 0,
        "fragment_retries": 1,
        "logger": logger,
        "progress_hooks": [hook],
        "http_headers": build_browser_headers(user_agent),
    }

    if proxy:
        ydl_opts["proxy"] = proxy
    rate_limit = getattr(args, "rate_limit", None)
    if rate_limit:
        ydl_opts["ratelimit"] = rate_limit
    cookies_from_browser = getattr(args, "cookies_from_browser", None)
    if cookies_from_browser:
        ydl_opts["cookiesfrombrowser"] = (cookies_from_browser,)

    debug_parts = [f"format={format_selector}"]
    user_agent_short = user_agent.split('(')[0].strip() if '(' in user_agent else user_agent[:50]
    debug_parts.append(f"user_agent={user_agent_short}")
    if proxy:
        debug_parts.append(f"proxy={proxy}")
    if rate_limit:
        debug_parts.append(f"ratelimit={rate_limit}")
    if cookies_from_browser:
        debug_parts.append(f"cookies_from_browser={cookies_from_browser}")

    print("Constructed yt-dlp options: " + ", ".join(debug_parts))

    return ydl_opts
