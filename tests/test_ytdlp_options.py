from __future__ import annotations

import sys
from pathlib import Path
from types import SimpleNamespace

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import shorts_relay.ytdlp_options as yo
from shorts_relay.logger import DownloadLogger
from shorts_relay.models import REFERER, USER_AGENTS


def make_args(**overrides):
    defaults = {
        "format": None,
        "proxy": None,
        "proxy_file": None,
        "rate_limit": None,
        "cookies_from_browser": None,
    }
    defaults.update(overrides)
    return SimpleNamespace(**defaults)


def test_user_agent_selection():
    """User agent rotation picks from the pool."""
    assert yo.select_random_user_agent() in USER_AGENTS
    assert len(USER_AGENTS) >= 5


def test_load_proxies_from_file(tmp_path):
    proxy_file = tmp_path / "proxies.txt"
    proxy_file.write_text(
        "http://proxy1.example.com:8080\n"
        "# This is a comment\n"
        "\n"
        "socks5://proxy3.example.com:1080\n"
    )

    proxies = yo.load_proxies_from_file(str(proxy_file))

    assert proxies == ["http://proxy1.example.com:8080", "socks5://proxy3.example.com:1080"]


def test_load_proxies_from_nonexistent_file(capsys):
    assert yo.load_proxies_from_file("/nonexistent/file.txt") == []
    _, err = capsys.readouterr()
    assert "Proxy file not found" in err


def test_single_proxy_wins_over_proxy_file(tmp_path):
    proxy_file = tmp_path / "proxies.txt"
    proxy_file.write_text("http://pool.example.com:8080\n")

    args = make_args(proxy="http://proxy.example.com:8080", proxy_file=str(proxy_file))

    assert yo.select_proxy(args) == "http://proxy.example.com:8080"


def test_proxy_file_is_read_once(tmp_path):
    proxy_file = tmp_path / "proxies.txt"
    proxy_file.write_text("http://a.example.com:8080\nhttp://b.example.com:8080\n")
    args = make_args(proxy_file=str(proxy_file))

    first = yo.select_proxy(args)
    proxy_file.write_text("")

    assert first in args._proxy_pool
    assert yo.select_proxy(args) in ["http://a.example.com:8080", "http://b.example.com:8080"]
    assert yo.select_proxy(make_args()) is None


def test_browser_headers():
    headers = yo.build_browser_headers("TestAgent/1.0")

    assert headers["User-Agent"] == "TestAgent/1.0"
    assert headers["Referer"] == REFERER
    assert "Accept-Language" in headers


def test_build_ydl_options_targets_fixed_destination(capsys):
    logger = DownloadLogger()

    def hook(status):
        return None

    opts = yo.build_ydl_options(
        make_args(proxy="socks5://127.0.0.1:1080", rate_limit="2M", cookies_from_browser="firefox"),
        "/tmp/abc123.mp4",
        logger,
        hook,
    )

    assert opts["outtmpl"] == "/tmp/abc123.mp4"
    assert opts["format"] == yo.DEFAULT_FORMAT
    assert opts["noplaylist"] is True
    assert opts["retries"] == 0
    assert opts["logger"] is logger
    assert opts["progress_hooks"] == [hook]
    assert opts["proxy"] == "socks5://127.0.0.1:1080"
    assert opts["ratelimit"] == "2M"
    assert opts["cookiesfrombrowser"] == ("firefox",)
    assert opts["http_headers"]["User-Agent"] in USER_AGENTS

    out, _ = capsys.readouterr()
    assert "Constructed yt-dlp options: format=best[ext=mp4]/best" in out
    assert "proxy=socks5://127.0.0.1:1080" in out


def test_build_ydl_options_omits_unset_extras(capsys):
    opts = yo.build_ydl_options(make_args(format="18"), "/tmp/x.mp4", DownloadLogger(), lambda status: None)

    assert opts["format"] == "18"
    for key in ("proxy", "ratelimit", "cookiesfrombrowser"):
        assert key not in opts
