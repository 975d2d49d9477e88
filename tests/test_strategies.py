"""Tests for the fetch strategies and their retry loop."""

import sys
import types
from pathlib import Path
from types import SimpleNamespace

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import shorts_relay.strategies as strategies
from shorts_relay.errors import FetchAttemptError, StrategyExhausted, StrategyUnavailable
from shorts_relay.models import INDETERMINATE_PERCENT
from shorts_relay.strategies import (
    FetchStrategy,
    HttpStrategy,
    PytubefixStrategy,
    RetryPolicy,
    YtDlpStrategy,
    build_strategy_chain,
    parse_strategy_names,
)


class FlakyStrategy(FetchStrategy):
    name = "flaky"

    def __init__(self, failures, retry_policy=None):
        super().__init__(retry_policy)
        self.failures = failures
        self.attempt_numbers = []

    def attempt(self, url, destination, attempt_number, on_progress):
        self.attempt_numbers.append(attempt_number)
        # Leave partial output behind on every attempt
        Path(destination + ".part").write_bytes(b"partial")
        Path(destination).write_bytes(b"partial")
        if len(self.attempt_numbers) <= self.failures:
            raise FetchAttemptError(f"network hiccup #{len(self.attempt_numbers)}")
        on_progress(100.0, 7, 7)
        return destination


def test_retry_policy_doubles_delay():
    policy = RetryPolicy(max_retries=3, base_delay=2.0)

    assert policy.attempts == 4
    assert [policy.delay_for(i) for i in range(3)] == [2.0, 4.0, 8.0]


def test_retry_policy_rejects_negative_values():
    with pytest.raises(ValueError):
        RetryPolicy(max_retries=-1)
    with pytest.raises(ValueError):
        RetryPolicy(base_delay=-0.5)


def test_fetch_retries_with_backoff_then_succeeds(tmp_path):
    sleeps = []
    strategy = FlakyStrategy(failures=2, retry_policy=RetryPolicy(3, 2.0, sleep=sleeps.append))
    progress = []

    result = strategy.fetch("https://example.com/v", str(tmp_path / "v.mp4"), lambda *a: progress.append(a))

    assert result == str(tmp_path / "v.mp4")
    assert strategy.attempt_numbers == [0, 1, 2]
    assert sleeps == [2.0, 4.0]
    assert progress == [(100.0, 7, 7)]


def test_fetch_exhausts_retries_and_removes_partial_output(tmp_path, capsys):
    sleeps = []
    destination = tmp_path / "v.mp4"
    strategy = FlakyStrategy(failures=10, retry_policy=RetryPolicy(3, 2.0, sleep=sleeps.append))

    with pytest.raises(StrategyExhausted) as excinfo:
        strategy.fetch("https://example.com/v", str(destination))

    assert excinfo.value.attempts == 4
    assert excinfo.value.strategy == "flaky"
    assert "network hiccup #4" in str(excinfo.value)
    assert sleeps == [2.0, 4.0, 8.0]
    assert not destination.exists()
    assert not (tmp_path / "v.mp4.part").exists()

    _, err = capsys.readouterr()
    assert "Retrying in 2s" in err
    assert "Giving up after 4 attempt(s)" in err


def test_non_relay_exceptions_are_absorbed_per_attempt(tmp_path):
    class Boom(FetchStrategy):
        name = "boom"

        def attempt(self, url, destination, attempt_number, on_progress):
            raise OSError("disk full")

    strategy = Boom(RetryPolicy(0, 0.0, sleep=lambda _: None))

    with pytest.raises(StrategyExhausted, match="disk full"):
        strategy.fetch("https://example.com/v", str(tmp_path / "v.mp4"))


class FakeYoutubeDL:
    calls = []
    fail = False

    def __init__(self, params):
        self.params = params

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def download(self, urls):
        FakeYoutubeDL.calls.append({"urls": list(urls), "params": self.params})
        if FakeYoutubeDL.fail:
            self.params["logger"].error("ERROR: [youtube] abc123: Video unavailable")
            raise strategies.DownloadError("ERROR: [youtube] abc123: Video unavailable")
        hook = self.params["progress_hooks"][0]
        hook({"status": "downloading", "downloaded_bytes": 512, "total_bytes": 2048})
        hook({"status": "downloading", "downloaded_bytes": 1024, "total_bytes_estimate": None})
        Path(self.params["outtmpl"]).write_bytes(b"\x00" * 2048)
        hook({"status": "finished", "total_bytes": 2048})
        return 0


def test_ytdlp_strategy_reports_progress_and_writes_destination(tmp_path, monkeypatch):
    monkeypatch.setattr(strategies.yt_dlp, "YoutubeDL", FakeYoutubeDL)
    FakeYoutubeDL.calls = []
    FakeYoutubeDL.fail = False
    progress = []
    strategy = YtDlpStrategy(SimpleNamespace(format=None), RetryPolicy(0, 0.0))

    path = strategy.fetch(
        "https://www.youtube.com/watch?v=abc123",
        str(tmp_path / "abc123.mp4"),
        lambda *a: progress.append(a),
    )

    assert path == str(tmp_path / "abc123.mp4")
    params = FakeYoutubeDL.calls[0]["params"]
    assert params["format"] == "best[ext=mp4]/best"
    assert params["nocheckcertificate"] is True
    assert params["http_headers"]["Referer"] == "https://www.youtube.com/"
    assert progress == [
        (25.0, 512, 2048),
        (INDETERMINATE_PERCENT, 1024, 0),
        (100.0, 2048, 2048),
    ]


def test_ytdlp_strategy_wraps_download_errors(tmp_path, monkeypatch):
    monkeypatch.setattr(strategies.yt_dlp, "YoutubeDL", FakeYoutubeDL)
    FakeYoutubeDL.calls = []
    FakeYoutubeDL.fail = True
    strategy = YtDlpStrategy(SimpleNamespace(), RetryPolicy(1, 0.0, sleep=lambda _: None))

    with pytest.raises(StrategyExhausted) as excinfo:
        strategy.fetch("https://www.youtube.com/watch?v=abc123", str(tmp_path / "abc123.mp4"))

    assert len(FakeYoutubeDL.calls) == 2
    assert "Video unavailable" in excinfo.value.last_error


class FakeQuery:
    def __init__(self, streams):
        self.streams = streams

    def filter(self, progressive=None, only_video=None, file_extension=None):
        selected = [
            s for s in self.streams
            if (progressive is None or s.is_progressive == progressive)
            and (only_video is None or (not s.is_progressive) == only_video)
            and (file_extension is None or s.subtype == file_extension)
        ]
        return FakeQuery(selected)

    def order_by(self, attribute):
        return FakeQuery(sorted(self.streams, key=lambda s: int(getattr(s, attribute).rstrip("p"))))

    def desc(self):
        return FakeQuery(list(reversed(self.streams)))

    def first(self):
        return self.streams[0] if self.streams else None


class FakeStream:
    def __init__(self, resolution, progressive, subtype="mp4", filesize=4096):
        self.resolution = resolution
        self.is_progressive = progressive
        self.subtype = subtype
        self.filesize = filesize
        self.mime_type = f"video/{subtype}"
        self.downloaded_to = None

    def download(self, output_path=None, filename=None, skip_existing=True):
        target = Path(output_path) / ("pytube-" + filename)
        target.write_bytes(b"\x00" * self.filesize)
        self.downloaded_to = target
        return str(target)


def install_fake_pytubefix(monkeypatch, streams):
    created = []

    class FakeYouTube:
        def __init__(self, url, on_progress_callback=None):
            self.url = url
            self.title = "Sample short"
            self.streams = FakeQuery(streams)
            self.on_progress_callback = on_progress_callback
            created.append(self)

    monkeypatch.setitem(sys.modules, "pytubefix", types.SimpleNamespace(YouTube=FakeYouTube))
    return created


def test_pytubefix_prefers_best_progressive_mp4(tmp_path, monkeypatch):
    streams = [
        FakeStream("360p", True),
        FakeStream("720p", True),
        FakeStream("1080p", False),
        FakeStream("1440p", True, subtype="webm"),
    ]
    install_fake_pytubefix(monkeypatch, streams)

    destination = tmp_path / "abc123.mp4"
    path = PytubefixStrategy(RetryPolicy(0, 0.0)).fetch("https://www.youtube.com/watch?v=abc123", str(destination))

    assert path == str(destination)
    assert destination.exists()
    assert streams[1].downloaded_to is not None
    # The library's own filename is moved onto the expected destination
    assert not streams[1].downloaded_to.exists()


def test_pytubefix_falls_back_to_video_only(tmp_path, monkeypatch):
    streams = [FakeStream("480p", False), FakeStream("1080p", False)]
    install_fake_pytubefix(monkeypatch, streams)

    PytubefixStrategy(RetryPolicy(0, 0.0)).fetch("https://youtu.be/abc123", str(tmp_path / "abc123.mp4"))

    assert streams[1].downloaded_to is not None
    assert streams[0].downloaded_to is None


def test_pytubefix_reports_byte_progress(tmp_path, monkeypatch):
    created = install_fake_pytubefix(monkeypatch, [FakeStream("720p", True, filesize=1000)])
    progress = []
    strategy = PytubefixStrategy(RetryPolicy(0, 0.0))

    strategy.fetch("https://youtu.be/abc123", str(tmp_path / "abc123.mp4"), lambda *a: progress.append(a))
    stream = created[0].streams.first()
    created[0].on_progress_callback(stream, b"x" * 250, 750)

    assert progress == [(25.0, 250, 1000)]


def test_pytubefix_only_supports_youtube():
    strategy = PytubefixStrategy()

    assert strategy.supports("https://www.youtube.com/watch?v=abc123")
    assert not strategy.supports("https://cdn.example.com/clip.mp4")


class FakeResponse:
    def __init__(self, status_code, body=b"", headers=None):
        self.status_code = status_code
        self.body = body
        self.headers = headers or {}
        self.closed = False

    def iter_content(self, chunk_size=1):
        for start in range(0, len(self.body), 4):
            yield self.body[start:start + 4]

    def close(self):
        self.closed = True


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def get(self, url, **kwargs):
        self.requests.append((url, kwargs))
        return self.responses.pop(0)


def test_http_strategy_follows_relative_redirects(tmp_path):
    body = b"0123456789"
    session = FakeSession(
        [
            FakeResponse(302, headers={"Location": "/media/clip.mp4"}),
            FakeResponse(200, body, {"Content-Length": str(len(body))}),
        ]
    )
    progress = []
    strategy = HttpStrategy(RetryPolicy(0, 0.0), session=session)

    path = strategy.fetch("https://cdn.example.com/share/1", str(tmp_path / "p1.mp4"), lambda *a: progress.append(a))

    assert Path(path).read_bytes() == body
    assert [url for url, _ in session.requests] == [
        "https://cdn.example.com/share/1",
        "https://cdn.example.com/media/clip.mp4",
    ]
    assert session.requests[0][1]["allow_redirects"] is False
    assert "User-Agent" in session.requests[0][1]["headers"]
    assert progress[-1] == (100.0, 10, 10)


def test_http_strategy_treats_non_200_as_failure(tmp_path):
    session = FakeSession([FakeResponse(204), FakeResponse(404)])
    strategy = HttpStrategy(RetryPolicy(1, 0.0, sleep=lambda _: None), session=session)

    with pytest.raises(StrategyExhausted, match="HTTP 404"):
        strategy.fetch("https://cdn.example.com/v.mp4", str(tmp_path / "v.mp4"))
    assert len(session.requests) == 2


def test_http_strategy_caps_redirects(tmp_path):
    responses = [FakeResponse(301, headers={"Location": f"/hop/{i}"}) for i in range(3)]
    strategy = HttpStrategy(RetryPolicy(0, 0.0), session=FakeSession(responses), max_redirects=2)

    with pytest.raises(StrategyExhausted, match="Too many redirects"):
        strategy.fetch("https://cdn.example.com/start", str(tmp_path / "v.mp4"))


def test_http_strategy_reports_indeterminate_progress(tmp_path):
    session = FakeSession([FakeResponse(200, b"abcdef")])
    progress = []

    HttpStrategy(RetryPolicy(0, 0.0), session=session).fetch(
        "https://cdn.example.com/v.mp4", str(tmp_path / "v.mp4"), lambda *a: progress.append(a)
    )

    assert progress == [(INDETERMINATE_PERCENT, 4, 0), (INDETERMINATE_PERCENT, 6, 0)]


def test_http_strategy_rejects_truncated_body(tmp_path):
    session = FakeSession([FakeResponse(200, b"abc", {"Content-Length": "10"})])

    with pytest.raises(StrategyExhausted, match="3 of 10 bytes"):
        HttpStrategy(RetryPolicy(0, 0.0), session=session).fetch(
            "https://cdn.example.com/v.mp4", str(tmp_path / "v.mp4")
        )
    assert not (tmp_path / "v.mp4").exists()


def test_parse_strategy_names_keeps_fixed_order():
    assert parse_strategy_names("http, yt-dlp") == ["yt-dlp", "http"]
    assert parse_strategy_names(None) == ["yt-dlp", "pytubefix", "http"]
    with pytest.raises(StrategyUnavailable, match="ffmpeg"):
        parse_strategy_names("yt-dlp,ffmpeg")


def test_build_strategy_chain_disables_unavailable_strategy(monkeypatch, capsys):
    monkeypatch.setattr(PytubefixStrategy, "check_available", lambda self: "pytubefix is not installed")
    args = SimpleNamespace(strategies="yt-dlp,pytubefix,http", max_retries=2, retry_delay=1.5, http_timeout=30)

    chain = build_strategy_chain(args)

    assert [strategy.name for strategy in chain] == ["yt-dlp", "http"]
    assert chain[0].retry_policy.max_retries == 2
    assert chain[1].retry_policy.base_delay == 1.5
    assert chain[1].timeout == 30
    _, err = capsys.readouterr()
    assert "[strategy pytubefix] Disabled: pytubefix is not installed" in err


def test_build_strategy_chain_fails_when_nothing_is_available(monkeypatch):
    monkeypatch.setattr(PytubefixStrategy, "check_available", lambda self: "pytubefix is not installed")

    with pytest.raises(StrategyUnavailable, match="No fetch strategy"):
        build_strategy_chain(SimpleNamespace(strategies="pytubefix"))
