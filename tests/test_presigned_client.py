import sys
from pathlib import Path

import pytest
import requests

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from shorts_relay.errors import InvalidPreSignedRequest, PreSignedUrlFailed
from shorts_relay.presigned import PreSignedUrlClient


class FakeResponse:
    def __init__(self, status_code, payload=None, text=None):
        self.status_code = status_code
        self._payload = payload
        if text is None:
            text = "" if payload is None else repr(payload)
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class FakeSession:
    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.calls = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        if self.exc is not None:
            raise self.exc
        return self.response


def test_successful_request_returns_upload_url_and_key():
    session = FakeSession(
        FakeResponse(200, {"upload_url": "https://bucket.example.com/put?sig=1", "object_key": "shorts/p1/a.mp4"})
    )
    client = PreSignedUrlClient("https://api.example.com/", session=session)

    grant = client.get_presigned_url("tok", "p1", "a.mp4", "video/mp4")

    assert grant.upload_url == "https://bucket.example.com/put?sig=1"
    assert grant.object_key == "shorts/p1/a.mp4"
    call = session.calls[0]
    assert call["url"] == "https://api.example.com/projects/presigned-url"
    assert call["json"] == {"short_id": "p1", "filename": "a.mp4", "content_type": "video/mp4"}
    assert call["headers"]["Authorization"] == "Bearer tok"
    assert call["timeout"] == 15.0


def test_missing_object_key_is_allowed():
    session = FakeSession(FakeResponse(201, {"upload_url": "https://bucket.example.com/put"}))

    grant = PreSignedUrlClient("https://api.example.com", session=session).get_presigned_url(
        "tok", "p1", "a.mp4", "video/mp4"
    )

    assert grant.object_key is None


def test_missing_upload_url_is_a_hard_failure():
    session = FakeSession(FakeResponse(200, {"object_key": "shorts/p1/a.mp4"}))
    client = PreSignedUrlClient("https://api.example.com", session=session)

    with pytest.raises(PreSignedUrlFailed, match="missing upload_url") as excinfo:
        client.get_presigned_url("tok", "p1", "a.mp4", "video/mp4")

    assert excinfo.value.status_code == 200


def test_non_2xx_includes_raw_body():
    session = FakeSession(FakeResponse(403, text='{"detail": "token expired"}'))
    client = PreSignedUrlClient("https://api.example.com", session=session)

    with pytest.raises(PreSignedUrlFailed) as excinfo:
        client.get_presigned_url("tok", "p1", "a.mp4", "video/mp4")

    assert excinfo.value.status_code == 403
    assert "token expired" in str(excinfo.value)
    assert excinfo.value.body == '{"detail": "token expired"}'


def test_invalid_json_is_reported():
    session = FakeSession(FakeResponse(200, None, text="<html>gateway</html>"))

    with pytest.raises(PreSignedUrlFailed, match="not valid JSON"):
        PreSignedUrlClient("https://api.example.com", session=session).get_presigned_url(
            "tok", "p1", "a.mp4", "video/mp4"
        )


@pytest.mark.parametrize(
    "token, filename, content_type",
    [
        ("", "a.mp4", "video/mp4"),
        ("tok", "", "video/mp4"),
        ("tok", "a.mp4", ""),
    ],
)
def test_missing_inputs_fail_before_any_request(token, filename, content_type):
    session = FakeSession(FakeResponse(200, {"upload_url": "https://x"}))
    client = PreSignedUrlClient("https://api.example.com", session=session)

    with pytest.raises(InvalidPreSignedRequest):
        client.get_presigned_url(token, "p1", filename, content_type)

    assert session.calls == []


def test_transport_errors_are_normalized():
    session = FakeSession(exc=requests.ConnectionError("connection refused"))

    with pytest.raises(PreSignedUrlFailed, match="connection refused"):
        PreSignedUrlClient("https://api.example.com", session=session).get_presigned_url(
            "tok", "p1", "a.mp4", "video/mp4"
        )


def test_timeout_is_normalized():
    session = FakeSession(exc=requests.Timeout("read timed out"))

    with pytest.raises(PreSignedUrlFailed, match="timed out after 15s"):
        PreSignedUrlClient("https://api.example.com", session=session).get_presigned_url(
            "tok", "p1", "a.mp4", "video/mp4"
        )


def test_base_url_without_scheme_warns(capsys):
    PreSignedUrlClient("api.example.com", session=FakeSession())

    _, err = capsys.readouterr()
    assert "has no http:// or https:// scheme" in err
