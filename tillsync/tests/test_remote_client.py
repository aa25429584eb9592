import base64
import json
from urllib.error import URLError
from urllib.parse import parse_qs, urlparse

import pytest

from tillsync.app import remote_client
from tillsync.app.remote_client import (
    RemoteStoreBusy,
    RemoteStoreClient,
    RemoteStoreError,
    decode_payload,
    encode_payload,
)

URL = "https://remote.example/exec"


class _FakeResponse:
    def __init__(self, body):
        self._body = body if isinstance(body, str) else json.dumps(body)

    def read(self):
        return self._body.encode("utf-8")

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


@pytest.fixture
def wire(monkeypatch):
    sent = {"requests": [], "reply": {}}

    def fake_urlopen(req, timeout=None):
        sent["requests"].append(req)
        sent["timeout"] = timeout
        if isinstance(sent["reply"], Exception):
            raise sent["reply"]
        return _FakeResponse(sent["reply"])

    monkeypatch.setattr(remote_client, "urlopen", fake_urlopen)
    return sent


def test_pull_decodes_payload(wire):
    wire["reply"] = {"status": "success", "payload": encode_payload({"products": [{"id": "1000"}]})}
    data = RemoteStoreClient(URL, "s3cret", timeout=7).pull()
    assert data == {"products": [{"id": "1000"}]}

    (req,) = wire["requests"]
    assert req.get_method() == "GET"
    query = parse_qs(urlparse(req.full_url).query)
    assert query["action"] == ["pull"]
    assert query["secret"] == ["s3cret"]
    assert "t" in query
    assert wire["timeout"] == 7


def test_pull_of_empty_store_is_none(wire):
    wire["reply"] = {}
    assert RemoteStoreClient(URL).pull() is None


def test_push_body_carries_base64_snapshot(wire):
    wire["reply"] = {"status": "success", "version": "2026-03-02T09:00:00+00:00"}
    RemoteStoreClient(URL + "?deployment=1", "s3cret").push({"customers": [{"name": "Ñoño"}]})

    (req,) = wire["requests"]
    assert req.get_method() == "POST"
    assert req.get_header("Content-type") == "text/plain"
    assert "deployment=1&action=push" in req.full_url
    body = json.loads(req.data.decode("utf-8"))
    assert body["action"] == "push"
    assert body["secret"] == "s3cret"
    envelope = json.loads(base64.b64decode(body["payload"]).decode("utf-8"))
    assert envelope["data"] == {"customers": [{"name": "Ñoño"}]}
    assert envelope["timestamp"]


def test_error_and_busy_statuses_raise(wire):
    wire["reply"] = {"status": "error", "message": "access denied"}
    with pytest.raises(RemoteStoreError, match="access denied"):
        RemoteStoreClient(URL).pull()
    wire["reply"] = {"status": "busy"}
    with pytest.raises(RemoteStoreBusy):
        RemoteStoreClient(URL).push({"products": []})


def test_transport_failures_become_remote_errors(wire):
    wire["reply"] = "<html>not json</html>"
    with pytest.raises(RemoteStoreError, match="malformed"):
        RemoteStoreClient(URL).pull()
    wire["reply"] = URLError("connection refused")
    with pytest.raises(RemoteStoreError, match="unreachable"):
        RemoteStoreClient(URL).pull()


def test_verify_sends_trivial_payload(wire):
    wire["reply"] = {"status": "success", "message": "connection verified"}
    assert RemoteStoreClient(URL).verify() is True
    body = json.loads(wire["requests"][0].data.decode("utf-8"))
    assert body["payload"] == ""


def test_only_http_urls_are_accepted():
    with pytest.raises(RemoteStoreError):
        RemoteStoreClient("ftp://remote.example/exec")
    with pytest.raises(RemoteStoreError):
        RemoteStoreClient("")


def test_undecodable_payload():
    with pytest.raises(RemoteStoreError):
        decode_payload("***")
    legacy = base64.b64encode(json.dumps({"products": []}).encode()).decode()
    assert decode_payload(legacy) == {"products": []}
