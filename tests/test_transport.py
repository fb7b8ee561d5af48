from __future__ import annotations

import io
from urllib import error

import pytest

from pnode_watch import transport
from pnode_watch.errors import UpstreamError
from pnode_watch.transport import http_json


class _Response(io.BytesIO):
    def __enter__(self) -> "_Response":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def _serve(monkeypatch: pytest.MonkeyPatch, body: bytes) -> list:
    seen = []

    def urlopen(req, timeout=None):
        seen.append((req, timeout))
        return _Response(body)

    monkeypatch.setattr(transport.request, "urlopen", urlopen)
    return seen


def test_parses_json_and_sends_payload(monkeypatch: pytest.MonkeyPatch) -> None:
    seen = _serve(monkeypatch, b'{"result": {"pods": []}}')

    result = http_json("http://seed.test:6000/rpc", method="POST", payload={"id": 1}, timeout_seconds=3)

    req, timeout = seen[0]
    assert result == {"result": {"pods": []}}
    assert timeout == 3
    assert req.get_method() == "POST"
    assert req.data == b'{"id": 1}'


def test_empty_body_is_empty_object(monkeypatch: pytest.MonkeyPatch) -> None:
    _serve(monkeypatch, b"")

    assert http_json("http://seed.test/rpc") == {}


def test_non_utf8_body_is_upstream_error(monkeypatch: pytest.MonkeyPatch) -> None:
    _serve(monkeypatch, b'{"result": "\xff\xfe"}')

    with pytest.raises(UpstreamError, match="Malformed response"):
        http_json("http://seed.test/rpc")


def test_malformed_json_is_upstream_error(monkeypatch: pytest.MonkeyPatch) -> None:
    _serve(monkeypatch, b"<html>gateway</html>")

    with pytest.raises(UpstreamError, match="Malformed JSON"):
        http_json("http://seed.test/rpc")


def test_http_error_keeps_status_code(monkeypatch: pytest.MonkeyPatch) -> None:
    def urlopen(req, timeout=None):
        raise error.HTTPError(req.full_url, 503, "Service Unavailable", {}, None)

    monkeypatch.setattr(transport.request, "urlopen", urlopen)

    with pytest.raises(UpstreamError) as excinfo:
        http_json("http://seed.test/rpc")

    assert excinfo.value.status_code == 503
