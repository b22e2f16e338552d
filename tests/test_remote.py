from __future__ import annotations

import json

import pytest
import requests

from pollex import remote
from pollex.config import SERVICE
from pollex.jobs.errors import TransportError
from pollex.jobs.store import SharedStore
from pollex.jobs.types import JobResult


def _response(status: int, body) -> requests.Response:  # noqa: ANN001
    resp = requests.Response()
    resp.status_code = status
    resp._content = body if isinstance(body, bytes) else json.dumps(body).encode("utf-8")
    return resp


@pytest.fixture
def sent(monkeypatch):  # noqa: ANN001,ANN201
    """Capture outgoing requests; tests set ``sent.reply`` to a Response or an exception."""

    class _Sent:
        calls: list = []
        reply = None

    _Sent.calls = []

    def _fake_request(method, url, **kwargs):  # noqa: ANN001,ANN003,ANN202
        _Sent.calls.append((method, url, kwargs))
        if isinstance(_Sent.reply, Exception):
            raise _Sent.reply
        return _Sent.reply

    monkeypatch.setattr(remote.requests, "request", _fake_request)
    return _Sent


def test_connection_falls_back_to_defaults(store: SharedStore) -> None:
    assert remote.get_connection(store) == (SERVICE.default_endpoint_url.rstrip("/"), "")

    remote.save_connection(store, endpoint_url=" http://svc:9000/api/ ", api_key=" k1 ")

    assert remote.get_connection(store) == ("http://svc:9000/api", "k1")


def test_rewrite_posts_text_and_parses_result(store: SharedStore, sent) -> None:  # noqa: ANN001
    remote.save_connection(store, endpoint_url="http://svc/api", api_key="secret")
    sent.reply = _response(200, {"polished": "Fix this sentence.", "model": "m1", "elapsed_ms": 1200})

    res = remote.fetch_rewrite("fix this sentance", "m1", store=store, timeout_s=70)

    assert res == JobResult(polished="Fix this sentence.", model="m1", elapsed_ms=1200)
    method, url, kwargs = sent.calls[0]
    assert (method, url) == ("POST", "http://svc/api/rewrite")
    assert kwargs["json"] == {"text": "fix this sentance", "model_id": "m1"}
    assert kwargs["headers"]["X-API-Key"] == "secret"
    assert kwargs["timeout"] == 70


def test_no_api_key_header_when_unset(store: SharedStore, sent) -> None:  # noqa: ANN001
    sent.reply = _response(200, [])

    remote.fetch_models(store)

    assert "X-API-Key" not in sent.calls[0][2]["headers"]


def test_error_envelope_becomes_message(store: SharedStore, sent) -> None:  # noqa: ANN001
    sent.reply = _response(502, {"error": "Model not loaded"})

    with pytest.raises(TransportError, match="Model not loaded") as ei:
        remote.fetch_rewrite("hi", "m1", store=store)
    assert ei.value.status_code == 502


def test_error_without_envelope_uses_status(store: SharedStore, sent) -> None:  # noqa: ANN001
    sent.reply = _response(500, b"<html>oops</html>")

    with pytest.raises(TransportError, match="Request failed: 500"):
        remote.fetch_rewrite("hi", "m1", store=store)


@pytest.mark.parametrize("body", [b"not json", {"model": "m1"}, ["list"]])
def test_malformed_rewrite_response(store: SharedStore, sent, body) -> None:  # noqa: ANN001
    sent.reply = _response(200, body)

    with pytest.raises(TransportError, match="Malformed response"):
        remote.fetch_rewrite("hi", "m1", store=store)


@pytest.mark.parametrize(
    "exc,msg",
    [
        (requests.exceptions.Timeout("slow"), "Request timed out."),
        (requests.exceptions.ConnectionError("refused"), "Cannot reach polishing service"),
        (requests.exceptions.InvalidURL("bad"), "Request failed: bad"),
    ],
)
def test_transport_failures(store: SharedStore, sent, exc, msg) -> None:  # noqa: ANN001
    sent.reply = exc

    with pytest.raises(TransportError, match=msg):
        remote.fetch_rewrite("hi", "m1", store=store)


def test_health(store: SharedStore, sent) -> None:  # noqa: ANN001
    sent.reply = _response(200, {"status": "ok", "version": "1.0"})

    assert remote.fetch_health(store, base_url="http://other/api/")["status"] == "ok"
    assert sent.calls[0][1] == "http://other/api/health"

    sent.reply = _response(200, {"unexpected": True})
    with pytest.raises(TransportError):
        remote.fetch_health(store)


def test_models_are_filtered_and_grouped(store: SharedStore, sent) -> None:  # noqa: ANN001
    sent.reply = _response(
        200,
        [
            {"id": "llama3", "name": "Llama 3", "provider": "ollama"},
            {"name": "no id"},
            {"id": "sonnet", "name": "Sonnet", "provider": "claude"},
            {"id": "mock", "name": "Mock", "provider": "mock"},
        ],
    )

    models = remote.fetch_models(store)
    groups = remote.group_models_by_provider(models)

    assert [m["id"] for m in models] == ["llama3", "sonnet", "mock"]
    assert list(groups) == ["Local", "Cloud"]
    assert [m["id"] for m in groups["Local"]] == ["llama3", "mock"]
