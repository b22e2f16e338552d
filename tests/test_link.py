from __future__ import annotations

from unittest.mock import MagicMock, patch

import requests

from pollex.view.link import HttpLink


@patch("pollex.view.link.requests.post")
def test_http_link_posts_start_message(mock_post):  # noqa: ANN001
    mock_post.return_value.json.return_value = {"ok": True}

    resp = HttpLink("http://127.0.0.1:8091/", timeout_s=3).start("hello", "m1")

    assert resp == {"ok": True}
    args, kwargs = mock_post.call_args
    assert args[0] == "http://127.0.0.1:8091/messages"
    assert kwargs["json"] == {"type": "START", "payload": {"text": "hello", "modelId": "m1"}}
    assert kwargs["timeout"] == 3


@patch("pollex.view.link.requests.post")
def test_http_link_passes_rejections_through(mock_post):  # noqa: ANN001
    mock_post.return_value.json.return_value = {"ok": False, "error": "Already running"}

    assert HttpLink("http://c").start("hello", "m1") == {"ok": False, "error": "Already running"}


@patch("pollex.view.link.requests.post", side_effect=requests.exceptions.ConnectionError("refused"))
def test_http_link_reports_unreachable_coordinator(mock_post):  # noqa: ANN001
    resp = HttpLink("http://c").cancel()

    assert resp["ok"] is False
    assert resp["error"].startswith("Coordinator unavailable")


@patch("pollex.view.link.requests.post")
def test_http_link_rejects_malformed_reply(mock_post):  # noqa: ANN001
    bad_json = MagicMock()
    bad_json.json.side_effect = ValueError("no json")
    mock_post.return_value = bad_json
    assert HttpLink("http://c").cancel() == {"ok": False, "error": "Malformed coordinator response"}

    mock_post.return_value = MagicMock(**{"json.return_value": ["not", "a", "dict"]})
    assert HttpLink("http://c").cancel() == {"ok": False, "error": "Malformed coordinator response"}
