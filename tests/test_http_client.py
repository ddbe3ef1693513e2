"""Tests for the shared HTTP client."""

from __future__ import annotations

import http.client
import socket

import pytest

from agentcheck.context import RunContext
from agentcheck.http import HttpClient, HttpError, HttpResponse


def test_get_returns_body_and_status(stub_server) -> None:
    stub_server.expect("GET", "/ping", body={"pong": True})

    response = HttpClient().get(RunContext.background(), f"{stub_server.url}/ping")

    assert response.ok
    assert response.status == 200
    assert response.json() == {"pong": True}


def test_non_success_status_is_returned_not_raised(stub_server) -> None:
    stub_server.expect("GET", "/missing", status=404, body="gone")

    response = HttpClient().get(RunContext.background(), f"{stub_server.url}/missing")

    assert not response.ok
    assert response.status == 404
    assert response.text() == "gone"


def test_params_and_headers_are_sent(stub_server) -> None:
    stub_server.expect("POST", "/submit", status=204)

    HttpClient().post(
        RunContext.background(),
        f"{stub_server.url}/submit?fixed=1",
        headers={"X-Token": "abc"},
        params={"cluster_name": "c one", "region": "r"},
        body=b"payload",
    )

    (request,) = stub_server.requests_for("POST", "/submit")
    assert request.query == {"fixed": ["1"], "cluster_name": ["c one"], "region": ["r"]}
    assert request.headers["x-token"] == "abc"
    assert request.body == b"payload"


def test_connection_failure_raises_http_error() -> None:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]

    with pytest.raises(HttpError):
        HttpClient(timeout=1).get(RunContext.background(), f"http://127.0.0.1:{port}/")


def test_cancelled_context_short_circuits() -> None:
    ctx = RunContext.background()
    ctx.cancel()

    with pytest.raises(HttpError, match="cancelled"):
        HttpClient().get(ctx, "http://127.0.0.1:9/")


def test_invalid_json_raises_http_error() -> None:
    with pytest.raises(HttpError, match="invalid JSON"):
        HttpResponse(status=200, body=b"not json").json()


def test_url_without_scheme_raises_http_error() -> None:
    with pytest.raises(HttpError, match="unknown url type"):
        HttpClient().get(RunContext.background(), "api.example.com/v2/insights")


def test_truncated_response_raises_http_error(monkeypatch: pytest.MonkeyPatch) -> None:
    client = HttpClient()

    def _truncated(*args: object, **kwargs: object) -> object:
        raise http.client.IncompleteRead(b"partial", 10)

    monkeypatch.setattr(client._opener, "open", _truncated)  # type: ignore[attr-defined]

    with pytest.raises(HttpError, match="IncompleteRead"):
        client.get(RunContext.background(), "http://127.0.0.1:9/")
