"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import json
import os
import threading
import urllib.parse
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any

import pytest


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip expensive tests during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)


@pytest.fixture(autouse=True)
def _no_proxies(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep requests to the local stub server off any configured proxy."""
    for name in ("HTTP_PROXY", "HTTPS_PROXY", "ALL_PROXY", "http_proxy", "https_proxy", "all_proxy"):
        monkeypatch.delenv(name, raising=False)


SAMPLE_CONFIG = """\
versions:
  chart_version: 1.2.3
  agent_version: 0.9.0

logging:
  level: error

deployment:
  account_id: "000000000000"
  cluster_name: test-cluster
  region: us-east-1

cloudzero:
  host: {host}
  credentials_file: {credentials}
  disable_telemetry: {disable_telemetry}

prometheus:
  kube_state_metrics_service_endpoint: http://kube-state-metrics:8080
  kube_metrics:
    - kube_pod_info
    - kube_node_info
  configurations:
    - {scrape}

diagnostics:
  max_workers: 4
  retry:
    attempts: 2
    interval: 0.01
  backoff:
    attempts: 2
    base: 0.01
    timeout: 1
  stages:
    - name: pre-start
      enforce: true
      checks:
        - k8s_namespace
        - scrape_cfg
    - name: post-start
      enforce: false
      checks:
        - k8s_namespace
    - name: pre-stop
      enforce: false
      checks: []
"""


def write_config(
    directory: Path,
    *,
    host: str = "https://api.example.invalid",
    disable_telemetry: bool = True,
    name: str = "validator.yml",
) -> Path:
    """Write a complete validator config (plus its referenced files) into *directory*."""
    credentials = directory / "api-key"
    credentials.write_text("secret-key\n", encoding="utf-8")
    scrape = directory / "prometheus.yml"
    scrape.write_text("scrape_configs: []\n", encoding="utf-8")
    path = directory / name
    path.write_text(
        SAMPLE_CONFIG.format(
            host=host,
            credentials=credentials,
            scrape=scrape,
            disable_telemetry=str(disable_telemetry).lower(),
        ),
        encoding="utf-8",
    )
    return path


@pytest.fixture()
def sample_config(tmp_path: Path) -> Path:
    """Return the path of a valid validator config with telemetry disabled."""
    return write_config(tmp_path)


@dataclass
class RecordedRequest:
    """Request captured by :class:`StubServer`."""

    method: str
    path: str
    query: dict[str, list[str]]
    headers: dict[str, str]
    body: bytes


@dataclass
class StubServer:
    """Scripted HTTP server; responses are queued per ``(method, path)``.

    The last queued response for a route is repeated once the queue drains.
    Unscripted routes answer 404.
    """

    url: str = ""
    requests: list[RecordedRequest] = field(default_factory=list)
    _routes: dict[tuple[str, str], list[tuple[int, bytes]]] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def expect(
        self,
        method: str,
        path: str,
        *,
        status: int = 200,
        body: bytes | str | dict[str, object] = b"",
    ) -> None:
        if isinstance(body, dict):
            payload = json.dumps(body).encode("utf-8")
        elif isinstance(body, str):
            payload = body.encode("utf-8")
        else:
            payload = body
        with self._lock:
            self._routes.setdefault((method.upper(), path), []).append((status, payload))

    def respond(self, request: RecordedRequest) -> tuple[int, bytes]:
        with self._lock:
            self.requests.append(request)
            queue = self._routes.get((request.method, request.path))
            if not queue:
                return 404, b"not found"
            if len(queue) > 1:
                return queue.pop(0)
            return queue[0]

    def requests_for(self, method: str, path: str) -> list[RecordedRequest]:
        with self._lock:
            return [
                item for item in self.requests if item.method == method and item.path == path
            ]


def _handler_for(stub: StubServer) -> type[BaseHTTPRequestHandler]:
    class Handler(BaseHTTPRequestHandler):
        def _handle(self) -> None:
            split = urllib.parse.urlsplit(self.path)
            length = int(self.headers.get("Content-Length") or 0)
            body = self.rfile.read(length) if length else b""
            status, payload = stub.respond(
                RecordedRequest(
                    method=self.command,
                    path=split.path,
                    query=urllib.parse.parse_qs(split.query),
                    headers={key.lower(): value for key, value in self.headers.items()},
                    body=body,
                )
            )
            self.send_response(status)
            self.send_header("Content-Length", str(len(payload)))
            self.end_headers()
            self.wfile.write(payload)

        do_GET = _handle
        do_POST = _handle

        def log_message(self, format: str, *args: object) -> None:
            return

    return Handler


@pytest.fixture()
def stub_server() -> Iterator[StubServer]:
    """Serve scripted responses from a background thread."""
    stub = StubServer()
    server = ThreadingHTTPServer(("127.0.0.1", 0), _handler_for(stub))
    host, port = server.server_address[:2]
    stub.url = f"http://{host}:{port}"
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield stub
    finally:
        server.shutdown()
        server.server_close()
        thread.join(timeout=5)


@pytest.fixture()
def config_writer(tmp_path: Path) -> Callable[..., Path]:
    """Return a helper writing validator configs into the test's tmp directory."""

    def _write(**kwargs: Any) -> Path:
        return write_config(tmp_path, **kwargs)

    return _write
