"""Minimal read-only access to the Kubernetes API from inside a pod.

Only the handful of calls the probes need are implemented: the server version
and single pod/node lookups. Authentication uses the mounted service account.
"""
from __future__ import annotations

import logging
import os
import ssl
import urllib.parse
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from .context import RunContext
from .http import HEADER_ACCEPT, HEADER_AUTHORIZATION, CONTENT_TYPE_JSON, HttpClient, HttpError

LOGGER = logging.getLogger(__name__)

SERVICE_ACCOUNT_DIR = Path("/var/run/secrets/kubernetes.io/serviceaccount")
ENV_SERVICE_HOST = "KUBERNETES_SERVICE_HOST"
ENV_SERVICE_PORT = "KUBERNETES_SERVICE_PORT"


class KubeError(RuntimeError):
    """Raised when the API server cannot be reached or answers unexpectedly."""


class KubeClient:
    """Issue authenticated GET requests against one API server."""

    def __init__(
        self,
        host: str,
        *,
        token: str = "",
        http: HttpClient | None = None,
    ) -> None:
        """Target *host* (scheme included), optionally with a bearer *token*."""
        self.host = host.rstrip("/")
        self._token = token
        self._http = http or HttpClient()

    @classmethod
    def in_cluster(
        cls,
        env: Mapping[str, str] | None = None,
        service_account_dir: Path = SERVICE_ACCOUNT_DIR,
    ) -> KubeClient:
        """Build a client from the service account mounted into the pod."""
        resolved_env = os.environ if env is None else env
        host = resolved_env.get(ENV_SERVICE_HOST, "").strip()
        port = resolved_env.get(ENV_SERVICE_PORT, "").strip()
        if not host or not port:
            raise KubeError(
                f"unable to load in-cluster configuration, {ENV_SERVICE_HOST} and "
                f"{ENV_SERVICE_PORT} must be defined"
            )
        try:
            token = (service_account_dir / "token").read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise KubeError(f"failed to read the service account token: {exc}") from exc

        ca_file = service_account_dir / "ca.crt"
        ssl_context = None
        if ca_file.exists():
            ssl_context = ssl.create_default_context(cafile=str(ca_file))

        if ":" in host:
            host = f"[{host}]"
        return cls(
            f"https://{host}:{port}",
            token=token,
            http=HttpClient(ssl_context=ssl_context),
        )

    def get_json(self, ctx: RunContext, path: str) -> dict[str, Any]:
        """GET *path* and return the decoded JSON object."""
        headers = {HEADER_ACCEPT: CONTENT_TYPE_JSON}
        if self._token:
            headers[HEADER_AUTHORIZATION] = f"Bearer {self._token}"
        url = f"{self.host}{path}"
        try:
            response = self._http.get(ctx, url, headers=headers)
        except HttpError as exc:
            raise KubeError(str(exc)) from exc
        if not response.ok:
            raise KubeError(f"GET {path} returned HTTP {response.status}")
        try:
            payload = response.json()
        except HttpError as exc:
            raise KubeError(f"GET {path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise KubeError(f"GET {path}: expected a JSON object")
        return payload

    def server_version(self, ctx: RunContext) -> str:
        """Return the API server version as ``major.minor``."""
        info = self.get_json(ctx, "/version")
        return f"{info.get('major', '')}.{info.get('minor', '')}"

    def get_pod(self, ctx: RunContext, namespace: str, name: str) -> dict[str, Any]:
        """Return the pod object *name* in *namespace*."""
        path = (
            f"/api/v1/namespaces/{urllib.parse.quote(namespace, safe='')}"
            f"/pods/{urllib.parse.quote(name, safe='')}"
        )
        return self.get_json(ctx, path)

    def get_node(self, ctx: RunContext, name: str) -> dict[str, Any]:
        """Return the node object *name*."""
        return self.get_json(ctx, f"/api/v1/nodes/{urllib.parse.quote(name, safe='')}")

    def provider_id(self, ctx: RunContext, namespace: str, pod_name: str) -> str:
        """Resolve the cloud provider id of the node running *pod_name*."""
        try:
            pod = self.get_pod(ctx, namespace, pod_name)
        except KubeError as exc:
            raise KubeError(f"failed to query the pod: {exc}") from exc
        node_name = str(pod.get("spec", {}).get("nodeName") or "")
        if not node_name:
            raise KubeError(f"pod {namespace}/{pod_name} is not scheduled on a node")
        try:
            node = self.get_node(ctx, node_name)
        except KubeError as exc:
            raise KubeError(f"failed to get the node: {exc}") from exc
        LOGGER.debug("Pod %s/%s runs on node %s", namespace, pod_name, node_name)
        return str(node.get("spec", {}).get("providerID") or "")


__all__ = ["ENV_SERVICE_HOST", "ENV_SERVICE_PORT", "KubeClient", "KubeError", "SERVICE_ACCOUNT_DIR"]
