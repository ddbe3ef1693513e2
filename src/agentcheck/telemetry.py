"""Publish a finished diagnostic report to the cloud API."""
from __future__ import annotations

import json
import logging

from .config import Settings
from .context import RunContext
from .diagnostic.accessor import StatusAccessor
from .diagnostic.utils import serialize_report
from .http import CONTENT_TYPE_JSON, HEADER_AUTHORIZATION, HEADER_CONTENT_TYPE, HttpClient, HttpError

LOGGER = logging.getLogger(__name__)

STATUS_PATH = "/v1/container-metrics/status"
POST_TIMEOUT = 15.0
QUERY_PARAM_CLUSTER_NAME = "cluster_name"
QUERY_PARAM_ACCOUNT_ID = "cloud_account_id"
QUERY_PARAM_REGION = "region"


class TelemetryError(RuntimeError):
    """Raised when the report cannot be published."""


def post_report(
    ctx: RunContext,
    client: HttpClient,
    settings: Settings,
    accessor: StatusAccessor,
) -> bool:
    """POST the report held by *accessor*; return ``False`` when telemetry is disabled."""
    cloud = settings.cloudzero
    if not cloud.host:
        raise TelemetryError("missing cloudzero host")
    if not cloud.credential:
        raise TelemetryError("missing cloudzero api key")
    if cloud.disable_telemetry:
        LOGGER.debug("Telemetry disabled; report not published")
        return False

    data = accessor.read_from_report(
        lambda report: json.dumps(serialize_report(report)).encode("utf-8")
    )
    LOGGER.info("Serialised cluster status: %d bytes", len(data))

    url = f"{cloud.host}{STATUS_PATH}"
    try:
        response = client.post(
            ctx,
            url,
            headers={
                HEADER_AUTHORIZATION: f"Bearer {cloud.credential}",
                HEADER_CONTENT_TYPE: CONTENT_TYPE_JSON,
            },
            params={
                QUERY_PARAM_ACCOUNT_ID: settings.deployment.account_id,
                QUERY_PARAM_REGION: settings.deployment.region,
                QUERY_PARAM_CLUSTER_NAME: settings.deployment.cluster_name,
            },
            body=data,
            timeout=POST_TIMEOUT,
        )
    except HttpError as exc:
        raise TelemetryError(f"failed to post the report: {exc}") from exc
    if not response.ok:
        raise TelemetryError(f"report rejected with HTTP {response.status}: {response.text()}")
    return True


__all__ = ["STATUS_PATH", "TelemetryError", "post_report"]
