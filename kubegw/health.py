"""Periodic health probe of an upstream apiserver endpoint."""

from __future__ import annotations

import logging
from typing import Tuple

import httpx

from kubegw.endpoint import EndpointInfo

logger = logging.getLogger(__name__)

HEALTHZ_PATH = "/healthz"
HEALTH_CHECK_TIMEOUT = 5.0

_GENERIC_REASONS = {
    400: ("BadRequest", "the server rejected our request for an unknown reason"),
    401: ("Unauthorized", "the server has asked for the client to provide credentials"),
    403: ("Forbidden", "the server does not allow access to the requested resource"),
    404: ("NotFound", "the server could not find the requested resource"),
    405: ("MethodNotAllowed", "the server does not allow this method on the requested resource"),
    406: ("NotAcceptable", "the server was unable to respond with a content type that the client supports"),
    409: ("Conflict", "the server reported a conflict"),
    415: ("UnsupportedMediaType", "the server was unable to respond with a content type that the client supports"),
    422: ("Invalid", "the server rejected our request due to an error in our request"),
    429: ("TooManyRequests", "the server has received too many requests and has asked us to try again later"),
    503: ("ServiceUnavailable", "the server is currently unable to handle the request"),
    504: (
        "Timeout",
        "the server was unable to return a response in the time allotted, "
        "but may still be processing the request",
    ),
}


def _api_status(response: httpx.Response) -> Tuple[str, str]:
    """Reason and message of an error response, as an apiserver client reports them."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("kind") == "Status":
        return str(body.get("reason", "") or ""), str(body.get("message", "") or "")

    code = response.status_code
    server_message = response.text.strip()
    known = _GENERIC_REASONS.get(code)
    if known is not None:
        return known
    if code >= 500:
        return (
            "InternalError",
            f'an error on the server ("{server_message}") has prevented the request from succeeding',
        )
    return (
        "Unknown",
        f"the server responded with the status code {code} but did not return more information",
    )


def gateway_health_check(endpoint: EndpointInfo) -> bool:
    """Probe ``/healthz`` of the endpoint and record the outcome.

    Always returns False so that the probe keeps running.
    """
    try:
        response = endpoint.clientset.get(HEALTHZ_PATH, timeout=HEALTH_CHECK_TIMEOUT)
    except httpx.TimeoutException as exc:
        reason, message = "Timeout", str(exc)
    except Exception as exc:  # noqa: BLE001 - any failure makes the endpoint unhealthy
        reason, message = "Failure", str(exc)
    else:
        code = response.status_code
        if code == 200:
            endpoint.update_status(True, "", "")
            return False
        if 200 <= code <= 206:
            reason = "NotReady"
            message = f"request {endpoint.endpoint}/healthz, got response code is {code}"
        else:
            reason, message = _api_status(response)

    logger.error(
        "upstream health check failed, cluster=%r endpoint=%r reason=%r message=%r",
        endpoint.cluster,
        endpoint.endpoint,
        reason,
        message,
    )
    endpoint.update_status(False, reason, message)
    return False