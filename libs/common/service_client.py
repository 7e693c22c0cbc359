"""Async HTTP helpers for calls from the commerce service to its neighbours.

The catalog, members, communications and payments services are only reached
through these helpers; their tables are never queried directly. Every call
carries a short-lived service JWT, the caller's name and the current request
id so logs can be joined across services.
"""

from __future__ import annotations

import time
from typing import Any, Optional

import httpx
from libs.auth.dependencies import _service_role_jwt
from libs.common.config import get_settings
from libs.common.logging import get_logger, get_request_id

logger = get_logger(__name__)

_DEFAULT_TIMEOUT = 10.0

# Safe to resend after a connection failure
_RETRYABLE_METHODS = frozenset({"GET", "PUT", "DELETE"})


def _headers(calling_service: str) -> dict[str, str]:
    headers = {
        "Authorization": f"Bearer {_service_role_jwt(calling_service)}",
        "X-Caller-Service": calling_service,
    }
    request_id = get_request_id()
    if request_id:
        headers["X-Request-ID"] = request_id
    return headers


async def internal_request(
    *,
    service_url: str,
    method: str,
    path: str,
    calling_service: Optional[str] = None,
    json: Any = None,
    params: Optional[dict] = None,
    timeout: float = _DEFAULT_TIMEOUT,
) -> httpx.Response:
    """Make an authenticated service-to-service call and return the response.

    Args:
        service_url: Base URL of the target service (e.g. settings.CATALOG_SERVICE_URL).
        method: HTTP method.
        path: URL path on the target service (e.g. "/internal/carts/abc").
        calling_service: Name put in the JWT "sub" claim; defaults to SERVICE_NAME.
        json: Optional JSON body.
        params: Optional query parameters.
        timeout: Request timeout in seconds.

    Status codes are left to the caller. GET, PUT and DELETE are retried once
    on a transport error; anything else raises ``httpx.TransportError``.
    """
    method = method.upper()
    calling_service = calling_service or get_settings().SERVICE_NAME
    url = f"{service_url}{path}"
    attempts = 2 if method in _RETRYABLE_METHODS else 1

    for attempt in range(1, attempts + 1):
        started = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.request(
                    method,
                    url,
                    headers=_headers(calling_service),
                    json=json,
                    params=params,
                )
        except httpx.TransportError as exc:
            if attempt == attempts:
                logger.error("Internal call %s %s failed: %s", method, url, exc)
                raise
            logger.warning("Internal call %s %s failed, retrying: %s", method, url, exc)
            continue

        elapsed_ms = (time.perf_counter() - started) * 1000
        if response.status_code >= 500:
            logger.warning(
                "Internal call %s %s returned %s in %.0fms",
                method,
                url,
                response.status_code,
                elapsed_ms,
            )
        else:
            logger.debug(
                "Internal call %s %s returned %s in %.0fms",
                method,
                url,
                response.status_code,
                elapsed_ms,
            )
        return response


async def internal_get(
    *,
    service_url: str,
    path: str,
    calling_service: Optional[str] = None,
    params: Optional[dict] = None,
    timeout: float = _DEFAULT_TIMEOUT,
) -> httpx.Response:
    return await internal_request(
        service_url=service_url,
        method="GET",
        path=path,
        calling_service=calling_service,
        params=params,
        timeout=timeout,
    )


async def internal_post(
    *,
    service_url: str,
    path: str,
    calling_service: Optional[str] = None,
    json: Any = None,
    timeout: float = _DEFAULT_TIMEOUT,
) -> httpx.Response:
    return await internal_request(
        service_url=service_url,
        method="POST",
        path=path,
        calling_service=calling_service,
        json=json,
        timeout=timeout,
    )


async def internal_put(
    *,
    service_url: str,
    path: str,
    calling_service: Optional[str] = None,
    json: Any = None,
    timeout: float = _DEFAULT_TIMEOUT,
) -> httpx.Response:
    """PUT is idempotent on the receiving side, so it is retried like GET."""
    return await internal_request(
        service_url=service_url,
        method="PUT",
        path=path,
        calling_service=calling_service,
        json=json,
        timeout=timeout,
    )
