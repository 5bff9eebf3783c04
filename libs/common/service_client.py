"""Reusable async HTTP client for internal service-to-service communication.

All cross-service calls should go through this helper instead of importing
models or querying tables from other services directly.
"""

from __future__ import annotations

import uuid
from typing import Any, Optional

import httpx
from libs.auth.dependencies import service_role_jwt
from libs.common.config import get_settings
from libs.common.logging import get_logger

logger = get_logger(__name__)

# Default timeout for internal calls (seconds).
_DEFAULT_TIMEOUT = 10.0


async def internal_request(
    *,
    service_url: str,
    method: str,
    path: str,
    calling_service: str,
    json: Any = None,
    params: Optional[dict] = None,
    timeout: float = _DEFAULT_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.Response:
    """Make an authenticated internal service-to-service HTTP call.

    Args:
        service_url: Base URL of the target service.
        method: HTTP method (GET, POST, ...).
        path: URL path on the target service.
        calling_service: Name of the calling service for the JWT "sub" claim.
        json: Optional JSON body.
        params: Optional query parameters.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport (tests pass a MockTransport).

    Raises:
        httpx.RequestError on connection failures.
    """
    url = f"{service_url}{path}"
    headers = {
        "Authorization": f"Bearer {service_role_jwt(calling_service)}",
        "X-Caller-Service": calling_service,
    }

    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        response = await client.request(
            method,
            url,
            headers=headers,
            json=json,
            params=params,
        )
    return response


async def internal_post(
    *,
    service_url: str,
    path: str,
    calling_service: str,
    json: Any = None,
    timeout: float = _DEFAULT_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.Response:
    """Convenience wrapper for POST requests."""
    return await internal_request(
        service_url=service_url,
        method="POST",
        path=path,
        calling_service=calling_service,
        json=json,
        timeout=timeout,
        transport=transport,
    )


# ---------------------------------------------------------------------------
# Messaging Service helpers
# ---------------------------------------------------------------------------


async def send_customer_message(
    conversation_id: uuid.UUID | str,
    text: str,
    *,
    calling_service: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> dict:
    """Deliver a text message to the customer on an existing conversation.

    Returns the messaging service's JSON body. Raises httpx errors on failure.
    """
    settings = get_settings()
    resp = await internal_post(
        service_url=settings.MESSAGING_SERVICE_URL,
        path=f"/internal/conversations/{conversation_id}/messages",
        calling_service=calling_service,
        json={"text": text, "sender": "business"},
        transport=transport,
    )
    resp.raise_for_status()
    return resp.json()
