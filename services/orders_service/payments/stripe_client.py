"""
Stripe API client for hosted Checkout Sessions.

Stripe's REST API takes form-encoded bodies with bracketed keys
(``line_items[0][price_data][currency]``), so payloads are flattened here
rather than sent as JSON.
"""

from dataclasses import dataclass
from typing import Any, Optional

import httpx
from libs.common.config import get_settings
from libs.common.logging import get_logger

logger = get_logger(__name__)


@dataclass
class CheckoutSession:
    """Result of creating a Checkout Session."""

    id: str
    url: str
    status: Optional[str] = None
    expires_at: Optional[int] = None  # unix seconds


class StripeError(Exception):
    """Base exception for Stripe API errors."""

    def __init__(
        self, message: str, status_code: int = None, response_data: dict = None
    ):
        self.message = message
        self.status_code = status_code
        self.response_data = response_data or {}
        super().__init__(message)


def flatten_form(data: Any, prefix: str = "") -> dict[str, str]:
    """Flatten nested dicts/lists into Stripe's bracketed form keys."""
    flat: dict[str, str] = {}
    if isinstance(data, dict):
        items = data.items()
    elif isinstance(data, (list, tuple)):
        items = enumerate(data)
    else:
        flat[prefix] = str(data).lower() if isinstance(data, bool) else str(data)
        return flat

    for key, value in items:
        name = f"{prefix}[{key}]" if prefix else str(key)
        if value is None:
            continue
        flat.update(flatten_form(value, name))
    return flat


class StripeClient:
    """Async client for the Stripe Checkout API."""

    def __init__(
        self,
        secret_key: str = None,
        api_base: str = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.secret_key = secret_key or settings.STRIPE_SECRET_KEY
        if not self.secret_key:
            raise ValueError("STRIPE_SECRET_KEY is required")
        self.api_base = (api_base or settings.STRIPE_API_BASE).rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._headers = {"Authorization": f"Bearer {self.secret_key}"}

    async def _request(self, method: str, endpoint: str, form: dict = None) -> dict:
        """Make an async request to the Stripe API."""
        url = f"{self.api_base}{endpoint}"

        async with httpx.AsyncClient(
            timeout=self.timeout, transport=self._transport
        ) as client:
            try:
                response = await client.request(
                    method=method,
                    url=url,
                    headers=self._headers,
                    data=flatten_form(form) if form else None,
                )
            except httpx.HTTPError as exc:
                raise StripeError(f"Stripe request failed: {exc}") from exc

        try:
            data = response.json()
        except ValueError:
            data = {}

        if not response.is_success:
            error = data.get("error") or {}
            logger.error("Stripe API error: %s - %s", response.status_code, error)
            raise StripeError(
                message=error.get("message", "Unknown Stripe error"),
                status_code=response.status_code,
                response_data=data,
            )
        return data

    # =========================================================================
    # Checkout Sessions
    # =========================================================================

    async def create_checkout_session(
        self,
        *,
        line_items: list[dict],
        success_url: str,
        cancel_url: str,
        metadata: Optional[dict] = None,
    ) -> CheckoutSession:
        """
        Create a one-off payment Checkout Session.

        Args:
            line_items: ``[{"price_data": {...}, "quantity": n}, ...]``
            success_url: Redirect after payment
            cancel_url: Redirect when the customer backs out
            metadata: Echoed back on webhook events

        Returns:
            CheckoutSession with the hosted URL
        """
        data = await self._request(
            "POST",
            "/checkout/sessions",
            form={
                "mode": "payment",
                "success_url": success_url,
                "cancel_url": cancel_url,
                "line_items": line_items,
                "metadata": metadata or {},
            },
        )
        if not data.get("id") or not data.get("url"):
            raise StripeError("Stripe response missing session id or url", response_data=data)

        return CheckoutSession(
            id=data["id"],
            url=data["url"],
            status=data.get("status"),
            expires_at=data.get("expires_at"),
        )
