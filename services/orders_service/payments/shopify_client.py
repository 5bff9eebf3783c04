"""
Shopify Admin REST client for draft orders and regular orders.

Also holds the payload builders shared by the payment-link path (draft
orders with an invoice URL) and the cash-sync path (already-paid orders).
"""

import re
from dataclasses import dataclass
from typing import Optional

import httpx
from libs.common.config import get_settings
from libs.common.currency import to_major_units_str
from libs.common.logging import get_logger
from services.orders_service.models import DeliveryType
from services.orders_service.payments.base import PaymentRequest

logger = get_logger(__name__)

VARIANT_GID_RE = re.compile(r"/ProductVariant/(\d+)$")


@dataclass
class DraftOrderResult:
    id: str
    name: str
    invoice_url: str


@dataclass
class MarketplaceOrderResult:
    id: str
    name: str


class ShopifyError(Exception):
    """Base exception for Shopify API errors."""

    def __init__(
        self, message: str, status_code: int = None, response_data: dict = None
    ):
        self.message = message
        self.status_code = status_code
        self.response_data = response_data or {}
        super().__init__(message)


# ============================================================================
# Payload builders
# ============================================================================


def parse_variant_id(external_variant_id: Optional[str]) -> Optional[int]:
    """``gid://shopify/ProductVariant/123`` -> 123; plain digits are accepted."""
    if not external_variant_id:
        return None
    value = external_variant_id.strip()
    if value.isdigit():
        return int(value)
    match = VARIANT_GID_RE.search(value)
    return int(match.group(1)) if match else None


def build_line_items(request: PaymentRequest) -> tuple[list[dict], list[str]]:
    """Map order lines to Shopify variant lines, collecting the ones that can't be."""
    line_items: list[dict] = []
    skipped: list[str] = []
    for line in request.lines:
        if not line.external_variant_id:
            skipped.append(f"{line.name} (manual product, no Shopify variant)")
            continue
        variant_id = parse_variant_id(line.external_variant_id)
        if variant_id is None:
            skipped.append(f"{line.name} (invalid Shopify variant ID format)")
            continue
        line_items.append({"variant_id": variant_id, "quantity": line.quantity})
    return line_items, skipped


def _common_fields(request: PaymentRequest, line_items: list[dict]) -> dict:
    body: dict = {
        "line_items": line_items,
        "note": request.notes or f"Echo Order: {request.order_number}",
        "tags": f"echo,{request.order_number}",
    }
    if request.contact_name or request.contact_phone:
        body["customer"] = {
            "first_name": request.contact_name or "Customer",
            "phone": request.contact_phone,
        }
    if request.delivery_type == DeliveryType.DELIVERY and request.delivery_address:
        body["shipping_address"] = {
            "address1": request.delivery_address,
            "phone": request.contact_phone,
        }
    if request.delivery_fee > 0:
        body["shipping_line"] = {
            "title": "Delivery",
            "price": to_major_units_str(request.delivery_fee),
        }
    return body


def build_draft_order_payload(request: PaymentRequest, line_items: list[dict]) -> dict:
    body = _common_fields(request, line_items)
    body["use_customer_default_address"] = False
    return {"draft_order": body}


def build_paid_order_payload(request: PaymentRequest, line_items: list[dict]) -> dict:
    """Regular order already settled in cash; Shopify must not email the customer."""
    body = _common_fields(request, line_items)
    body.update(
        {
            "financial_status": "paid",
            "send_receipt": False,
            "send_fulfillment_receipt": False,
            "transactions": [
                {
                    "kind": "sale",
                    "status": "success",
                    "amount": to_major_units_str(request.total),
                }
            ],
        }
    )
    return {"order": body}


# ============================================================================
# Client
# ============================================================================


class ShopifyClient:
    """Async client for one connected shop."""

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        api_version: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.shop_domain = shop_domain
        self.api_version = api_version or settings.SHOPIFY_API_VERSION
        self.timeout = timeout or settings.SHOPIFY_TIMEOUT
        self._transport = transport
        self._headers = {
            "X-Shopify-Access-Token": access_token,
            "Content-Type": "application/json",
        }

    @property
    def base_url(self) -> str:
        return f"https://{self.shop_domain}/admin/api/{self.api_version}"

    async def _request(self, method: str, endpoint: str, json_data: dict = None) -> dict:
        url = f"{self.base_url}{endpoint}"

        async with httpx.AsyncClient(
            timeout=self.timeout, transport=self._transport
        ) as client:
            try:
                response = await client.request(
                    method=method, url=url, headers=self._headers, json=json_data
                )
            except httpx.HTTPError as exc:
                raise ShopifyError(f"Shopify request failed: {exc}") from exc

        try:
            data = response.json()
        except ValueError:
            data = {}

        if not response.is_success:
            errors = data.get("errors", "Unknown Shopify error")
            message = errors if isinstance(errors, str) else str(errors)
            logger.error(
                "Shopify API error for %s: %s - %s",
                self.shop_domain,
                response.status_code,
                message,
            )
            raise ShopifyError(
                message=f"Shopify API error: {message}",
                status_code=response.status_code,
                response_data=data,
            )
        return data

    async def create_draft_order(self, payload: dict) -> DraftOrderResult:
        data = await self._request("POST", "/draft_orders.json", json_data=payload)
        draft = data.get("draft_order") or {}
        if not draft.get("id") or not draft.get("invoice_url"):
            raise ShopifyError("Shopify response missing draft order", response_data=data)
        return DraftOrderResult(
            id=str(draft["id"]),
            name=draft.get("name", ""),
            invoice_url=draft["invoice_url"],
        )

    async def create_order(self, payload: dict) -> MarketplaceOrderResult:
        data = await self._request("POST", "/orders.json", json_data=payload)
        order = data.get("order") or {}
        if not order.get("id"):
            raise ShopifyError("Shopify response missing order", response_data=data)
        return MarketplaceOrderResult(id=str(order["id"]), name=order.get("name", ""))
