"""Storefront REST API client implementing the checkout collaborator ports."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from checkout_engine.app.core.config import settings
from checkout_engine.app.core.exceptions import (
    GatewayError,
    GatewayTimeout,
    StorefrontApiError,
)
from checkout_engine.app.schemas.checkout import (
    DiscountCode,
    InvoiceDraft,
    OrderDraft,
    ProductSnapshot,
)

logger = logging.getLogger(__name__)


class StorefrontApiClient:
    """HTTP client for the storefront API.

    Every response uses the ``{"success": bool, "data": ..., "message": str}``
    envelope.
    """

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.STOREFRONT_API_URL).rstrip("/")
        self.token = settings.STOREFRONT_API_TOKEN if token is None else token
        self.timeout = timeout or settings.STOREFRONT_TIMEOUT_SECONDS
        self.transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    @staticmethod
    def _handle_response(resp: httpx.Response) -> Any:
        """Unwrap the envelope, raising StorefrontApiError on any failure."""
        try:
            body: dict[str, Any] = resp.json()
        except ValueError:
            raise StorefrontApiError(
                status_code=resp.status_code,
                message=resp.text[:200] if resp.text else f"HTTP {resp.status_code} (empty body)",
            )

        if resp.status_code >= 400 or body.get("success") is False:
            raise StorefrontApiError(
                status_code=resp.status_code,
                message=body.get("message") or f"HTTP {resp.status_code}",
            )
        return body.get("data")

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        async with httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self.transport
        ) as client:
            try:
                return await client.request(
                    method,
                    path,
                    json=json,
                    params=params,
                    headers={**self._headers(), **(headers or {})},
                )
            except httpx.TimeoutException as exc:
                raise GatewayTimeout(f"{method} {path} timed out") from exc
            except httpx.TransportError as exc:
                raise GatewayError(f"{method} {path} failed: {exc}") from exc

    # ── Catalog ──────────────────────────────────────────────────────────

    async def get_product(self, product_id: int) -> ProductSnapshot:
        resp = await self._request("GET", f"/products/{product_id}")
        return ProductSnapshot.model_validate(self._handle_response(resp))

    async def get_catalog_stock(self, product_id: int) -> int:
        product = await self.get_product(product_id)
        return product.stock

    # ── Discounts ────────────────────────────────────────────────────────

    async def lookup_discount(self, code: str) -> DiscountCode | None:
        resp = await self._request("GET", f"/discounts/code/{code}")
        if resp.status_code == 404:
            return None
        data = self._handle_response(resp)
        if not data:
            return None
        return DiscountCode.model_validate(data)

    # ── Orders & invoices ────────────────────────────────────────────────

    async def submit_order(self, draft: OrderDraft, idempotency_key: str) -> str:
        payload = {
            "employee_id": draft.employee_id,
            "items": [
                {
                    "product_id": line.product_id,
                    "qty_product": line.quantity,
                    "price_product": str(line.unit_price),
                }
                for line in draft.lines
            ],
            "subtotal": str(draft.subtotal),
            "discount_code": draft.discount_code,
            "discount_amount": str(draft.discount_amount),
            "order_total": str(draft.total),
        }
        resp = await self._request(
            "POST", "/orders", json=payload, headers={"Idempotency-Key": idempotency_key}
        )
        data = self._handle_response(resp)
        logger.info("Order %s created (key %s)", data["order_number"], idempotency_key)
        return str(data["order_number"])

    async def find_order(self, idempotency_key: str) -> str | None:
        resp = await self._request("GET", "/orders", params={"idempotency_key": idempotency_key})
        data = self._handle_response(resp)
        if not data:
            return None
        return str(data[0]["order_number"])

    async def submit_invoice(self, draft: InvoiceDraft) -> str:
        payload = draft.model_dump(mode="json")
        resp = await self._request("POST", "/invoices", json=payload)
        data = self._handle_response(resp)
        logger.info("Invoice %s created for order %s", data["invoice_number"], draft.order_number)
        return str(data["invoice_number"])
