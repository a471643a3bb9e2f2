"""Collaborator ports consumed by the checkout engine.

The storefront API client implements all of them; tests substitute in-memory
fakes.
"""

from __future__ import annotations

from typing import Protocol

from checkout_engine.app.schemas.checkout import (
    DiscountCode,
    InvoiceDraft,
    OrderDraft,
    ProductSnapshot,
)


class DiscountLookup(Protocol):
    async def lookup_discount(self, code: str) -> DiscountCode | None: ...


class CatalogGateway(Protocol):
    async def get_product(self, product_id: int) -> ProductSnapshot: ...

    async def get_catalog_stock(self, product_id: int) -> int: ...


class OrderGateway(Protocol):
    async def submit_order(self, draft: OrderDraft, idempotency_key: str) -> str:
        """Create the order and return its order number."""
        ...

    async def find_order(self, idempotency_key: str) -> str | None:
        """Return the order number created under ``idempotency_key``, if any."""
        ...


class InvoiceGateway(Protocol):
    async def submit_invoice(self, draft: InvoiceDraft) -> str:
        """Create the invoice and return its invoice number."""
        ...


class AuditTrail(Protocol):
    def record(
        self,
        *,
        employee_id: int | None,
        action: str,
        resource_id: str,
        changes: dict[str, object] | None = None,
    ) -> None: ...
