"""Shared test fixtures.

Collaborators are replaced by an in-memory storefront; SQL-backed storage
and the audit trail run against a throwaway in-memory SQLite database.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from checkout_engine.app.api.deps import get_session_registry
from checkout_engine.app.core.database import Base
from checkout_engine.app.core.exceptions import GatewayTimeout, StorefrontApiError
from checkout_engine.app.main import app
from checkout_engine.app.models import audit as _audit_models  # noqa: F401
from checkout_engine.app.models import cart as _cart_models  # noqa: F401
from checkout_engine.app.schemas.checkout import (
    DiscountCode,
    InvoiceDraft,
    OrderDraft,
    ProductSnapshot,
)
from checkout_engine.app.services.cart import CartStore
from checkout_engine.app.services.cart_storage import InMemoryCartStorage
from checkout_engine.app.services.checkout import CheckoutOrchestrator
from checkout_engine.app.services.discount import DiscountValidator
from checkout_engine.app.services.session import CheckoutSessionRegistry

FIXED_NOW = datetime(2026, 10, 19, 9, 30, tzinfo=timezone.utc)
CASHIER_ID = 7


def fixed_clock() -> datetime:
    return FIXED_NOW


# ─── In-memory storefront ────────────────────────────────────────────────────


class FakeStorefront:
    """Implements every collaborator port in memory.

    Set ``order_error`` / ``invoice_error`` to make the next submissions
    raise; set ``order_timeout_after_create`` to simulate an order that was
    created server-side but whose response never arrived.
    """

    def __init__(self) -> None:
        self.products: dict[int, ProductSnapshot] = {}
        self.discounts: dict[str, DiscountCode] = {}
        self.orders: dict[str, OrderDraft] = {}
        self.orders_by_key: dict[str, str] = {}
        self.invoices: dict[str, InvoiceDraft] = {}
        self.order_error: Exception | None = None
        self.invoice_error: Exception | None = None
        self.order_timeout_after_create = False
        self.order_calls = 0
        self.invoice_calls = 0
        self.lookup_calls = 0

    async def get_product(self, product_id: int) -> ProductSnapshot:
        if product_id not in self.products:
            raise StorefrontApiError(404, f"Product {product_id} not found")
        return self.products[product_id]

    async def get_catalog_stock(self, product_id: int) -> int:
        return (await self.get_product(product_id)).stock

    async def lookup_discount(self, code: str) -> DiscountCode | None:
        self.lookup_calls += 1
        return self.discounts.get(code)

    async def submit_order(self, draft: OrderDraft, idempotency_key: str) -> str:
        self.order_calls += 1
        if self.order_error is not None:
            raise self.order_error
        if idempotency_key in self.orders_by_key:
            return self.orders_by_key[idempotency_key]
        order_number = f"ORD-{len(self.orders) + 1:04d}"
        self.orders[order_number] = draft
        self.orders_by_key[idempotency_key] = order_number
        if self.order_timeout_after_create:
            raise GatewayTimeout("POST /orders timed out")
        return order_number

    async def find_order(self, idempotency_key: str) -> str | None:
        return self.orders_by_key.get(idempotency_key)

    async def submit_invoice(self, draft: InvoiceDraft) -> str:
        self.invoice_calls += 1
        if self.invoice_error is not None:
            raise self.invoice_error
        assert draft.order_number in self.orders, "invoice for unknown order"
        invoice_number = f"INV-2026-{len(self.invoices) + 1:04d}"
        self.invoices[invoice_number] = draft
        return invoice_number


# ─── Catalog fixtures ────────────────────────────────────────────────────────


@pytest.fixture()
def pencil() -> ProductSnapshot:
    return ProductSnapshot(id=1, name="Pensil 2B", unit_price=Decimal("3500"), stock=10)


@pytest.fixture()
def notebook() -> ProductSnapshot:
    return ProductSnapshot(id=2, name="Buku Tulis", unit_price=Decimal("7500"), stock=5)


@pytest.fixture()
def sold_out() -> ProductSnapshot:
    return ProductSnapshot(id=3, name="Penggaris", unit_price=Decimal("4000"), stock=0)


def make_discount(**overrides: object) -> DiscountCode:
    data: dict[str, object] = {
        "code": "HEMAT10",
        "discount_type": "percentage",
        "value": Decimal("10"),
        "min_purchase": Decimal("0"),
        "max_discount_amount": None,
        "start_date": datetime(2026, 10, 1, tzinfo=timezone.utc),
        "end_date": datetime(2026, 10, 31, tzinfo=timezone.utc),
        "usage_limit": None,
        "used_count": 0,
    }
    data.update(overrides)
    return DiscountCode.model_validate(data)


@pytest.fixture()
def storefront(pencil: ProductSnapshot, notebook: ProductSnapshot, sold_out: ProductSnapshot) -> FakeStorefront:
    fake = FakeStorefront()
    for product in (pencil, notebook, sold_out):
        fake.products[product.id] = product
    for rule in (
        make_discount(),
        make_discount(code="POTONG5000", discount_type="fixed", value=Decimal("5000")),
        make_discount(code="MIN20K", value=Decimal("10"), min_purchase=Decimal("20000")),
    ):
        fake.discounts[rule.code] = rule
    return fake


# ─── Engine fixtures ─────────────────────────────────────────────────────────


@pytest.fixture()
def storage() -> InMemoryCartStorage:
    return InMemoryCartStorage()


@pytest.fixture()
def cart(storage: InMemoryCartStorage) -> CartStore:
    return CartStore(storage, clock=fixed_clock)


@pytest.fixture()
def validator(storefront: FakeStorefront) -> DiscountValidator:
    return DiscountValidator(storefront, clock=fixed_clock)


@pytest.fixture()
def orchestrator(
    cart: CartStore, validator: DiscountValidator, storefront: FakeStorefront
) -> CheckoutOrchestrator:
    return CheckoutOrchestrator(
        cart=cart,
        validator=validator,
        orders=storefront,
        invoices=storefront,
        employee_id=CASHIER_ID,
    )


# ─── SQL fixtures ────────────────────────────────────────────────────────────


@pytest.fixture()
def session_factory() -> Generator[sessionmaker[Session], None, None]:
    """Fresh in-memory SQLite database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.drop_all(engine)
    engine.dispose()


# ─── API client ──────────────────────────────────────────────────────────────


@pytest.fixture()
def registry(storefront: FakeStorefront) -> CheckoutSessionRegistry:
    storages: dict[str, InMemoryCartStorage] = {}

    def _storage(key: str) -> InMemoryCartStorage:
        return storages.setdefault(key, InMemoryCartStorage())

    return CheckoutSessionRegistry(storefront=storefront, storage_factory=_storage, clock=fixed_clock)


@pytest.fixture()
def client(registry: CheckoutSessionRegistry) -> Generator[TestClient, None, None]:
    """FastAPI TestClient wired to the in-memory storefront."""
    app.dependency_overrides[get_session_registry] = lambda: registry
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def till(session: str = "till-1", employee_id: int = CASHIER_ID) -> dict[str, str]:
    """Return the headers identifying a cashier session."""
    return {"X-Cashier-Session": session, "X-Employee-Id": str(employee_id)}
