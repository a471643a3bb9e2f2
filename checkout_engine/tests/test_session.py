"""Tests for the per-till checkout session registry."""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from decimal import Decimal

from checkout_engine.app.core.exceptions import StorefrontApiError
from checkout_engine.app.schemas.checkout import PaymentMethodEnum, ProductSnapshot
from checkout_engine.app.services.cart_storage import InMemoryCartStorage
from checkout_engine.app.services.session import CheckoutSessionRegistry
from checkout_engine.tests.conftest import CASHIER_ID, FIXED_NOW, FakeStorefront


class SteppingClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def _registry(
    storefront: FakeStorefront, clock: SteppingClock, storages: dict[str, InMemoryCartStorage]
) -> CheckoutSessionRegistry:
    return CheckoutSessionRegistry(
        storefront=storefront,
        storage_factory=lambda key: storages.setdefault(key, InMemoryCartStorage()),
        clock=clock,
        idle_timeout=timedelta(minutes=30),
    )


class TestSessionRegistry:
    def test_same_till_gets_same_session(self, storefront: FakeStorefront) -> None:
        registry = _registry(storefront, SteppingClock(FIXED_NOW), {})
        first = registry.get("till-1", CASHIER_ID)
        assert registry.get("till-1", CASHIER_ID) is first
        assert registry.get("till-1", CASHIER_ID + 1) is not first
        assert len(registry) == 2

    def test_idle_sessions_evicted(self, storefront: FakeStorefront, pencil: ProductSnapshot) -> None:
        clock = SteppingClock(FIXED_NOW)
        storages: dict[str, InMemoryCartStorage] = {}
        registry = _registry(storefront, clock, storages)

        old = registry.get("till-1", CASHIER_ID)
        old.cart.add_item(pencil, 2)
        for n in range(2, 6):
            registry.get(f"till-{n}", CASHIER_ID)
        assert len(registry) == 5

        clock.advance(minutes=31)
        registry.get("till-9", CASHIER_ID)
        assert len(registry) == 1

        reopened = registry.get("till-1", CASHIER_ID)
        assert reopened is not old
        assert reopened.cart.subtotal() == Decimal("7000")

    def test_recently_used_session_kept(self, storefront: FakeStorefront) -> None:
        clock = SteppingClock(FIXED_NOW)
        registry = _registry(storefront, clock, {})
        kept = registry.get("till-1", CASHIER_ID)

        clock.advance(minutes=20)
        registry.get("till-1", CASHIER_ID)
        clock.advance(minutes=20)
        registry.get("till-2", CASHIER_ID)

        assert registry.get("till-1", CASHIER_ID) is kept

    def test_pending_order_restored_after_eviction(
        self, storefront: FakeStorefront, pencil: ProductSnapshot
    ) -> None:
        clock = SteppingClock(FIXED_NOW)
        registry = _registry(storefront, clock, {})
        session = registry.get("till-1", CASHIER_ID)
        session.cart.add_item(pencil, 2)
        session.orchestrator.set_payment(PaymentMethodEnum.QR)
        storefront.invoice_error = StorefrontApiError(500, "invoice service down")
        asyncio.run(session.orchestrator.submit())

        clock.advance(hours=1)
        registry.get("till-2", CASHIER_ID)
        reopened = registry.get("till-1", CASHIER_ID)

        assert reopened is not session
        assert reopened.orchestrator.pending_order.order_number == "ORD-0001"
        storefront.invoice_error = None
        result = asyncio.run(reopened.orchestrator.retry_invoice())
        assert result.committed
        assert len(storefront.orders) == 1
