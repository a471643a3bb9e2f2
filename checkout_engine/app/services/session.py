from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from checkout_engine.app.core.config import settings
from checkout_engine.app.services.cart import CartStore
from checkout_engine.app.services.cart_storage import CartStorage
from checkout_engine.app.services.checkout import CheckoutOrchestrator
from checkout_engine.app.services.discount import DiscountValidator, utc_now
from checkout_engine.app.services.gateways import (
    AuditTrail,
    CatalogGateway,
    DiscountLookup,
    InvoiceGateway,
    OrderGateway,
)
from checkout_engine.app.services.receipt import ReceiptFormatter

logger = logging.getLogger(__name__)


class Storefront(DiscountLookup, CatalogGateway, OrderGateway, InvoiceGateway, Protocol):
    """Every collaborator port in one object (the storefront API client)."""


@dataclass
class CheckoutSession:
    key: str
    employee_id: int
    cart: CartStore
    validator: DiscountValidator
    orchestrator: CheckoutOrchestrator
    catalog: CatalogGateway
    last_used: datetime


class CheckoutSessionRegistry:
    """One checkout session per (employee, cashier session key).

    Sessions are rebuilt from persisted storage after a restart, so an
    in-progress cart survives a reload. Sessions idle for longer than
    ``idle_timeout`` are dropped from memory unless a commit is in flight;
    their carts stay in storage.
    """

    def __init__(
        self,
        storefront: Storefront,
        storage_factory: Callable[[str], CartStorage],
        audit: AuditTrail | None = None,
        formatter: ReceiptFormatter | None = None,
        clock: Callable[[], datetime] = utc_now,
        idle_timeout: timedelta | None = None,
    ) -> None:
        self.storefront = storefront
        self.storage_factory = storage_factory
        self.audit = audit
        self.formatter = formatter
        self.clock = clock
        self.idle_timeout = idle_timeout or timedelta(seconds=settings.SESSION_IDLE_SECONDS)
        self._sessions: dict[str, CheckoutSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, session_key: str, employee_id: int) -> CheckoutSession:
        key = f"{employee_id}:{session_key}"
        now = self.clock()
        self._evict_idle(now, keep=key)

        session = self._sessions.get(key)
        if session is None:
            session = self._open(key, employee_id, now)
            self._sessions[key] = session
        session.last_used = now
        return session

    def _evict_idle(self, now: datetime, keep: str) -> None:
        cutoff = now - self.idle_timeout
        stale = [
            key
            for key, session in self._sessions.items()
            if key != keep and session.last_used < cutoff and not session.orchestrator.busy
        ]
        for key in stale:
            del self._sessions[key]
            logger.info("Closed idle checkout session %s", key)

    def _open(self, key: str, employee_id: int, now: datetime) -> CheckoutSession:
        cart = CartStore(self.storage_factory(key), clock=self.clock)
        validator = DiscountValidator(self.storefront, clock=self.clock)
        orchestrator = CheckoutOrchestrator(
            cart=cart,
            validator=validator,
            orders=self.storefront,
            invoices=self.storefront,
            employee_id=employee_id,
            formatter=self.formatter,
            audit=self.audit,
        )
        logger.info("Opened checkout session %s (%d lines restored)", key, len(cart.lines))
        return CheckoutSession(
            key=key,
            employee_id=employee_id,
            cart=cart,
            validator=validator,
            orchestrator=orchestrator,
            catalog=self.storefront,
            last_used=now,
        )
