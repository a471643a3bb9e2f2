from __future__ import annotations

from functools import lru_cache

from fastapi import Depends, Header

from checkout_engine.app.core.database import SessionLocal
from checkout_engine.app.services.audit import SqlAuditTrail
from checkout_engine.app.services.cart_storage import CartStorage, SqlCartStorage
from checkout_engine.app.services.session import CheckoutSession, CheckoutSessionRegistry
from checkout_engine.app.services.storefront_client import StorefrontApiClient


def _sql_storage(session_key: str) -> CartStorage:
    return SqlCartStorage(SessionLocal, session_key)


@lru_cache
def get_session_registry() -> CheckoutSessionRegistry:
    return CheckoutSessionRegistry(
        storefront=StorefrontApiClient(),
        storage_factory=_sql_storage,
        audit=SqlAuditTrail(SessionLocal),
    )


def get_checkout_session(
    x_cashier_session: str = Header(...),
    x_employee_id: int = Header(...),
    registry: CheckoutSessionRegistry = Depends(get_session_registry),
) -> CheckoutSession:
    # Authentication happens upstream; these headers identify the till.
    return registry.get(x_cashier_session, x_employee_id)
