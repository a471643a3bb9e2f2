"""Persistence ports for the cashier's cart.

A storage holds one serialized cart. It never interprets the payload; the
cart store decides what an empty or malformed payload means.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy.orm import Session

from checkout_engine.app.models.cart import CartSession


class CartStorage(Protocol):
    def load(self) -> str | None: ...

    def save(self, payload: str) -> None: ...


class InMemoryCartStorage:
    def __init__(self, payload: str | None = None) -> None:
        self.payload = payload

    def load(self) -> str | None:
        return self.payload

    def save(self, payload: str) -> None:
        self.payload = payload


class SqlCartStorage:
    """Cart payload stored in the ``cart_sessions`` table, one row per cashier session."""

    def __init__(self, session_factory: Callable[[], Session], session_key: str) -> None:
        self.session_factory = session_factory
        self.session_key = session_key

    def load(self) -> str | None:
        with self.session_factory() as db:
            row = db.get(CartSession, self.session_key)
            return row.payload if row else None

    def save(self, payload: str) -> None:
        with self.session_factory() as db:
            row = db.get(CartSession, self.session_key)
            if row is None:
                db.add(CartSession(session_key=self.session_key, payload=payload))
            else:
                row.payload = payload
                row.updated_at = datetime.now(timezone.utc)
            db.commit()
