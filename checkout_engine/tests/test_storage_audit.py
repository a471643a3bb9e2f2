"""Tests for SQL-backed cart storage and the audit trail."""
from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from checkout_engine.app.models.audit import AuditLog
from checkout_engine.app.models.cart import CartSession
from checkout_engine.app.schemas.checkout import ProductSnapshot
from checkout_engine.app.services.audit import CHECKOUT_RESOURCE, SqlAuditTrail, log_action
from checkout_engine.app.services.cart import CartStore
from checkout_engine.app.services.cart_storage import SqlCartStorage
from checkout_engine.tests.conftest import fixed_clock


# ─── TestSqlCartStorage ──────────────────────────────────────────────────────


class TestSqlCartStorage:
    def test_missing_row_loads_none(self, session_factory: sessionmaker[Session]) -> None:
        assert SqlCartStorage(session_factory, "7:till-1").load() is None

    def test_save_then_update_single_row(self, session_factory: sessionmaker[Session]) -> None:
        storage = SqlCartStorage(session_factory, "7:till-1")
        storage.save('{"lines": []}')
        storage.save('{"lines": [], "applied_discount": null}')

        assert storage.load() == '{"lines": [], "applied_discount": null}'
        with session_factory() as db:
            assert len(db.scalars(select(CartSession)).all()) == 1

    def test_sessions_are_isolated(self, session_factory: sessionmaker[Session]) -> None:
        SqlCartStorage(session_factory, "7:till-1").save("a")
        SqlCartStorage(session_factory, "8:till-1").save("b")
        assert SqlCartStorage(session_factory, "7:till-1").load() == "a"
        assert SqlCartStorage(session_factory, "8:till-1").load() == "b"

    def test_cart_survives_restart(
        self, session_factory: sessionmaker[Session], pencil: ProductSnapshot
    ) -> None:
        cart = CartStore(SqlCartStorage(session_factory, "7:till-1"), clock=fixed_clock)
        cart.add_item(pencil, 3)

        restored = CartStore(SqlCartStorage(session_factory, "7:till-1"), clock=fixed_clock)
        assert restored.get_line(pencil.id).requested_qty == 3
        assert restored.subtotal() == Decimal("10500")


# ─── TestAuditTrail ──────────────────────────────────────────────────────────


class TestAuditTrail:
    def test_record_commits_row(self, session_factory: sessionmaker[Session]) -> None:
        SqlAuditTrail(session_factory).record(
            employee_id=7,
            action="CHECKOUT_COMPLETED",
            resource_id="ORD-0001",
            changes={"invoice_number": "INV-2026-0001", "total": "18500"},
        )

        with session_factory() as db:
            row = db.scalars(select(AuditLog)).one()
        assert row.table_name == CHECKOUT_RESOURCE
        assert row.record_id == "ORD-0001"
        assert row.action == "CHECKOUT_COMPLETED"
        assert row.changed_by == 7
        assert row.new_values == {"invoice_number": "INV-2026-0001", "total": "18500"}

    def test_log_action_leaves_commit_to_caller(self, session_factory: sessionmaker[Session]) -> None:
        with session_factory() as db:
            log_action(
                db,
                employee_id=7,
                action="CHECKOUT_ORDER_FAILED",
                resource_type=CHECKOUT_RESOURCE,
                resource_id="key-1",
            )
            db.rollback()

        with session_factory() as db:
            assert db.scalars(select(AuditLog)).all() == []
