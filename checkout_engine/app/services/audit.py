from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from sqlalchemy.orm import Session

from checkout_engine.app.models.audit import AuditLog

logger = logging.getLogger(__name__)

CHECKOUT_RESOURCE = "checkout"


def log_action(
    db: Session,
    *,
    employee_id: int | None,
    action: str,
    resource_type: str,
    resource_id: str,
    changes: dict[str, Any] | None = None,
) -> None:
    """Write a single row to the audit_logs table.

    It does NOT call db.commit(); the caller commits as part of its own
    transaction.
    """
    db.add(
        AuditLog(
            table_name=resource_type,
            record_id=resource_id,
            action=action,
            changed_by=employee_id,
            new_values=changes,
        )
    )


class SqlAuditTrail:
    """Checkout audit trail committing one row per event."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self.session_factory = session_factory

    def record(
        self,
        *,
        employee_id: int | None,
        action: str,
        resource_id: str,
        changes: dict[str, Any] | None = None,
    ) -> None:
        with self.session_factory() as db:
            log_action(
                db,
                employee_id=employee_id,
                action=action,
                resource_type=CHECKOUT_RESOURCE,
                resource_id=resource_id,
                changes=changes,
            )
            db.commit()


class LoggingAuditTrail:
    """Audit trail that only writes to the application log."""

    def record(
        self,
        *,
        employee_id: int | None,
        action: str,
        resource_id: str,
        changes: dict[str, Any] | None = None,
    ) -> None:
        logger.info("%s %s by %s: %s", action, resource_id, employee_id, changes or {})
