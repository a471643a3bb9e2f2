from __future__ import annotations

import hashlib
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum

from checkout_engine.app.core.exceptions import (
    CheckoutError,
    CheckoutInProgress,
    CommitError,
    DiscountError,
    EmptyCart,
    GatewayTimeout,
    InsufficientTender,
    OrderCreatedInvoiceFailed,
    OrderSubmitFailed,
    PendingReconciliation,
    ReceiptRenderFailed,
)
from checkout_engine.app.schemas.checkout import (
    ZERO,
    CheckoutAttempt,
    CheckoutQuote,
    DiscountCode,
    DiscountRejection,
    DiscountValidation,
    Invoice,
    InvoiceDraft,
    Order,
    OrderDraft,
    OrderLine,
    PaymentDraft,
    PaymentMethodEnum,
    PendingCheckout,
    Receipt,
)
from checkout_engine.app.services.audit import LoggingAuditTrail
from checkout_engine.app.services.cart import CartStore
from checkout_engine.app.services.discount import (
    DiscountValidator,
    applied_from,
    evaluate_discount,
    rejection_error,
)
from checkout_engine.app.services.gateways import AuditTrail, InvoiceGateway, OrderGateway
from checkout_engine.app.services.receipt import ReceiptFormatter

logger = logging.getLogger(__name__)


class CheckoutState(str, Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    ORDER_CREATED = "order_created"
    INVOICE_CREATED = "invoice_created"
    FAILED = "failed"


class FailedStage(str, Enum):
    ORDER = "order"
    INVOICE = "invoice"


class CheckoutOutcome(str, Enum):
    COMPLETED = "completed"
    # Safe to submit the same cart again.
    NOTHING_COMMITTED = "nothing_committed"
    # The order exists; resolve it with retry_invoice(), never a new order.
    ORDER_COMMITTED_INVOICE_FAILED = "order_committed_invoice_failed"


@dataclass(frozen=True)
class CheckoutResult:
    outcome: CheckoutOutcome
    order: Order | None = None
    invoice: Invoice | None = None
    receipt: Receipt | None = None
    error: CommitError | None = None
    receipt_error: ReceiptRenderFailed | None = None

    @property
    def committed(self) -> bool:
        return self.outcome == CheckoutOutcome.COMPLETED

    @property
    def order_number(self) -> str | None:
        if self.order is not None:
            return self.order.order_number
        if isinstance(self.error, OrderCreatedInvoiceFailed):
            return self.error.order_number
        return None


@dataclass(frozen=True)
class _Prepared:
    draft: OrderDraft
    payment: PaymentDraft
    tendered_amount: Decimal | None
    change_due: Decimal | None


def _new_idempotency_key() -> str:
    return str(uuid.uuid4())


class CheckoutOrchestrator:
    """Turns the cashier's cart into an Order and then an Invoice.

    The order is always created first. If the invoice then fails, the order
    is kept as ``pending_order`` and the orchestrator refuses to start another
    order until the invoice is retried or the operator acknowledges it. The
    pending order and the attempt's idempotency key are stored with the
    cart, so both survive a reload. The cart is cleared only after both
    records exist.

    Audit writes are best effort: a failing audit trail never changes the
    outcome of a commit.
    """

    def __init__(
        self,
        cart: CartStore,
        validator: DiscountValidator,
        orders: OrderGateway,
        invoices: InvoiceGateway,
        employee_id: int,
        verified_by: int | None = None,
        formatter: ReceiptFormatter | None = None,
        audit: AuditTrail | None = None,
        key_factory: Callable[[], str] = _new_idempotency_key,
    ) -> None:
        self.cart = cart
        self.validator = validator
        self.orders = orders
        self.invoices = invoices
        self.employee_id = employee_id
        self.verified_by = verified_by if verified_by is not None else employee_id
        self.formatter = formatter or ReceiptFormatter()
        self.audit = audit or LoggingAuditTrail()
        self.key_factory = key_factory

        self.state = CheckoutState.IDLE
        self.failed_stage: FailedStage | None = None
        self.payment = PaymentDraft()
        self.last_order: Order | None = None
        self.last_invoice: Invoice | None = None
        self.last_receipt: Receipt | None = None

        self._busy = False
        self._last_invoice_error = ""

        if self.cart.pending is not None:
            self.state = CheckoutState.FAILED
            self.failed_stage = FailedStage.INVOICE
            logger.warning(
                "Restored order %s still waiting for its invoice",
                self.cart.pending.order.order_number,
            )

    @property
    def clock(self) -> Callable[[], datetime]:
        return self.validator.clock

    @property
    def pending_order(self) -> Order | None:
        pending = self.cart.pending
        return pending.order if pending else None

    @property
    def busy(self) -> bool:
        return self._busy

    # ── Cashier inputs ───────────────────────────────────────────────────

    def set_payment(
        self, method: PaymentMethodEnum, tendered_amount: Decimal | None = None
    ) -> PaymentDraft:
        if self._busy:
            raise CheckoutInProgress()
        self.payment = PaymentDraft(
            method=method,
            tendered_amount=tendered_amount if method == PaymentMethodEnum.CASH else None,
        )
        return self.payment

    def quote(self) -> CheckoutQuote:
        """Totals as currently displayed; no collaborator calls."""
        total = self.cart.total()
        applied = self.cart.applied_discount
        tendered = self.payment.tendered_amount
        change = None
        if self.payment.method == PaymentMethodEnum.CASH and tendered is not None:
            change = max(tendered - total, ZERO)
        return CheckoutQuote(
            subtotal=self.cart.subtotal(),
            discount_code=applied.code if applied else None,
            discount_amount=self.cart.discount_amount(),
            total=total,
            payment_method=self.payment.method,
            tendered_amount=tendered,
            change_due=change,
        )

    # ── Commit ───────────────────────────────────────────────────────────

    async def submit(self) -> CheckoutResult:
        """Run the two-step commit.

        Precondition failures raise (EmptyCart, InsufficientTender,
        DiscountError, PendingReconciliation, CheckoutInProgress) and leave
        everything unchanged. Commit-stage failures are returned as a
        tagged CheckoutResult.
        """
        if self._busy:
            raise CheckoutInProgress()
        if self.pending_order is not None:
            raise PendingReconciliation(self.pending_order.order_number)

        self._busy = True
        try:
            prepared = await self._prepare()
            key = self._idempotency_key_for(prepared)
            return await self._commit(prepared, key)
        finally:
            self._busy = False

    async def retry_invoice(self) -> CheckoutResult:
        """Create the missing invoice for the pending order."""
        if self._busy:
            raise CheckoutInProgress()
        pending = self.cart.pending
        if pending is None:
            raise CheckoutError("There is no order waiting for an invoice")

        order = pending.order
        self._busy = True
        try:
            self.state = CheckoutState.SUBMITTING
            with self.cart.freeze():
                invoice = await self._create_invoice(order, pending.invoice)
            if invoice is None:
                return self._invoice_failed_result(order)
            return self._complete(order, invoice)
        finally:
            self._busy = False

    def acknowledge_pending_order(self) -> Order | None:
        """Release a pending order the operator reconciled by hand.

        The cart lines are left as they are.
        """
        if self._busy:
            raise CheckoutInProgress()
        order = self.pending_order
        if order is None:
            return None
        self._record("CHECKOUT_ORDER_ACKNOWLEDGED", order.order_number)
        logger.warning("Order %s acknowledged without invoice", order.order_number)
        self.cart.set_pending(None)
        self.cart.set_attempt(None)
        self.state = CheckoutState.IDLE
        self.failed_stage = None
        return order

    def reprint_receipt(self) -> Receipt:
        if self.last_order is None or self.last_invoice is None:
            raise CheckoutError("No completed checkout to print")
        try:
            receipt = self.formatter.render(self.last_order, self.last_invoice)
        except Exception as exc:
            raise ReceiptRenderFailed(self.last_order.order_number, str(exc)) from exc
        self.last_receipt = receipt
        return receipt

    # ── Internals ────────────────────────────────────────────────────────

    async def _prepare(self) -> _Prepared:
        if self.cart.is_empty:
            raise EmptyCart()

        payment = self.payment
        self._settle(payment, self.cart.total())

        subtotal = self.cart.subtotal()
        discount_code = None
        discount_amount = ZERO
        applied = self.cart.applied_discount
        if applied is not None:
            validation = await self._revalidate_discount(applied.code, subtotal)
            discount_code = applied.code
            discount_amount = validation.amount

        total = max(subtotal - discount_amount, ZERO)
        tendered, change = self._settle(payment, total)

        lines = [
            OrderLine(
                product_id=line.product_id,
                product_name=line.product_name,
                unit_price=line.unit_price,
                quantity=line.requested_qty,
                line_total=line.line_total,
            )
            for line in self.cart.lines
        ]
        draft = OrderDraft(
            employee_id=self.employee_id,
            lines=lines,
            subtotal=subtotal,
            discount_code=discount_code,
            discount_amount=discount_amount,
            total=total,
        )
        return _Prepared(draft=draft, payment=payment, tendered_amount=tendered, change_due=change)

    def _settle(self, payment: PaymentDraft, total: Decimal) -> tuple[Decimal | None, Decimal | None]:
        if payment.method != PaymentMethodEnum.CASH:
            return None, None
        tendered = payment.tendered_amount if payment.tendered_amount is not None else ZERO
        if tendered < total:
            raise InsufficientTender(tendered, total)
        return tendered, max(tendered - total, ZERO)

    async def _revalidate_discount(self, code: str, subtotal: Decimal) -> DiscountValidation:
        with self.cart.freeze():
            rule = await self.validator.fetch(code)

        if rule is None:
            raise self._drop_discount(code, subtotal, DiscountRejection.NOT_FOUND, None)

        validation = evaluate_discount(rule, subtotal, self.clock())
        if not validation.valid:
            raise self._drop_discount(code, subtotal, validation.rejection, rule)

        current = self.cart.applied_discount
        if current is None or current.computed_amount != validation.amount:
            self.cart.attach_discount(rule, applied_from(rule, validation))
        return validation

    def _drop_discount(
        self, code: str, subtotal: Decimal, reason: DiscountRejection, rule: DiscountCode | None
    ) -> DiscountError:
        self.cart.detach_discount()
        self.cart.discount_notice = f"Discount {code} removed: {reason.value}"
        self._record(
            "CHECKOUT_DISCOUNT_REJECTED",
            code,
            {"reason": reason.value, "subtotal": str(subtotal)},
        )
        logger.warning("Checkout aborted: discount %s rejected (%s)", code, reason.value)
        return rejection_error(code, reason, rule)

    def _idempotency_key_for(self, prepared: _Prepared) -> str:
        """Reuse the previous key while the attempt is unchanged."""
        digest = hashlib.sha256(
            (prepared.draft.model_dump_json() + prepared.payment.model_dump_json()).encode("utf-8")
        ).hexdigest()
        attempt = self.cart.attempt
        if attempt is None or attempt.fingerprint != digest:
            attempt = CheckoutAttempt(idempotency_key=self.key_factory(), fingerprint=digest)
            self.cart.set_attempt(attempt)
        return attempt.idempotency_key

    def _record(
        self, action: str, resource_id: str, changes: dict[str, object] | None = None
    ) -> None:
        try:
            self.audit.record(
                employee_id=self.employee_id,
                action=action,
                resource_id=resource_id,
                changes=changes,
            )
        except Exception:
            logger.exception("Could not write audit entry %s for %s", action, resource_id)

    async def _commit(self, prepared: _Prepared, key: str) -> CheckoutResult:
        draft = prepared.draft
        self.state = CheckoutState.SUBMITTING
        self.failed_stage = None
        logger.info("Submitting checkout %s: total %s", key, draft.total)

        with self.cart.freeze():
            try:
                order_number = await self._create_order(draft, key)
            except Exception as exc:
                logger.exception("Order submission failed for checkout %s", key)
                self.state = CheckoutState.FAILED
                self.failed_stage = FailedStage.ORDER
                self._record(
                    "CHECKOUT_ORDER_FAILED",
                    key,
                    {"error": str(exc), "total": str(draft.total)},
                )
                error = OrderSubmitFailed(f"Order submission failed: {exc}")
                error.__cause__ = exc
                return CheckoutResult(outcome=CheckoutOutcome.NOTHING_COMMITTED, error=error)

            order = Order(
                order_number=order_number,
                employee_id=draft.employee_id,
                lines=tuple(draft.lines),
                subtotal=draft.subtotal,
                discount_code=draft.discount_code,
                discount_amount=draft.discount_amount,
                total=draft.total,
                idempotency_key=key,
                created_at=self.clock(),
            )
            invoice_draft = InvoiceDraft(
                order_number=order_number,
                total=draft.total,
                paid_by=prepared.payment.method,
                tendered_amount=prepared.tendered_amount,
                change_due=prepared.change_due,
                verified_by=self.verified_by,
            )
            try:
                self.cart.set_pending(PendingCheckout(order=order, invoice=invoice_draft))
            except Exception:
                # The pending order is still held in memory for this session.
                logger.exception("Could not persist pending order %s", order_number)
            self.state = CheckoutState.ORDER_CREATED
            self._record(
                "CHECKOUT_ORDER_CREATED",
                order_number,
                {
                    "idempotency_key": key,
                    "subtotal": str(draft.subtotal),
                    "discount_code": draft.discount_code,
                    "discount_amount": str(draft.discount_amount),
                    "total": str(draft.total),
                    "item_count": len(draft.lines),
                },
            )
            invoice = await self._create_invoice(order, invoice_draft)

        if invoice is None:
            return self._invoice_failed_result(order)
        return self._complete(order, invoice)

    async def _create_order(self, draft: OrderDraft, key: str) -> str:
        try:
            return await self.orders.submit_order(draft, key)
        except GatewayTimeout:
            # The order may exist server-side; look it up before calling it a failure.
            logger.warning("Order submission timed out for %s; checking for an existing order", key)
            existing = await self.orders.find_order(key)
            if existing is None:
                raise
            logger.info("Order %s found for timed-out checkout %s", existing, key)
            return existing

    async def _create_invoice(self, order: Order, draft: InvoiceDraft) -> Invoice | None:
        try:
            invoice_number = await self.invoices.submit_invoice(draft)
        except Exception as exc:
            logger.exception("Invoice submission failed for order %s", order.order_number)
            self.state = CheckoutState.FAILED
            self.failed_stage = FailedStage.INVOICE
            self._last_invoice_error = str(exc)
            self._record(
                "CHECKOUT_INVOICE_FAILED",
                order.order_number,
                {"error": str(exc), "total": str(draft.total)},
            )
            return None

        return Invoice(
            invoice_number=invoice_number,
            order_number=order.order_number,
            total=draft.total,
            paid_by=draft.paid_by,
            tendered_amount=draft.tendered_amount,
            change_due=draft.change_due,
            verified_by=draft.verified_by,
            issued_at=self.clock(),
        )

    def _invoice_failed_result(self, order: Order) -> CheckoutResult:
        error = OrderCreatedInvoiceFailed(order.order_number, self._last_invoice_error)
        return CheckoutResult(
            outcome=CheckoutOutcome.ORDER_COMMITTED_INVOICE_FAILED,
            order=order,
            error=error,
        )

    def _complete(self, order: Order, invoice: Invoice) -> CheckoutResult:
        self.state = CheckoutState.INVOICE_CREATED
        self.failed_stage = None
        self.last_order = order
        self.last_invoice = invoice
        self.last_receipt = None
        self.payment = PaymentDraft(method=self.payment.method)

        try:
            self.cart.set_pending(None)
            self.cart.clear()
        except Exception:
            # Both records exist; a stale cart must not turn this into a failure.
            logger.exception("Could not clear cart after order %s", order.order_number)

        self._record(
            "CHECKOUT_COMPLETED",
            order.order_number,
            {
                "invoice_number": invoice.invoice_number,
                "paid_by": invoice.paid_by.value,
                "total": str(invoice.total),
                "change_due": str(invoice.change_due) if invoice.change_due is not None else None,
            },
        )
        logger.info("Checkout completed: order %s, invoice %s", order.order_number, invoice.invoice_number)

        receipt_error = None
        try:
            self.last_receipt = self.formatter.render(order, invoice)
        except Exception as exc:
            logger.exception("Could not render receipt for order %s", order.order_number)
            receipt_error = ReceiptRenderFailed(order.order_number, str(exc))

        return CheckoutResult(
            outcome=CheckoutOutcome.COMPLETED,
            order=order,
            invoice=invoice,
            receipt=self.last_receipt,
            receipt_error=receipt_error,
        )
