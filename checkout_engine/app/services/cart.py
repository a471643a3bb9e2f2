from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal

from pydantic import ValidationError

from checkout_engine.app.core.exceptions import (
    CartLocked,
    ExceedsStock,
    OutOfStock,
    PendingReconciliation,
)
from checkout_engine.app.schemas.checkout import (
    ZERO,
    AppliedDiscount,
    Cart,
    CartLine,
    CheckoutAttempt,
    DiscountCode,
    DiscountRejection,
    PendingCheckout,
    ProductSnapshot,
)
from checkout_engine.app.services.cart_storage import CartStorage
from checkout_engine.app.services.discount import evaluate_discount, utc_now
from checkout_engine.app.services.gateways import CatalogGateway

logger = logging.getLogger(__name__)

DiscountDroppedCallback = Callable[[str, DiscountRejection], None]


class CartStore:
    """The cashier's in-progress cart, persisted on every change.

    Stock checks here are advisory: they use the stock known when the line
    was last touched, the server accepting the order has the final say.
    A rejected operation never leaves a partial change behind. While an
    order waits for its invoice the lines belong to that order and cannot
    be changed.
    """

    def __init__(
        self,
        storage: CartStorage,
        clock: Callable[[], datetime] = utc_now,
        on_discount_dropped: DiscountDroppedCallback | None = None,
    ) -> None:
        self.storage = storage
        self.clock = clock
        self.on_discount_dropped = on_discount_dropped
        self.discount_notice: str | None = None
        self._frozen = False
        self._cart = self._load()

    # ── Read ─────────────────────────────────────────────────────────────

    @property
    def lines(self) -> list[CartLine]:
        return [line.model_copy() for line in self._cart.lines]

    @property
    def applied_discount(self) -> AppliedDiscount | None:
        return self._cart.applied_discount

    @property
    def discount_rule(self) -> DiscountCode | None:
        return self._cart.discount_rule

    @property
    def is_empty(self) -> bool:
        return self._cart.is_empty

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    @property
    def pending(self) -> PendingCheckout | None:
        return self._cart.pending

    @property
    def attempt(self) -> CheckoutAttempt | None:
        return self._cart.attempt

    def get_line(self, product_id: int) -> CartLine | None:
        for line in self._cart.lines:
            if line.product_id == product_id:
                return line.model_copy()
        return None

    def subtotal(self) -> Decimal:
        return sum((line.line_total for line in self._cart.lines), ZERO)

    def discount_amount(self) -> Decimal:
        applied = self._cart.applied_discount
        return applied.computed_amount if applied else ZERO

    def total(self) -> Decimal:
        return max(self.subtotal() - self.discount_amount(), ZERO)

    def snapshot(self) -> Cart:
        return self._cart.model_copy(deep=True)

    # ── Mutations ────────────────────────────────────────────────────────

    def add_item(self, product: ProductSnapshot, qty: int = 1) -> CartLine:
        self._check_writable()
        if qty <= 0:
            raise ValueError("Quantity must be greater than zero")
        if product.stock <= 0:
            raise OutOfStock(product.id, product.name)

        existing = self.get_line(product.id)
        new_qty = (existing.requested_qty if existing else 0) + qty
        if new_qty > product.stock:
            raise ExceedsStock(product.id, new_qty, product.stock)

        line = CartLine(
            product_id=product.id,
            product_name=product.name,
            unit_price=product.unit_price,
            requested_qty=new_qty,
            snapshot_stock=product.stock,
        )
        if existing:
            lines = [line if cur.product_id == product.id else cur for cur in self._cart.lines]
        else:
            lines = [*self._cart.lines, line]

        self._commit_lines(lines)
        logger.debug("Cart line %s now at qty %s", product.id, new_qty)
        return line

    def set_qty(self, product_id: int, qty: int) -> CartLine | None:
        """Set a line's quantity; zero or less removes the line."""
        self._check_writable()
        if qty <= 0:
            self.remove_item(product_id)
            return None

        existing = self.get_line(product_id)
        if existing is None:
            return None
        if qty > existing.snapshot_stock:
            raise ExceedsStock(product_id, qty, existing.snapshot_stock)

        line = existing.model_copy(update={"requested_qty": qty})
        self._commit_lines([line if cur.product_id == product_id else cur for cur in self._cart.lines])
        return line

    def remove_item(self, product_id: int) -> None:
        self._check_writable()
        if self.get_line(product_id) is None:
            return
        self._commit_lines([cur for cur in self._cart.lines if cur.product_id != product_id])

    def clear(self) -> None:
        self._check_writable()
        self._cart = Cart()
        self.discount_notice = None
        self._save()

    def attach_discount(self, rule: DiscountCode, applied: AppliedDiscount) -> None:
        self._check_writable()
        self._cart = self._cart.model_copy(
            update={"applied_discount": applied, "discount_rule": rule}
        )
        self.discount_notice = None
        self._save()

    def detach_discount(self) -> None:
        self._check_writable()
        if self._cart.discount_rule is None and self._cart.applied_discount is None:
            return
        self._cart = self._cart.model_copy(update={"applied_discount": None, "discount_rule": None})
        self._save()

    async def refresh_stock(self, catalog: CatalogGateway) -> list[int]:
        """Re-read catalog stock for every line.

        Quantities are not changed. Returns the product ids whose requested
        quantity is now above the refreshed stock.
        """
        self._check_writable()
        stocks: dict[int, int] = {}
        for line in self._cart.lines:
            stocks[line.product_id] = await catalog.get_catalog_stock(line.product_id)

        lines = [
            cur.model_copy(update={"snapshot_stock": stocks.get(cur.product_id, cur.snapshot_stock)})
            for cur in self._cart.lines
        ]
        self._cart = self._cart.model_copy(update={"lines": lines})
        self._save()

        over = [cur.product_id for cur in lines if cur.requested_qty > cur.snapshot_stock]
        if over:
            logger.warning("Cart lines over refreshed stock: %s", over)
        return over

    # ── Checkout bookkeeping ─────────────────────────────────────────────

    def set_attempt(self, attempt: CheckoutAttempt | None) -> None:
        self._cart = self._cart.model_copy(update={"attempt": attempt})
        self._save()

    def set_pending(self, pending: PendingCheckout | None) -> None:
        """Record or release the order waiting for its invoice.

        Allowed while frozen: the orchestrator calls it mid-commit.
        """
        self._cart = self._cart.model_copy(update={"pending": pending})
        self._save()

    @contextmanager
    def freeze(self) -> Iterator[None]:
        """Reject every mutation for the duration of the block."""
        if self._frozen:
            raise CartLocked()
        self._frozen = True
        try:
            yield
        finally:
            self._frozen = False

    # ── Internals ────────────────────────────────────────────────────────

    def _check_writable(self) -> None:
        if self._frozen:
            raise CartLocked()
        if self._cart.pending is not None:
            raise PendingReconciliation(self._cart.pending.order.order_number)

    def _commit_lines(self, lines: list[CartLine]) -> None:
        self._cart = self._cart.model_copy(update={"lines": lines})
        self.discount_notice = None
        self._reprice_discount()
        self._save()

    def _reprice_discount(self) -> None:
        rule = self._cart.discount_rule
        applied = self._cart.applied_discount
        if rule is None or applied is None:
            return

        validation = evaluate_discount(rule, self.subtotal(), self.clock())
        if validation.valid:
            self._cart = self._cart.model_copy(
                update={"applied_discount": applied.model_copy(update={"computed_amount": validation.amount})}
            )
            return

        reason = validation.rejection
        self._cart = self._cart.model_copy(update={"applied_discount": None, "discount_rule": None})
        self.discount_notice = f"Discount {rule.code} removed: {reason.value}"
        logger.warning("Dropped discount %s after subtotal change: %s", rule.code, reason.value)
        if self.on_discount_dropped is not None:
            self.on_discount_dropped(rule.code, reason)

    def _load(self) -> Cart:
        payload = self.storage.load()
        if not payload:
            return Cart()
        try:
            cart = Cart.model_validate_json(payload)
        except ValidationError:
            logger.warning("Discarding malformed persisted cart")
            return Cart()

        product_ids = [line.product_id for line in cart.lines]
        if len(product_ids) != len(set(product_ids)):
            logger.warning("Discarding persisted cart with duplicate lines")
            return Cart()
        if cart.is_empty and cart.pending is None:
            return Cart()
        return cart

    def _save(self) -> None:
        self.storage.save(self._cart.model_dump_json())
