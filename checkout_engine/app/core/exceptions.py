"""Checkout engine exceptions.

Services raise these; the API layer maps them onto HTTP status codes. All of
them subclass ValueError so callers that only care about "the action was
rejected" can keep catching ValueError.
"""

from __future__ import annotations

from decimal import Decimal


class CheckoutEngineError(ValueError):
    """Base class for every error raised by the checkout engine."""

    code = "CHECKOUT_ERROR"


# ─── Cart ────────────────────────────────────────────────────────────────────


class CartError(CheckoutEngineError):
    code = "CART_ERROR"


class OutOfStock(CartError):
    code = "OUT_OF_STOCK"

    def __init__(self, product_id: int, product_name: str) -> None:
        self.product_id = product_id
        self.product_name = product_name
        super().__init__(f"'{product_name}' is out of stock")


class ExceedsStock(CartError):
    code = "EXCEEDS_STOCK"

    def __init__(self, product_id: int, requested: int, available: int) -> None:
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Requested quantity {requested} exceeds available stock {available} "
            f"for product {product_id}"
        )


class CartLocked(CartError):
    code = "CART_LOCKED"

    def __init__(self) -> None:
        super().__init__("Cart cannot be changed while a checkout is being submitted")


# ─── Discounts ───────────────────────────────────────────────────────────────


class DiscountError(CheckoutEngineError):
    code = "DISCOUNT_ERROR"

    def __init__(self, discount_code: str, message: str) -> None:
        self.discount_code = discount_code
        super().__init__(message)


class DiscountNotFound(DiscountError):
    code = "DISCOUNT_NOT_FOUND"

    def __init__(self, discount_code: str) -> None:
        super().__init__(discount_code, f"Discount code {discount_code} not found")


class DiscountExpired(DiscountError):
    code = "DISCOUNT_EXPIRED"

    def __init__(self, discount_code: str) -> None:
        super().__init__(discount_code, f"Discount code {discount_code} has expired")


class DiscountUpcoming(DiscountError):
    code = "DISCOUNT_UPCOMING"

    def __init__(self, discount_code: str) -> None:
        super().__init__(discount_code, f"Discount code {discount_code} is not active yet")


class DiscountLimitReached(DiscountError):
    code = "DISCOUNT_LIMIT_REACHED"

    def __init__(self, discount_code: str) -> None:
        super().__init__(discount_code, f"Discount code {discount_code} has reached its usage limit")


class DiscountBelowMinimum(DiscountError):
    code = "DISCOUNT_BELOW_MINIMUM"

    def __init__(self, discount_code: str, min_purchase: Decimal | None = None) -> None:
        self.min_purchase = min_purchase
        detail = f" (minimum purchase {min_purchase})" if min_purchase is not None else ""
        super().__init__(
            discount_code,
            f"Subtotal is below the minimum purchase for {discount_code}{detail}",
        )


# ─── Checkout preconditions & state guard ────────────────────────────────────


class CheckoutError(CheckoutEngineError):
    code = "CHECKOUT_REJECTED"


class EmptyCart(CheckoutError):
    code = "EMPTY_CART"

    def __init__(self) -> None:
        super().__init__("Cart must contain at least one item")


class InsufficientTender(CheckoutError):
    code = "INSUFFICIENT_TENDER"

    def __init__(self, tendered: Decimal, total: Decimal) -> None:
        self.tendered = tendered
        self.total = total
        super().__init__(f"Tendered amount {tendered} is less than the total {total}")


class CheckoutInProgress(CheckoutError):
    code = "CHECKOUT_IN_PROGRESS"

    def __init__(self) -> None:
        super().__init__("A checkout is already being submitted")


class PendingReconciliation(CheckoutError):
    code = "PENDING_RECONCILIATION"

    def __init__(self, order_number: str) -> None:
        self.order_number = order_number
        super().__init__(
            f"Order {order_number} has no invoice yet; retry the invoice or "
            "acknowledge the order before starting a new checkout"
        )


# ─── Commit stage ────────────────────────────────────────────────────────────


class CommitError(CheckoutEngineError):
    code = "COMMIT_ERROR"


class OrderSubmitFailed(CommitError):
    """Nothing was committed; the same cart can be submitted again."""

    code = "ORDER_SUBMIT_FAILED"


class OrderCreatedInvoiceFailed(CommitError):
    """The order exists but its invoice does not.

    Must be resolved against ``order_number``; submitting the cart again as a
    fresh order would duplicate the sale.
    """

    code = "ORDER_CREATED_INVOICE_FAILED"

    def __init__(self, order_number: str, message: str) -> None:
        self.order_number = order_number
        super().__init__(f"Order {order_number} was created but its invoice failed: {message}")


class ReceiptRenderFailed(CommitError):
    code = "RECEIPT_RENDER_FAILED"

    def __init__(self, order_number: str, message: str) -> None:
        self.order_number = order_number
        super().__init__(f"Could not print receipt for order {order_number}: {message}")


# ─── Collaborator transport ──────────────────────────────────────────────────


class GatewayError(CheckoutEngineError):
    """A collaborator call failed (transport or remote validation)."""

    code = "GATEWAY_ERROR"


class GatewayTimeout(GatewayError):
    """The call timed out; the remote side may or may not have applied it."""

    code = "GATEWAY_TIMEOUT"


class StorefrontApiError(GatewayError):
    """Structured error from the storefront API (non-2xx or success=false)."""

    code = "STOREFRONT_API_ERROR"

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        super().__init__(message)
