from __future__ import annotations

import re
from datetime import date, datetime, time, timezone
from decimal import Decimal
from enum import Enum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

ZERO = Decimal("0")

_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")


# ─── Enums ───────────────────────────────────────────────────────────────────


class PaymentMethodEnum(str, Enum):
    CASH = "cash"
    QR = "qr"


class DiscountTypeEnum(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class DiscountStatusEnum(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    UPCOMING = "upcoming"
    LIMIT_REACHED = "limit_reached"


class DiscountRejection(str, Enum):
    NOT_FOUND = "NotFound"
    EXPIRED = "Expired"
    UPCOMING = "Upcoming"
    LIMIT_REACHED = "LimitReached"
    BELOW_MINIMUM = "BelowMinimum"


# ─── Catalog & cart ──────────────────────────────────────────────────────────


class ProductSnapshot(BaseModel):
    """Product record as read from the catalog at add-time."""

    model_config = ConfigDict(populate_by_name=True)

    id: int = Field(validation_alias=AliasChoices("id", "product_id"))
    name: str = Field(validation_alias=AliasChoices("name", "product_name"))
    unit_price: Decimal = Field(validation_alias=AliasChoices("unit_price", "price", "price_product"))
    stock: int = Field(validation_alias=AliasChoices("stock", "stock_product"))

    @field_validator("unit_price")
    @classmethod
    def price_non_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("Unit price must be non-negative")
        return v


class CartLine(BaseModel):
    product_id: int
    product_name: str
    unit_price: Decimal
    requested_qty: int
    snapshot_stock: int

    @field_validator("unit_price")
    @classmethod
    def price_non_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("Unit price must be non-negative")
        return v

    @field_validator("requested_qty")
    @classmethod
    def quantity_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Quantity must be greater than zero")
        return v

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.requested_qty


class DiscountCode(BaseModel):
    """Discount rule owned by the discount-management collaborator.

    Accepts both the engine's field names and the storefront's wire names
    (``discount_code``, ``discount_percent``, ``max_discount`` ...).
    Date-only bounds cover the whole day: a start date means 00:00 and an end
    date means 23:59:59.999999 of that day, both in UTC.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    code: str = Field(validation_alias=AliasChoices("code", "discount_code"))
    discount_type: DiscountTypeEnum = DiscountTypeEnum.PERCENTAGE
    value: Decimal = Field(validation_alias=AliasChoices("value", "discount_percent", "discount_value"))
    min_purchase: Decimal = ZERO
    max_discount_amount: Decimal | None = Field(
        default=None, validation_alias=AliasChoices("max_discount_amount", "max_discount")
    )
    start_date: datetime
    end_date: datetime
    usage_limit: int | None = None
    used_count: int = 0

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("max_discount_amount", mode="before")
    @classmethod
    def zero_cap_means_none(cls, v: object) -> object:
        # The storefront stores "no cap" as 0 or an empty value.
        if v is None or v == "":
            return None
        try:
            return None if Decimal(str(v)) == 0 else v
        except ArithmeticError:
            return v

    @field_validator("min_purchase", mode="before")
    @classmethod
    def min_purchase_default(cls, v: object) -> object:
        return ZERO if v is None else v

    @field_validator("start_date", mode="before")
    @classmethod
    def start_of_day(cls, v: object) -> object:
        return _expand_date(v, time.min)

    @field_validator("end_date", mode="before")
    @classmethod
    def end_of_day(cls, v: object) -> object:
        return _expand_date(v, time.max)

    @field_validator("start_date", "end_date")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        return v if v.tzinfo else v.replace(tzinfo=timezone.utc)

    def status_at(self, now: datetime) -> DiscountStatusEnum:
        if now > self.end_date:
            return DiscountStatusEnum.EXPIRED
        if now < self.start_date:
            return DiscountStatusEnum.UPCOMING
        if self.usage_limit is not None and self.used_count >= self.usage_limit:
            return DiscountStatusEnum.LIMIT_REACHED
        return DiscountStatusEnum.ACTIVE


def _expand_date(v: object, at: time) -> object:
    if isinstance(v, str) and _DATE_ONLY.match(v):
        v = date.fromisoformat(v)
    if isinstance(v, date) and not isinstance(v, datetime):
        return datetime.combine(v, at, tzinfo=timezone.utc)
    return v


class AppliedDiscount(BaseModel):
    code: str
    discount_type: DiscountTypeEnum
    value: Decimal
    computed_amount: Decimal


class Cart(BaseModel):
    lines: list[CartLine] = []
    applied_discount: AppliedDiscount | None = None
    # Rule backing applied_discount, kept so the amount can be recomputed
    # without another lookup whenever the subtotal changes.
    discount_rule: DiscountCode | None = None
    # Checkout state that must survive a reload: the current submit attempt
    # and an order still waiting for its invoice.
    attempt: CheckoutAttempt | None = None
    pending: PendingCheckout | None = None

    @property
    def is_empty(self) -> bool:
        return not self.lines


class DiscountValidation(BaseModel):
    valid: bool
    amount: Decimal = ZERO
    reason: DiscountRejection | None = None

    @property
    def rejection(self) -> DiscountRejection:
        if self.reason is None:
            raise ValueError("A valid discount has no rejection reason")
        return self.reason


# ─── Commit records ──────────────────────────────────────────────────────────


class OrderLine(BaseModel):
    model_config = ConfigDict(frozen=True)

    product_id: int
    product_name: str
    unit_price: Decimal
    quantity: int
    line_total: Decimal


class OrderDraft(BaseModel):
    employee_id: int
    lines: list[OrderLine]
    subtotal: Decimal
    discount_code: str | None = None
    discount_amount: Decimal = ZERO
    total: Decimal


class Order(BaseModel):
    model_config = ConfigDict(frozen=True)

    order_number: str
    employee_id: int
    lines: tuple[OrderLine, ...]
    subtotal: Decimal
    discount_code: str | None = None
    discount_amount: Decimal = ZERO
    total: Decimal
    idempotency_key: str
    created_at: datetime


class InvoiceDraft(BaseModel):
    order_number: str
    total: Decimal
    paid_by: PaymentMethodEnum
    tendered_amount: Decimal | None = None
    change_due: Decimal | None = None
    verified_by: int


class Invoice(BaseModel):
    model_config = ConfigDict(frozen=True)

    invoice_number: str
    order_number: str
    total: Decimal
    paid_by: PaymentMethodEnum
    tendered_amount: Decimal | None = None
    change_due: Decimal | None = None
    verified_by: int
    issued_at: datetime


class CheckoutAttempt(BaseModel):
    """Idempotency key of the current submit attempt and the draft it covers."""

    idempotency_key: str
    fingerprint: str


class PendingCheckout(BaseModel):
    """An order that exists without its invoice."""

    order: Order
    invoice: InvoiceDraft


Cart.model_rebuild()


# ─── Payment & quote ─────────────────────────────────────────────────────────


class PaymentDraft(BaseModel):
    method: PaymentMethodEnum = PaymentMethodEnum.CASH
    tendered_amount: Decimal | None = None

    @field_validator("tendered_amount")
    @classmethod
    def tender_non_negative(cls, v: Decimal | None) -> Decimal | None:
        if v is not None and v < 0:
            raise ValueError("Tendered amount must be non-negative")
        return v


class CheckoutQuote(BaseModel):
    subtotal: Decimal
    discount_code: str | None = None
    discount_amount: Decimal = ZERO
    total: Decimal
    payment_method: PaymentMethodEnum
    tendered_amount: Decimal | None = None
    change_due: Decimal | None = None


# ─── Receipt ─────────────────────────────────────────────────────────────────


class ReceiptLine(BaseModel):
    product_name: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal


class Receipt(BaseModel):
    model_config = ConfigDict(frozen=True)

    store_name: str
    order_number: str
    invoice_number: str
    issued_at: datetime
    cashier_id: int
    lines: tuple[ReceiptLine, ...]
    subtotal: Decimal
    discount_code: str | None = None
    discount_amount: Decimal = ZERO
    total: Decimal
    paid_by: PaymentMethodEnum
    tendered_amount: Decimal | None = None
    change_due: Decimal | None = None
    qr_payload: str | None = None
    text: str


# ─── API requests / responses ────────────────────────────────────────────────


class AddItemRequest(BaseModel):
    product_id: int
    quantity: int = 1

    @field_validator("quantity")
    @classmethod
    def quantity_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Quantity must be greater than zero")
        return v


class SetQuantityRequest(BaseModel):
    quantity: int


class ApplyDiscountRequest(BaseModel):
    code: str

    @field_validator("code")
    @classmethod
    def code_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Discount code must not be blank")
        return v


class CartOut(BaseModel):
    lines: list[CartLine]
    subtotal: Decimal
    applied_discount: AppliedDiscount | None = None
    total: Decimal
    discount_notice: str | None = None


class CheckoutResultOut(BaseModel):
    outcome: str
    state: str
    order: Order | None = None
    invoice: Invoice | None = None
    receipt: Receipt | None = None
    error_code: str | None = None
    message: str | None = None
    order_number: str | None = None
    receipt_error: str | None = None
