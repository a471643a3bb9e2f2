from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import TYPE_CHECKING

from checkout_engine.app.core.config import settings
from checkout_engine.app.core.exceptions import (
    DiscountBelowMinimum,
    DiscountError,
    DiscountExpired,
    DiscountLimitReached,
    DiscountNotFound,
    DiscountUpcoming,
)
from checkout_engine.app.schemas.checkout import (
    ZERO,
    AppliedDiscount,
    DiscountCode,
    DiscountRejection,
    DiscountStatusEnum,
    DiscountTypeEnum,
    DiscountValidation,
)
from checkout_engine.app.services.gateways import DiscountLookup

if TYPE_CHECKING:
    from checkout_engine.app.services.cart import CartStore

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")

_STATUS_REJECTIONS: dict[DiscountStatusEnum, DiscountRejection] = {
    DiscountStatusEnum.EXPIRED: DiscountRejection.EXPIRED,
    DiscountStatusEnum.UPCOMING: DiscountRejection.UPCOMING,
    DiscountStatusEnum.LIMIT_REACHED: DiscountRejection.LIMIT_REACHED,
}

_REJECTION_ERRORS: dict[DiscountRejection, type[DiscountError]] = {
    DiscountRejection.NOT_FOUND: DiscountNotFound,
    DiscountRejection.EXPIRED: DiscountExpired,
    DiscountRejection.UPCOMING: DiscountUpcoming,
    DiscountRejection.LIMIT_REACHED: DiscountLimitReached,
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def quantize_money(amount: Decimal) -> Decimal:
    return amount.quantize(settings.MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def normalize_code(code: str) -> str:
    return code.strip().upper()


def evaluate_discount(rule: DiscountCode, subtotal: Decimal, now: datetime) -> DiscountValidation:
    """Decide whether ``rule`` applies to ``subtotal`` at ``now``.

    Pure function of its arguments. A fixed discount is capped at the
    subtotal, a percentage discount at ``max_discount_amount`` when set.
    """
    status = rule.status_at(now)
    if status in _STATUS_REJECTIONS:
        return DiscountValidation(valid=False, reason=_STATUS_REJECTIONS[status])

    if subtotal < rule.min_purchase:
        return DiscountValidation(valid=False, reason=DiscountRejection.BELOW_MINIMUM)

    if rule.discount_type == DiscountTypeEnum.PERCENTAGE:
        amount = quantize_money(subtotal * rule.value / HUNDRED)
        if rule.max_discount_amount is not None:
            amount = min(amount, rule.max_discount_amount)
    else:
        amount = min(rule.value, subtotal)

    return DiscountValidation(valid=True, amount=max(amount, ZERO))


def rejection_error(code: str, reason: DiscountRejection, rule: DiscountCode | None = None) -> DiscountError:
    """Build the exception matching a rejected validation."""
    if reason == DiscountRejection.BELOW_MINIMUM:
        return DiscountBelowMinimum(code, rule.min_purchase if rule else None)
    return _REJECTION_ERRORS[reason](code)


def applied_from(rule: DiscountCode, validation: DiscountValidation) -> AppliedDiscount:
    return AppliedDiscount(
        code=rule.code,
        discount_type=rule.discount_type,
        value=rule.value,
        computed_amount=validation.amount,
    )


class DiscountValidator:
    """Validates discount codes through the discount-lookup collaborator."""

    def __init__(
        self,
        lookup: DiscountLookup,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.lookup = lookup
        self.clock = clock

    async def fetch(self, code: str) -> DiscountCode | None:
        return await self.lookup.lookup_discount(normalize_code(code))

    async def validate(self, code: str, subtotal: Decimal) -> DiscountValidation:
        rule = await self.fetch(code)
        if rule is None:
            return DiscountValidation(valid=False, reason=DiscountRejection.NOT_FOUND)
        return evaluate_discount(rule, subtotal, self.clock())

    async def apply_code(self, cart: CartStore, code: str) -> AppliedDiscount:
        """Attach ``code`` to the cart or raise the matching DiscountError.

        The cart is left untouched when the code is rejected.
        """
        normalized = normalize_code(code)
        rule = await self.fetch(normalized)
        if rule is None:
            logger.info("Discount code %s not found", normalized)
            raise DiscountNotFound(normalized)

        validation = evaluate_discount(rule, cart.subtotal(), self.clock())
        if not validation.valid:
            reason = validation.rejection
            logger.info("Discount code %s rejected: %s", normalized, reason.value)
            raise rejection_error(normalized, reason, rule)

        applied = applied_from(rule, validation)
        cart.attach_discount(rule, applied)
        logger.info("Discount code %s applied: %s", normalized, applied.computed_amount)
        return applied

    def remove_code(self, cart: CartStore) -> None:
        cart.detach_discount()
