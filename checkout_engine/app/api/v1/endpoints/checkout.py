from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from checkout_engine.app.api.deps import get_checkout_session
from checkout_engine.app.core.exceptions import (
    CartError,
    CheckoutEngineError,
    CheckoutInProgress,
    DiscountError,
    GatewayError,
    PendingReconciliation,
)
from checkout_engine.app.schemas.checkout import (
    AddItemRequest,
    AppliedDiscount,
    ApplyDiscountRequest,
    CartOut,
    CheckoutQuote,
    CheckoutResultOut,
    PaymentDraft,
    Receipt,
    SetQuantityRequest,
)
from checkout_engine.app.services.checkout import CheckoutResult
from checkout_engine.app.services.session import CheckoutSession

router = APIRouter()


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, (CartError, CheckoutInProgress, PendingReconciliation)):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, DiscountError):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    elif isinstance(exc, GatewayError):
        code = status.HTTP_502_BAD_GATEWAY
    else:
        code = status.HTTP_400_BAD_REQUEST
    error_code = exc.code if isinstance(exc, CheckoutEngineError) else "INVALID_REQUEST"
    return HTTPException(status_code=code, detail={"code": error_code, "message": str(exc)})


def _cart_out(session: CheckoutSession) -> CartOut:
    cart = session.cart
    return CartOut(
        lines=cart.lines,
        subtotal=cart.subtotal(),
        applied_discount=cart.applied_discount,
        total=cart.total(),
        discount_notice=cart.discount_notice,
    )


def _result_out(session: CheckoutSession, result: CheckoutResult) -> CheckoutResultOut:
    return CheckoutResultOut(
        outcome=result.outcome.value,
        state=session.orchestrator.state.value,
        order=result.order,
        invoice=result.invoice,
        receipt=result.receipt,
        error_code=result.error.code if result.error else None,
        message=str(result.error) if result.error else None,
        order_number=result.order_number,
        receipt_error=str(result.receipt_error) if result.receipt_error else None,
    )


# ─── Cart lines ──────────────────────────────────────────────────────────────


@router.get("/cart", response_model=CartOut)
def get_cart(session: CheckoutSession = Depends(get_checkout_session)) -> CartOut:
    return _cart_out(session)


@router.post("/cart/items", response_model=CartOut)
async def add_cart_item(
    payload: AddItemRequest,
    session: CheckoutSession = Depends(get_checkout_session),
) -> CartOut:
    try:
        product = await session.catalog.get_product(payload.product_id)
        session.cart.add_item(product, payload.quantity)
    except ValueError as e:
        raise _http_error(e)
    return _cart_out(session)


@router.put("/cart/items/{product_id}", response_model=CartOut)
def set_cart_item_quantity(
    product_id: int,
    payload: SetQuantityRequest,
    session: CheckoutSession = Depends(get_checkout_session),
) -> CartOut:
    try:
        session.cart.set_qty(product_id, payload.quantity)
    except ValueError as e:
        raise _http_error(e)
    return _cart_out(session)


@router.delete("/cart/items/{product_id}", response_model=CartOut)
def remove_cart_item(
    product_id: int,
    session: CheckoutSession = Depends(get_checkout_session),
) -> CartOut:
    try:
        session.cart.remove_item(product_id)
    except ValueError as e:
        raise _http_error(e)
    return _cart_out(session)


@router.delete("/cart", response_model=CartOut)
def clear_cart(session: CheckoutSession = Depends(get_checkout_session)) -> CartOut:
    try:
        session.cart.clear()
    except ValueError as e:
        raise _http_error(e)
    return _cart_out(session)


@router.post("/cart/refresh-stock", response_model=list[int])
async def refresh_cart_stock(session: CheckoutSession = Depends(get_checkout_session)) -> list[int]:
    try:
        return await session.cart.refresh_stock(session.catalog)
    except ValueError as e:
        raise _http_error(e)


# ─── Discount ────────────────────────────────────────────────────────────────


@router.post("/discount", response_model=AppliedDiscount)
async def apply_discount(
    payload: ApplyDiscountRequest,
    session: CheckoutSession = Depends(get_checkout_session),
) -> AppliedDiscount:
    try:
        return await session.validator.apply_code(session.cart, payload.code)
    except ValueError as e:
        raise _http_error(e)


@router.delete("/discount", response_model=CartOut)
def remove_discount(session: CheckoutSession = Depends(get_checkout_session)) -> CartOut:
    try:
        session.validator.remove_code(session.cart)
    except ValueError as e:
        raise _http_error(e)
    return _cart_out(session)


# ─── Payment & submit ────────────────────────────────────────────────────────


@router.put("/payment", response_model=CheckoutQuote)
def set_payment(
    payload: PaymentDraft,
    session: CheckoutSession = Depends(get_checkout_session),
) -> CheckoutQuote:
    try:
        session.orchestrator.set_payment(payload.method, payload.tendered_amount)
    except ValueError as e:
        raise _http_error(e)
    return session.orchestrator.quote()


@router.get("/quote", response_model=CheckoutQuote)
def get_quote(session: CheckoutSession = Depends(get_checkout_session)) -> CheckoutQuote:
    return session.orchestrator.quote()


@router.post("/submit", response_model=CheckoutResultOut)
async def submit_checkout(session: CheckoutSession = Depends(get_checkout_session)) -> CheckoutResultOut:
    try:
        result = await session.orchestrator.submit()
    except ValueError as e:
        raise _http_error(e)
    return _result_out(session, result)


@router.post("/retry-invoice", response_model=CheckoutResultOut)
async def retry_invoice(session: CheckoutSession = Depends(get_checkout_session)) -> CheckoutResultOut:
    try:
        result = await session.orchestrator.retry_invoice()
    except ValueError as e:
        raise _http_error(e)
    return _result_out(session, result)


@router.post("/acknowledge", status_code=status.HTTP_204_NO_CONTENT)
def acknowledge_pending_order(session: CheckoutSession = Depends(get_checkout_session)) -> None:
    try:
        session.orchestrator.acknowledge_pending_order()
    except ValueError as e:
        raise _http_error(e)


@router.get("/receipt", response_model=Receipt)
def reprint_receipt(session: CheckoutSession = Depends(get_checkout_session)) -> Receipt:
    try:
        return session.orchestrator.reprint_receipt()
    except ValueError as e:
        raise _http_error(e)
