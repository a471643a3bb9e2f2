"""Tests for receipt rendering and the QR payment payload."""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from checkout_engine.app.schemas.checkout import (
    Invoice,
    Order,
    OrderLine,
    PaymentMethodEnum,
)
from checkout_engine.app.services.receipt import (
    ReceiptFormatter,
    decode_payment_qr,
    format_money,
    generate_payment_qr,
)

ISSUED = datetime(2026, 10, 19, 9, 31, tzinfo=timezone.utc)


def _order(**overrides: object) -> Order:
    data: dict[str, object] = {
        "order_number": "ORD-0042",
        "employee_id": 7,
        "lines": (
            OrderLine(
                product_id=2,
                product_name="Buku Tulis",
                unit_price=Decimal("7500"),
                quantity=2,
                line_total=Decimal("15000"),
            ),
            OrderLine(
                product_id=1,
                product_name="Pensil 2B",
                unit_price=Decimal("3500"),
                quantity=1,
                line_total=Decimal("3500"),
            ),
        ),
        "subtotal": Decimal("18500"),
        "discount_code": "HEMAT10",
        "discount_amount": Decimal("1850"),
        "total": Decimal("16650"),
        "idempotency_key": "key-1",
        "created_at": ISSUED,
    }
    data.update(overrides)
    return Order.model_validate(data)


def _invoice(**overrides: object) -> Invoice:
    data: dict[str, object] = {
        "invoice_number": "INV-2026-0042",
        "order_number": "ORD-0042",
        "total": Decimal("16650"),
        "paid_by": PaymentMethodEnum.CASH,
        "tendered_amount": Decimal("20000"),
        "change_due": Decimal("3350"),
        "verified_by": 7,
        "issued_at": ISSUED,
    }
    data.update(overrides)
    return Invoice.model_validate(data)


@pytest.fixture()
def formatter() -> ReceiptFormatter:
    return ReceiptFormatter(store_name="Koperasi Sekolah", currency_label="Rp", width=40)


# ─── TestFormatMoney ─────────────────────────────────────────────────────────


class TestFormatMoney:
    def test_thousands_separator(self) -> None:
        assert format_money(Decimal("18500"), "Rp") == "Rp 18.500"

    def test_whole_decimal_drops_fraction(self) -> None:
        assert format_money(Decimal("1850.00"), "Rp") == "Rp 1.850"

    def test_fraction_kept(self) -> None:
        assert format_money(Decimal("1234.5"), "Rp") == "Rp 1.234,50"

    def test_empty_label(self) -> None:
        assert format_money(Decimal("500"), "") == "500"


# ─── TestReceiptFormatter ────────────────────────────────────────────────────


class TestReceiptFormatter:
    def test_echoes_committed_values(self, formatter: ReceiptFormatter) -> None:
        receipt = formatter.render(_order(), _invoice())
        assert receipt.order_number == "ORD-0042"
        assert receipt.invoice_number == "INV-2026-0042"
        assert receipt.subtotal == Decimal("18500")
        assert receipt.discount_code == "HEMAT10"
        assert receipt.discount_amount == Decimal("1850")
        assert receipt.total == Decimal("16650")
        assert receipt.tendered_amount == Decimal("20000")
        assert receipt.change_due == Decimal("3350")
        assert receipt.cashier_id == 7
        assert receipt.issued_at == ISSUED
        assert [line.product_name for line in receipt.lines] == ["Buku Tulis", "Pensil 2B"]
        assert receipt.qr_payload is None

    def test_does_not_recompute_totals(self, formatter: ReceiptFormatter) -> None:
        """Whatever was committed is printed, even if it does not add up."""
        receipt = formatter.render(_order(total=Decimal("1")), _invoice(total=Decimal("2")))
        assert receipt.total == Decimal("2")

    def test_text_layout(self, formatter: ReceiptFormatter) -> None:
        text = formatter.render(_order(), _invoice()).text
        rows = text.splitlines()
        assert rows[0].strip() == "Koperasi Sekolah"
        assert "ORD-0042" in rows[1]
        assert "INV-2026-0042" in rows[2]
        assert "2026-10-19 09:31" in rows[3]
        assert "Discount (HEMAT10)" in text
        assert "-Rp 1.850" in text
        assert "Change" in text
        assert "Rp 3.350" in text
        assert all(len(row) <= 40 for row in rows)

    def test_no_discount_row_without_code(self, formatter: ReceiptFormatter) -> None:
        order = _order(discount_code=None, discount_amount=Decimal("0"), total=Decimal("18500"))
        text = formatter.render(order, _invoice(total=Decimal("18500"))).text
        assert "Discount" not in text

    def test_qr_payment_has_payload(self, formatter: ReceiptFormatter) -> None:
        invoice = _invoice(paid_by=PaymentMethodEnum.QR, tendered_amount=None, change_due=None)
        receipt = formatter.render(_order(), invoice)
        fields = decode_payment_qr(receipt.qr_payload)
        assert fields == {
            1: "Koperasi Sekolah",
            2: "INV-2026-0042",
            3: "ORD-0042",
            4: "16650",
            5: "2026-10-19T09:31:00+00:00",
        }
        assert "Paid by" in receipt.text
        assert "Change" not in receipt.text

    def test_mismatched_invoice_rejected(self, formatter: ReceiptFormatter) -> None:
        with pytest.raises(ValueError):
            formatter.render(_order(), _invoice(order_number="ORD-9999"))


# ─── TestPaymentQr ───────────────────────────────────────────────────────────


class TestPaymentQr:
    def test_value_too_long_rejected(self) -> None:
        with pytest.raises(ValueError):
            generate_payment_qr("x" * 300, "INV-1", "ORD-1", "100", "2026-10-19T09:31:00")

    def test_utf8_store_name(self) -> None:
        payload = generate_payment_qr("Koperasi Sekolah Ceria ✓", "INV-1", "ORD-1", "100", "t")
        assert decode_payment_qr(payload)[1] == "Koperasi Sekolah Ceria ✓"
