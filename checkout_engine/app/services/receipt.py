from __future__ import annotations

import base64
import struct
from decimal import Decimal

from checkout_engine.app.core.config import settings
from checkout_engine.app.schemas.checkout import (
    Invoice,
    Order,
    PaymentMethodEnum,
    Receipt,
    ReceiptLine,
)


def _tlv(tag: int, value: str) -> bytes:
    """Encode a single TLV field.

    Format: [tag: 1 byte] [length: 1 byte] [value: n bytes (UTF-8)]
    """
    encoded = value.encode("utf-8")
    if len(encoded) > 255:
        raise ValueError(f"TLV value too long: {len(encoded)} bytes (max 255)")
    return struct.pack("BB", tag, len(encoded)) + encoded


def generate_payment_qr(
    store_name: str,
    invoice_number: str,
    order_number: str,
    total_amount: str,
    timestamp: str,
) -> str:
    """Build the scan payload shown for QR payments (Base64-encoded TLV).

    Tags:
        1: Store name
        2: Invoice number
        3: Order number
        4: Amount due
        5: Invoice timestamp (ISO 8601)

    Display only; settlement of the QR payment happens elsewhere.
    """
    tlv_bytes = b"".join([
        _tlv(1, store_name),
        _tlv(2, invoice_number),
        _tlv(3, order_number),
        _tlv(4, total_amount),
        _tlv(5, timestamp),
    ])
    return base64.b64encode(tlv_bytes).decode("ascii")


def decode_payment_qr(payload: str) -> dict[int, str]:
    """Inverse of generate_payment_qr, used by receipt reprints and tests."""
    raw = base64.b64decode(payload)
    fields: dict[int, str] = {}
    pos = 0
    while pos < len(raw):
        tag, length = struct.unpack_from("BB", raw, pos)
        pos += 2
        fields[tag] = raw[pos:pos + length].decode("utf-8")
        pos += length
    return fields


def format_money(amount: Decimal, label: str | None = None) -> str:
    """Thousands separated with '.', decimals with ',' (e.g. Rp 18.500)."""
    label = settings.CURRENCY_LABEL if label is None else label
    if amount == amount.to_integral_value():
        text = f"{int(amount):,}"
    else:
        text = f"{amount:,.2f}"
    text = text.replace(",", "_").replace(".", ",").replace("_", ".")
    return f"{label} {text}".strip()


class ReceiptFormatter:
    """Renders a committed (Order, Invoice) pair.

    Only echoes committed values; nothing here recomputes totals, discount
    or change.
    """

    def __init__(
        self,
        store_name: str | None = None,
        currency_label: str | None = None,
        width: int | None = None,
    ) -> None:
        self.store_name = store_name or settings.STORE_NAME
        self.currency_label = settings.CURRENCY_LABEL if currency_label is None else currency_label
        self.width = width or settings.RECEIPT_WIDTH

    def render(self, order: Order, invoice: Invoice) -> Receipt:
        if invoice.order_number != order.order_number:
            raise ValueError(
                f"Invoice {invoice.invoice_number} belongs to order {invoice.order_number}, "
                f"not {order.order_number}"
            )

        qr_payload = None
        if invoice.paid_by == PaymentMethodEnum.QR:
            qr_payload = generate_payment_qr(
                store_name=self.store_name,
                invoice_number=invoice.invoice_number,
                order_number=order.order_number,
                total_amount=str(invoice.total),
                timestamp=invoice.issued_at.isoformat(timespec="seconds"),
            )

        lines = tuple(
            ReceiptLine(
                product_name=line.product_name,
                quantity=line.quantity,
                unit_price=line.unit_price,
                line_total=line.line_total,
            )
            for line in order.lines
        )

        return Receipt(
            store_name=self.store_name,
            order_number=order.order_number,
            invoice_number=invoice.invoice_number,
            issued_at=invoice.issued_at,
            cashier_id=invoice.verified_by,
            lines=lines,
            subtotal=order.subtotal,
            discount_code=order.discount_code,
            discount_amount=order.discount_amount,
            total=invoice.total,
            paid_by=invoice.paid_by,
            tendered_amount=invoice.tendered_amount,
            change_due=invoice.change_due,
            qr_payload=qr_payload,
            text=self._render_text(order, invoice, lines),
        )

    # ── Plain-text layout ────────────────────────────────────────────────

    def _money(self, amount: Decimal) -> str:
        return format_money(amount, self.currency_label)

    def _row(self, left: str, right: str) -> str:
        gap = max(self.width - len(left) - len(right), 1)
        return f"{left}{' ' * gap}{right}"

    def _render_text(self, order: Order, invoice: Invoice, lines: tuple[ReceiptLine, ...]) -> str:
        rule = "-" * self.width
        out = [
            self.store_name.center(self.width).rstrip(),
            self._row("Order", order.order_number),
            self._row("Invoice", invoice.invoice_number),
            self._row("Date", invoice.issued_at.strftime("%Y-%m-%d %H:%M")),
            self._row("Cashier", f"#{invoice.verified_by}"),
            rule,
        ]
        for line in lines:
            out.append(line.product_name[: self.width])
            out.append(self._row(
                f"  {line.quantity} x {self._money(line.unit_price)}",
                self._money(line.line_total),
            ))
        out.append(rule)
        out.append(self._row("Subtotal", self._money(order.subtotal)))
        if order.discount_code:
            out.append(self._row(f"Discount ({order.discount_code})", f"-{self._money(order.discount_amount)}"))
        out.append(self._row("Total", self._money(invoice.total)))

        if invoice.paid_by == PaymentMethodEnum.CASH:
            if invoice.tendered_amount is not None:
                out.append(self._row("Cash", self._money(invoice.tendered_amount)))
            if invoice.change_due is not None:
                out.append(self._row("Change", self._money(invoice.change_due)))
        else:
            out.append(self._row("Paid by", "QR"))

        out.append(rule)
        out.append("Thank you".center(self.width).rstrip())
        return "\n".join(out)
