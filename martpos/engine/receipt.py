"""
martpos/engine/receipt.py
-------------------------
Fixed-width thermal receipt text.

An 80 mm roll fits 42 monospace characters. Every line is built by
padding strings to exact widths so the printed columns line up no matter
what font the printer uses:

    Item               Qty    Price    Total
    18 chars + ' ' + 4 + ' ' + 8 + ' ' + 8   = 41

Large amounts widen Price/Total and shorten the name instead.

Output depends only on the invoice and store details — the date/time
shown are the sale's own sold_at, never "now".
"""
from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN
from typing import Sequence, Tuple

from martpos.engine.calculator import Invoice, LineItem, PaymentMode, UnitType
from martpos.engine.money import ZERO, PAISE, format_currency, quantize_money, to_decimal

LINE_WIDTH  = 42
NAME_WIDTH  = 18
QTY_WIDTH   = 4
PRICE_WIDTH = 8
TOTAL_WIDTH = 8


@dataclass(frozen=True)
class StoreDetails:
    name:          str
    address_lines: Tuple[str, ...] = ()
    phone:         str = ''
    gstin:         str = ''

    @classmethod
    def from_config(cls, cfg) -> 'StoreDetails':
        return cls(
            name=cfg.get('STORE_NAME', ''),
            address_lines=tuple(cfg.get('STORE_ADDRESS_LINES') or ()),
            phone=cfg.get('STORE_PHONE', ''),
            gstin=cfg.get('STORE_GSTIN', ''),
        )


# ── Line builders ─────────────────────────────────────────────────

def total_line(label: str, value, width: int = LINE_WIDTH) -> str:
    """Label on the left, value ending exactly at the right margin (min. one space)."""
    label, value = str(label), str(value)
    spaces = width - len(label) - len(value)
    return label + ' ' * max(1, spaces) + value


def _format_qty(item: LineItem) -> str:
    qty = to_decimal(item.quantity)
    if item.unit_type == UnitType.piece:
        return str(int(qty))
    return format(qty.normalize(), 'f')


def item_line(item: LineItem, width: int = LINE_WIDTH) -> str:
    """
    One item row. Price and Total grow past their usual eight columns
    for five-figure amounts; the name gives up the space so the row
    never runs past `width`.
    """
    qty   = _format_qty(item).rjust(QTY_WIDTH)
    price = format_currency(item.price_at_sale, show_symbol=False).rjust(PRICE_WIDTH)
    total = format_currency(item.line_total, show_symbol=False).rjust(TOTAL_WIDTH)
    room  = width - 1 - len(qty) - len(price) - len(total) - 3
    name_width = max(1, min(NAME_WIDTH, room))
    name  = item.product_name[:name_width].ljust(name_width)
    return f'{name} {qty} {price} {total}'


def header_line() -> str:
    return ('Item'.ljust(NAME_WIDTH) + ' ' +
            'Qty'.rjust(QTY_WIDTH) + ' ' +
            'Price'.rjust(PRICE_WIDTH) + ' ' +
            'Total'.rjust(TOTAL_WIDTH))


def _centered(text: str, width: int) -> str:
    return text.center(width).rstrip()


def _rate_label(items: Sequence[LineItem]) -> str:
    """' @2.5%' when every taxed line shares one rate, else ''."""
    rates = {to_decimal(i.gst_rate) for i in items if to_decimal(i.gst_rate) > 0}
    if len(rates) != 1:
        return ''
    half = rates.pop() / 2
    return f' @{format(half.normalize(), "f")}%'


def _less(amount: Decimal) -> str:
    return f'- {format_currency(amount)}'


# ── Public ────────────────────────────────────────────────────────

def format_receipt(invoice: Invoice, store: StoreDetails, width: int = LINE_WIDTH,
                   split_gst: bool = True) -> str:
    """
    Render a persisted invoice as receipt text (lines joined by '\\n').

    split_gst=True prints GST as two equal CGST/SGST halves; any odd
    paisa goes to SGST so the halves always add back to the total GST.
    """
    dashed = '-' * width
    lines = []

    # ── Store header ──────────────────────────────────────────────
    lines.append(_centered(store.name.upper(), width))
    for address in store.address_lines:
        lines.append(_centered(address, width))
    if store.phone:
        lines.append(_centered(f'Ph: {store.phone}', width))
    if store.gstin:
        lines.append(_centered(f'GST No: {store.gstin}', width))
    lines.append(dashed)

    # ── Bill meta ─────────────────────────────────────────────────
    if invoice.bill_number:
        lines.append(total_line('Bill No:', invoice.bill_number, width))
    if invoice.sold_at is not None:
        lines.append(total_line('Date:', invoice.sold_at.strftime('%d/%m/%Y'), width))
        lines.append(total_line('Time:', invoice.sold_at.strftime('%I:%M %p'), width))
    lines.append(total_line('Customer:', invoice.customer_name or 'Walk-in', width))
    lines.append(dashed)

    # ── Items ─────────────────────────────────────────────────────
    lines.append(header_line())
    lines.append(dashed)
    for item in invoice.items:
        lines.append(item_line(item, width))
    lines.append(dashed)

    # ── Totals ────────────────────────────────────────────────────
    lines.append(total_line('MRP Total', format_currency(invoice.mrp_total), width))
    if invoice.item_savings > 0:
        lines.append(total_line('Item Savings', _less(invoice.item_savings), width))
    if invoice.additional_discount_amount > 0:
        lines.append(total_line('Cart Discount', _less(invoice.additional_discount_amount), width))
    if invoice.loyalty_discount_amount > 0:
        lines.append(total_line(f'Loyalty ({invoice.loyalty_points_used} pts)',
                                _less(invoice.loyalty_discount_amount), width))

    gst = quantize_money(invoice.gst_for_db)
    subtotal = invoice.total_amount - invoice.round_off_amount - gst
    lines.append(total_line('Subtotal', format_currency(subtotal), width))

    if gst > 0:
        if split_gst:
            cgst = (gst / 2).quantize(PAISE, rounding=ROUND_DOWN)
            sgst = gst - cgst
            rate = _rate_label(invoice.items)
            lines.append(total_line(f'CGST{rate}', format_currency(cgst), width))
            lines.append(total_line(f'SGST{rate}', format_currency(sgst), width))
        else:
            lines.append(total_line('GST', format_currency(gst), width))

    round_off = quantize_money(invoice.round_off_amount)
    if round_off != ZERO:
        lines.append(total_line('Round Off', f'{round_off:.2f}', width))
    lines.append(dashed)

    lines.append(total_line('TOTAL', format_currency(invoice.total_amount), width))
    lines.append(dashed)

    # ── Payment ───────────────────────────────────────────────────
    lines.append(total_line('Paid via', invoice.payment_mode.value, width))
    if invoice.payment_mode == PaymentMode.cash:
        lines.append(total_line('Received', format_currency(invoice.amount_received), width))
        lines.append(total_line('Change', format_currency(invoice.change_given), width))

    # ── Footer ────────────────────────────────────────────────────
    if invoice.total_saved > 0:
        lines.append(dashed)
        lines.append(_centered(f'You Saved {format_currency(invoice.total_saved)}!', width))
    lines.append(dashed)
    lines.append(_centered('Thank you for your visit!', width))
    if invoice.customer_id is not None:
        lines.append(_centered(f'Points Earned: {invoice.loyalty_points_earned}', width))
        if invoice.loyalty_points_used > 0:
            lines.append(_centered(f'Points Used: {invoice.loyalty_points_used}', width))

    return '\n'.join(lines)
