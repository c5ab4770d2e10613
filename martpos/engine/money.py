"""
martpos/engine/money.py
------------------------
Currency rounding and GST helpers shared by the calculator, checkout
and receipt code.

Everything here works in Decimal. Whole-rupee rounding and paise
(2 dp) rounding are both half away from zero, which is what
decimal.ROUND_HALF_UP does for negative values too.
"""
from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP


ZERO    = Decimal('0')
PAISE   = Decimal('0.01')   # display / ledger precision
RUPEE   = Decimal('1')      # bill total precision
HUNDRED = Decimal('100')


@dataclass(frozen=True)
class TaxSplit:
    """Pre-tax base and tax portion of a GST-inclusive amount."""
    base: Decimal
    tax:  Decimal


# ── Coercion ──────────────────────────────────────────────────────

def to_decimal(value, non_negative: bool = False) -> Decimal:
    """
    Coerce a raw numeric value (str, int, float, Decimal, None) to Decimal.

    Anything that isn't a finite number becomes 0 — empty form fields,
    'abc', NaN and infinities included. With non_negative=True negative
    values are clamped to 0 as well.
    """
    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            return ZERO
    if not result.is_finite():
        return ZERO
    if non_negative and result < 0:
        return ZERO
    return result


# ── Rounding ──────────────────────────────────────────────────────

def round_currency(amount) -> Decimal:
    """Round to the nearest whole currency unit, halves away from zero."""
    return to_decimal(amount).quantize(RUPEE, rounding=ROUND_HALF_UP)


def quantize_money(amount) -> Decimal:
    """Round to paise (2 dp), halves away from zero."""
    return to_decimal(amount).quantize(PAISE, rounding=ROUND_HALF_UP)


# ── GST ───────────────────────────────────────────────────────────

def split_inclusive_tax(gross, rate_percent) -> TaxSplit:
    """
    Reverse-derive base and tax from a GST-inclusive amount.

        base = gross / (1 + rate/100)     (rounded to paise)
        tax  = gross - base

    tax is taken as the remainder, so base + tax == gross exactly.
    A zero (or invalid) rate returns the gross as base with no tax.
    """
    gross = to_decimal(gross)
    rate  = to_decimal(rate_percent, non_negative=True)
    if rate == 0:
        return TaxSplit(base=gross, tax=ZERO)

    base = quantize_money(gross / (1 + rate / HUNDRED))
    return TaxSplit(base=base, tax=gross - base)


def add_exclusive_tax(base, rate_percent) -> Decimal:
    """Forward calculation: GST-exclusive price → inclusive price (paise)."""
    base = to_decimal(base)
    rate = to_decimal(rate_percent, non_negative=True)
    return quantize_money(base * (1 + rate / HUNDRED))


# ── Display ───────────────────────────────────────────────────────

def _group_indian(digits: str) -> str:
    """'1234567' → '12,34,567' (lakh/crore grouping)."""
    if len(digits) <= 3:
        return digits
    head, tail = digits[:-3], digits[-3:]
    groups = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    return ','.join(groups) + ',' + tail


def format_currency(amount, show_symbol: bool = True) -> str:
    """
    Format an amount the en-IN way: ₹1,23,456.78.

    Non-numeric input renders as zero rather than raising.
    """
    value = quantize_money(amount)
    sign = '-' if value < 0 else ''
    whole, frac = f'{abs(value):.2f}'.split('.')
    symbol = '₹' if show_symbol else ''
    return f'{sign}{symbol}{_group_indian(whole)}.{frac}'
