"""
martpos/engine/calculator.py
----------------------------
Pure sale calculation engine.

compute_invoice() turns a cart of LineItems, a cart-level DiscountSpec,
a loyalty-point request and an optional customer into an Invoice. No
DB access and no mutable state — the billing screen calls it on every
cart change, and checkout calls it once more right before submitting.

Order of operations
───────────────────
1. display_subtotal = Σ price_at_sale × quantity          (GST-inclusive)
2. per line: reverse-split GST at that line's own rate → ledger figures
3. cart discount (percentage | fixed), clamped to [0, display_subtotal]
4. loyalty redemption, capped by balance AND by what is left to pay
5. total = round to whole rupee, round_off = total − pre-round total
6. points earned = floor(total / earn_rate), customers only
"""
from __future__ import annotations
import enum
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence, Tuple

from martpos.engine.errors import ValidationError
from martpos.engine.money import (
    ZERO, to_decimal, quantize_money, round_currency, split_inclusive_tax,
)


class UnitType(str, enum.Enum):
    piece  = 'piece'
    weight = 'weight'


class DiscountType(str, enum.Enum):
    percentage = 'percentage'
    fixed      = 'fixed'


class PaymentMode(str, enum.Enum):
    cash = 'Cash'
    card = 'Card'
    upi  = 'UPI'


# ── Pricing policy ────────────────────────────────────────────────

@dataclass(frozen=True)
class PricingPolicy:
    """Loyalty constants — deployment configuration, see config.py."""
    point_value: Decimal = Decimal('5')    # ₹ redeemed per point
    earn_rate:   Decimal = Decimal('100')  # ₹ spent per point earned

    @classmethod
    def from_config(cls, cfg) -> 'PricingPolicy':
        return cls(
            point_value=to_decimal(cfg.get('LOYALTY_POINT_VALUE', 5), non_negative=True),
            earn_rate=to_decimal(cfg.get('LOYALTY_EARN_RATE', 100), non_negative=True),
        )


DEFAULT_POLICY = PricingPolicy()


# ── Inputs ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class LineItem:
    """
    One product line, snapshotted at the moment it entered the cart.
    Later product edits never reach a LineItem already sold.
    """
    product_id:         int
    product_name:       str
    quantity:           Decimal
    mrp:                Decimal
    price_at_sale:      Decimal
    cost_price_at_sale: Decimal = ZERO
    gst_rate:           Decimal = ZERO
    unit_type:          UnitType = UnitType.piece
    is_gst_inclusive:   bool = True
    is_free_item:       bool = False

    @property
    def line_total(self) -> Decimal:
        """price_at_sale × quantity at paise precision (0 for free items)."""
        if self.is_free_item:
            return ZERO
        price = to_decimal(self.price_at_sale, non_negative=True)
        qty   = to_decimal(self.quantity, non_negative=True)
        return quantize_money(price * qty)

    @property
    def savings(self) -> Decimal:
        """(mrp − price_at_sale) × quantity, never negative."""
        mrp   = to_decimal(self.mrp, non_negative=True)
        price = ZERO if self.is_free_item else to_decimal(self.price_at_sale, non_negative=True)
        qty   = to_decimal(self.quantity, non_negative=True)
        return max(ZERO, quantize_money((mrp - price) * qty))

    def with_quantity(self, quantity) -> 'LineItem':
        return replace(self, quantity=to_decimal(quantity))

    def to_dict(self) -> dict:
        """JSON-safe dict — Decimals as strings."""
        return {
            'product_id':         self.product_id,
            'product_name':       self.product_name,
            'quantity':           str(self.quantity),
            'mrp':                str(self.mrp),
            'price_at_sale':      str(self.price_at_sale),
            'cost_price_at_sale': str(self.cost_price_at_sale),
            'gst_rate':           str(self.gst_rate),
            'unit_type':          self.unit_type.value,
            'is_gst_inclusive':   self.is_gst_inclusive,
            'is_free_item':       self.is_free_item,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'LineItem':
        is_free = bool(data.get('is_free_item', False))
        return cls(
            product_id=data['product_id'],
            product_name=data.get('product_name', ''),
            quantity=to_decimal(data.get('quantity')),
            mrp=to_decimal(data.get('mrp'), non_negative=True),
            price_at_sale=ZERO if is_free else to_decimal(data.get('price_at_sale'), non_negative=True),
            cost_price_at_sale=to_decimal(data.get('cost_price_at_sale'), non_negative=True),
            gst_rate=to_decimal(data.get('gst_rate'), non_negative=True),
            unit_type=UnitType(data.get('unit_type') or UnitType.piece.value),
            is_gst_inclusive=bool(data.get('is_gst_inclusive', True)),
            is_free_item=is_free,
        )


@dataclass(frozen=True)
class DiscountSpec:
    """Cart-level discount. Switching type keeps the value as-is."""
    type:  DiscountType = DiscountType.percentage
    value: Decimal = ZERO

    @classmethod
    def parse(cls, type_raw, value_raw) -> 'DiscountSpec':
        try:
            dtype = DiscountType(type_raw or DiscountType.percentage.value)
        except ValueError:
            dtype = DiscountType.percentage
        return cls(type=dtype, value=to_decimal(value_raw, non_negative=True))

    def to_dict(self) -> dict:
        return {'type': self.type.value, 'value': str(self.value)}


NO_DISCOUNT = DiscountSpec()


@dataclass(frozen=True)
class CustomerSnapshot:
    """What the engine needs to know about the buyer."""
    id:             int
    name:           str
    loyalty_points: int = 0
    phone:          str = ''


# ── Output ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Invoice:
    """
    Result of compute_invoice(); once persisted it is the Sale record.

    Invariant:
        total_amount == round(display_subtotal − additional_discount_amount
                              − loyalty_discount_amount)
        round_off_amount == total_amount − (that same pre-round figure)
    """
    items:                      Tuple[LineItem, ...] = ()
    discount:                   DiscountSpec = NO_DISCOUNT
    display_subtotal:           Decimal = ZERO
    sub_total_for_db:           Decimal = ZERO
    gst_for_db:                 Decimal = ZERO
    item_savings:               Decimal = ZERO
    additional_discount_amount: Decimal = ZERO
    loyalty_discount_amount:    Decimal = ZERO
    round_off_amount:           Decimal = ZERO
    total_amount:               Decimal = ZERO
    payment_mode:               PaymentMode = PaymentMode.cash
    amount_received:            Decimal = ZERO
    change_given:               Decimal = ZERO
    loyalty_points_earned:      int = 0
    loyalty_points_used:        int = 0
    points_requested:           int = 0
    customer_id:                Optional[int] = None
    customer_name:              str = 'Walk-in'
    # Set once persisted
    bill_number:                Optional[str] = None
    sold_at:                    Optional[datetime] = None
    sold_by:                    Optional[str] = None
    sale_id:                    Optional[int] = None
    version:                    Optional[int] = None

    @property
    def amount_before_loyalty(self) -> Decimal:
        return self.display_subtotal - self.additional_discount_amount

    @property
    def pre_round_total(self) -> Decimal:
        return self.amount_before_loyalty - self.loyalty_discount_amount

    @property
    def mrp_total(self) -> Decimal:
        return sum((quantize_money(to_decimal(i.mrp) * to_decimal(i.quantity)) for i in self.items),
                   start=ZERO)

    @property
    def total_saved(self) -> Decimal:
        return self.item_savings + self.additional_discount_amount + self.loyalty_discount_amount

    @property
    def points_net(self) -> int:
        """Single net adjustment applied to the customer's balance."""
        return self.loyalty_points_earned - self.loyalty_points_used

    def to_dict(self) -> dict:
        return {
            'sale_id':                    self.sale_id,
            'bill_number':                self.bill_number,
            'sold_at':                    self.sold_at.isoformat() if self.sold_at else None,
            'sold_by':                    self.sold_by,
            'customer_id':                self.customer_id,
            'customer_name':              self.customer_name,
            'items':                      [i.to_dict() for i in self.items],
            'discount':                   self.discount.to_dict(),
            'display_subtotal':           str(self.display_subtotal),
            'sub_total_for_db':           str(self.sub_total_for_db),
            'gst_for_db':                 str(self.gst_for_db),
            'item_savings':               str(self.item_savings),
            'additional_discount_amount': str(self.additional_discount_amount),
            'loyalty_discount_amount':    str(self.loyalty_discount_amount),
            'round_off_amount':           str(self.round_off_amount),
            'total_amount':               str(self.total_amount),
            'payment_mode':               self.payment_mode.value,
            'amount_received':            str(self.amount_received),
            'change_given':               str(self.change_given),
            'loyalty_points_earned':      self.loyalty_points_earned,
            'loyalty_points_used':        self.loyalty_points_used,
        }


# ── Engine ────────────────────────────────────────────────────────

def _cart_discount(discount: DiscountSpec, subtotal: Decimal) -> Decimal:
    value = to_decimal(discount.value, non_negative=True)
    if discount.type == DiscountType.percentage:
        raw = subtotal * value / Decimal('100')
    else:
        raw = value
    return min(max(quantize_money(raw), ZERO), subtotal)


def _points_to_apply(requested, customer, amount_before_loyalty: Decimal,
                     policy: PricingPolicy) -> int:
    requested = int(to_decimal(requested, non_negative=True))
    if customer is None:
        return 0
    by_balance = int(to_decimal(getattr(customer, 'loyalty_points', 0), non_negative=True))
    point_value = to_decimal(policy.point_value, non_negative=True)
    if point_value == 0:
        return 0
    by_amount = int(max(amount_before_loyalty, ZERO) // point_value)
    return max(0, min(requested, by_balance, by_amount))


def compute_invoice(cart: Sequence[LineItem],
                    discount: DiscountSpec = NO_DISCOUNT,
                    points_requested=0,
                    customer=None,
                    policy: PricingPolicy = DEFAULT_POLICY) -> Invoice:
    """
    Compute the full invoice for `cart`. Pure — same inputs, equal output.

    Args:
        cart:             LineItems in insertion order (kept as-is)
        discount:         active cart-level DiscountSpec
        points_requested: loyalty points the cashier asked to redeem
        customer:         anything with .id/.name/.loyalty_points, or None
        policy:           loyalty point value / earn rate

    Out-of-range numbers are clamped, never raised.
    """
    items = tuple(cart)
    discount = discount or NO_DISCOUNT

    display_subtotal = ZERO
    sub_total_for_db = ZERO
    gst_for_db       = ZERO
    item_savings     = ZERO

    for item in items:
        line_total = item.line_total
        split = split_inclusive_tax(line_total, item.gst_rate)
        display_subtotal += line_total
        sub_total_for_db += split.base
        gst_for_db       += split.tax
        item_savings     += item.savings

    additional_discount = _cart_discount(discount, display_subtotal)
    amount_before_loyalty = display_subtotal - additional_discount

    points_applied   = _points_to_apply(points_requested, customer, amount_before_loyalty, policy)
    loyalty_discount = quantize_money(Decimal(points_applied) * to_decimal(policy.point_value))

    pre_round_total = amount_before_loyalty - loyalty_discount
    total_amount    = round_currency(pre_round_total)
    round_off       = total_amount - pre_round_total

    earned = 0
    earn_rate = to_decimal(policy.earn_rate, non_negative=True)
    if customer is not None and earn_rate > 0:
        earned = int(max(total_amount, ZERO) // earn_rate)

    return Invoice(
        items=items,
        discount=discount,
        display_subtotal=display_subtotal,
        sub_total_for_db=sub_total_for_db,
        gst_for_db=gst_for_db,
        item_savings=item_savings,
        additional_discount_amount=additional_discount,
        loyalty_discount_amount=loyalty_discount,
        round_off_amount=round_off,
        total_amount=total_amount,
        loyalty_points_earned=earned,
        loyalty_points_used=points_applied,
        points_requested=int(to_decimal(points_requested, non_negative=True)),
        customer_id=getattr(customer, 'id', None),
        customer_name=getattr(customer, 'name', None) or 'Walk-in',
    )


def apply_payment(invoice: Invoice, payment_mode, amount_received=None) -> Invoice:
    """
    Attach payment details to a computed invoice.

    Cash must cover the total; the difference is returned as change.
    Card and UPI are always recorded as paying the exact total.
    """
    try:
        mode = PaymentMode(payment_mode or PaymentMode.cash.value)
    except ValueError:
        raise ValidationError(f'Unknown payment mode "{payment_mode}".')

    if mode != PaymentMode.cash:
        return replace(invoice, payment_mode=mode,
                       amount_received=invoice.total_amount, change_given=ZERO)

    received = quantize_money(to_decimal(amount_received, non_negative=True))
    if received < invoice.total_amount:
        raise ValidationError(
            f'Insufficient cash. Total {invoice.total_amount}, received {received}.'
        )
    return replace(invoice, payment_mode=mode, amount_received=received,
                   change_given=received - invoice.total_amount)
