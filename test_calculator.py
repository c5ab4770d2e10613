"""
test_calculator.py — Invoice calculation engine and payment.
Run: pytest test_calculator.py -v
"""
import random
import pytest
from decimal import Decimal

from martpos.engine.calculator import (
    LineItem, DiscountSpec, DiscountType, CustomerSnapshot, PricingPolicy,
    PaymentMode, UnitType, compute_invoice, apply_payment,
)
from martpos.engine.errors import ValidationError
from martpos.engine.money import split_inclusive_tax


def line(pid=1, price='100', qty='1', mrp=None, gst='18', free=False, unit=UnitType.piece):
    return LineItem(
        product_id=pid,
        product_name=f'Product {pid}',
        quantity=Decimal(qty),
        mrp=Decimal(mrp or price),
        price_at_sale=Decimal('0') if free else Decimal(price),
        gst_rate=Decimal(gst),
        unit_type=unit,
        is_free_item=free,
    )


CUSTOMER = CustomerSnapshot(id=7, name='Priya', loyalty_points=20)


# ── Reference examples ────────────────────────────────────────────

def test_single_line_with_gst():
    inv = compute_invoice([line(price='100', qty='2', gst='18')])
    assert inv.display_subtotal == Decimal('200.00')
    assert inv.sub_total_for_db == Decimal('169.49')
    assert inv.gst_for_db == Decimal('30.51')
    assert inv.total_amount == Decimal('200')
    assert inv.round_off_amount == 0
    assert inv.loyalty_points_earned == 0          # walk-in
    assert inv.customer_name == 'Walk-in'


def test_discount_and_loyalty():
    inv = compute_invoice(
        [line(price='250', qty='2', gst='0')],
        DiscountSpec(DiscountType.percentage, Decimal('10')),
        points_requested=10,
        customer=CUSTOMER,
    )
    assert inv.display_subtotal == Decimal('500.00')
    assert inv.additional_discount_amount == Decimal('50.00')
    assert inv.amount_before_loyalty == Decimal('450.00')
    assert inv.loyalty_points_used == 10
    assert inv.loyalty_discount_amount == Decimal('50.00')
    assert inv.total_amount == Decimal('400')
    assert inv.round_off_amount == 0
    assert inv.loyalty_points_earned == 4
    assert inv.points_net == -6


def test_empty_cart_is_all_zero():
    inv = compute_invoice([], DiscountSpec(DiscountType.fixed, Decimal('50')), 10, CUSTOMER)
    assert inv.display_subtotal == 0
    assert inv.sub_total_for_db == 0
    assert inv.gst_for_db == 0
    assert inv.additional_discount_amount == 0
    assert inv.loyalty_discount_amount == 0
    assert inv.total_amount == 0
    assert inv.loyalty_points_earned == 0


# ── Per-line tax and free items ───────────────────────────────────

def test_each_line_taxed_at_its_own_rate():
    cart = [line(1, price='118', gst='18'), line(2, price='105', gst='5'), line(3, price='50', gst='0')]
    inv = compute_invoice(cart)
    assert inv.gst_for_db == Decimal('18.00') + Decimal('5.00')
    assert inv.sub_total_for_db == Decimal('100.00') + Decimal('100.00') + Decimal('50')
    assert inv.sub_total_for_db + inv.gst_for_db == inv.display_subtotal


def test_free_item_contributes_nothing_but_counts_as_savings():
    cart = [line(1, price='95', mrp='95'), line(2, price='0', mrp='25', free=True)]
    inv = compute_invoice(cart)
    assert inv.display_subtotal == Decimal('95.00')
    assert inv.item_savings == Decimal('25.00')


def test_weighed_line_total_rounds_to_paise():
    inv = compute_invoice([line(price='98', qty='1.255', gst='0', unit=UnitType.weight)])
    assert inv.display_subtotal == Decimal('122.99')
    assert inv.total_amount == Decimal('123')
    assert inv.round_off_amount == Decimal('0.01')


def test_round_off_can_be_negative():
    inv = compute_invoice([line(price='99.40', gst='0')])
    assert inv.total_amount == Decimal('99')
    assert inv.round_off_amount == Decimal('-0.40')


# ── Discount ──────────────────────────────────────────────────────

def test_fixed_discount_is_clamped_to_subtotal():
    inv = compute_invoice([line(price='80', gst='0')], DiscountSpec(DiscountType.fixed, Decimal('500')))
    assert inv.additional_discount_amount == inv.display_subtotal
    assert inv.total_amount == 0


def test_percentage_over_hundred_is_clamped():
    inv = compute_invoice([line(price='80')], DiscountSpec(DiscountType.percentage, Decimal('250')))
    assert inv.additional_discount_amount == Decimal('80.00')
    assert inv.total_amount == 0


def test_switching_discount_type_keeps_the_value():
    spec = DiscountSpec.parse('fixed', '10')
    assert spec.type == DiscountType.fixed and spec.value == Decimal('10')
    inv = compute_invoice([line(price='200', gst='0')], DiscountSpec.parse('percentage', spec.value))
    assert inv.additional_discount_amount == Decimal('20.00')


def test_malformed_discount_input_is_treated_as_zero():
    spec = DiscountSpec.parse('bogus', '-15')
    assert spec.type == DiscountType.percentage
    assert spec.value == 0
    assert DiscountSpec.parse('fixed', 'abc').value == 0


# ── Loyalty ───────────────────────────────────────────────────────

def test_points_capped_by_balance():
    inv = compute_invoice([line(price='1000', gst='0')], points_requested=500, customer=CUSTOMER)
    assert inv.loyalty_points_used == CUSTOMER.loyalty_points
    assert inv.loyalty_discount_amount == Decimal('100.00')


def test_points_capped_by_amount_payable():
    rich = CustomerSnapshot(id=1, name='Rich', loyalty_points=1000)
    inv = compute_invoice([line(price='23', gst='0')], points_requested=1000, customer=rich)
    assert inv.loyalty_points_used == 4                # floor(23 / 5)
    assert inv.loyalty_discount_amount == Decimal('20.00')
    assert inv.loyalty_discount_amount <= inv.amount_before_loyalty
    assert inv.total_amount == Decimal('3')


def test_points_ignored_without_customer():
    inv = compute_invoice([line(price='100')], points_requested=10)
    assert inv.loyalty_points_used == 0
    assert inv.loyalty_discount_amount == 0


def test_policy_constants_are_configurable():
    policy = PricingPolicy.from_config({'LOYALTY_POINT_VALUE': 1, 'LOYALTY_EARN_RATE': 50})
    inv = compute_invoice([line(price='300', gst='0')], points_requested=20,
                          customer=CUSTOMER, policy=policy)
    assert inv.loyalty_discount_amount == Decimal('20.00')
    assert inv.total_amount == Decimal('280')
    assert inv.loyalty_points_earned == 5


# ── Properties over generated carts ───────────────────────────────

def _random_cart(rng):
    cart = []
    for pid in range(1, rng.randint(0, 6) + 1):
        weighed = rng.random() < 0.3
        qty = Decimal(rng.randint(1, 5000)) / 1000 if weighed else Decimal(rng.randint(1, 5))
        price = Decimal(rng.randint(0, 50000)) / 100
        cart.append(line(
            pid, price=str(price), qty=str(qty),
            mrp=str(price + Decimal(rng.randint(0, 2000)) / 100),
            gst=rng.choice(['0', '5', '12', '18', '28']),
            free=rng.random() < 0.1,
            unit=UnitType.weight if weighed else UnitType.piece,
        ))
    return cart


@pytest.mark.parametrize('seed', range(40))
def test_invoice_properties_hold_for_generated_carts(seed):
    rng = random.Random(seed)
    cart = _random_cart(rng)
    discount = DiscountSpec(rng.choice(list(DiscountType)), Decimal(rng.randint(0, 150000)) / 100)
    customer = CustomerSnapshot(id=1, name='C', loyalty_points=rng.randint(0, 300)) if rng.random() < 0.7 else None
    requested = rng.randint(0, 400)

    inv = compute_invoice(cart, discount, requested, customer)

    # idempotent
    assert compute_invoice(cart, discount, requested, customer) == inv
    # never negative
    assert inv.total_amount >= 0
    # discount within [0, subtotal]
    assert 0 <= inv.additional_discount_amount <= inv.display_subtotal
    # loyalty ceiling
    balance = customer.loyalty_points if customer else 0
    assert inv.loyalty_points_used <= balance
    assert inv.loyalty_discount_amount <= inv.amount_before_loyalty
    if customer and requested > balance and inv.amount_before_loyalty >= balance * 5:
        assert inv.loyalty_points_used == balance
    # rounding consistency
    assert inv.total_amount - inv.round_off_amount == (
        inv.display_subtotal - inv.additional_discount_amount - inv.loyalty_discount_amount
    )
    # tax split additivity per line, and in total
    for item in cart:
        split = split_inclusive_tax(item.line_total, item.gst_rate)
        assert split.base + split.tax == item.line_total
    assert inv.sub_total_for_db + inv.gst_for_db == inv.display_subtotal
    # cart order is preserved
    assert list(inv.items) == cart


# ── Payment ───────────────────────────────────────────────────────

def test_cash_payment_gives_change():
    inv = apply_payment(compute_invoice([line(price='185', gst='0')]), 'Cash', '200')
    assert inv.payment_mode == PaymentMode.cash
    assert inv.amount_received == Decimal('200.00')
    assert inv.change_given == Decimal('15.00')


def test_short_cash_is_rejected():
    inv = compute_invoice([line(price='185', gst='0')])
    with pytest.raises(ValidationError, match='Insufficient cash'):
        apply_payment(inv, 'Cash', '150')


@pytest.mark.parametrize('mode', ['Card', 'UPI'])
def test_card_and_upi_pay_exact_total(mode):
    inv = apply_payment(compute_invoice([line(price='99.60', gst='0')]), mode, '5000')
    assert inv.payment_mode.value == mode
    assert inv.amount_received == inv.total_amount == Decimal('100')
    assert inv.change_given == 0


def test_unknown_payment_mode():
    with pytest.raises(ValidationError):
        apply_payment(compute_invoice([line()]), 'Cheque', '100')


def test_line_item_dict_round_trip_keeps_decimals():
    item = line(3, price='12.34', qty='1.250', unit=UnitType.weight)
    again = LineItem.from_dict(item.to_dict())
    assert again == item
    assert isinstance(again.quantity, Decimal)
