"""
test_checkout.py — Atomic checkout against a real (in-memory) database.
Run: pytest test_checkout.py -v
"""
import pytest
from datetime import datetime
from decimal import Decimal

from martpos import create_app, db
from martpos.billing.models import Sale, BillSequence
from martpos.billing.store import SqlAlchemyStore, SqlAlchemyBatch
from martpos.customers.models import Customer
from martpos.engine.calculator import (
    CustomerSnapshot, Invoice, LineItem, compute_invoice, apply_payment,
)
from martpos.engine.checkout import (
    CheckoutCoordinator, PointsDelta, plan_checkout, points_deltas, stock_deltas,
)
from martpos.engine.errors import (
    ConcurrencyConflictError, InsufficientStockError, NotFoundError, ValidationError,
)
from martpos.inventory.models import Product, InventoryLog

SALE_TIME = datetime(2026, 10, 19, 10, 30)


@pytest.fixture(scope='function')
def app():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def store(app):
    return SqlAlchemyStore(db.session, bill_prefix='POS', clock=lambda: SALE_TIME)


def make_product(name='Toor Dal', barcode='P1', price='100', stock='10', gst='5', **kw):
    p = Product(name=name, barcode=barcode, mrp=Decimal(price), cost_price=Decimal('70'),
                stock_quantity=Decimal(stock), gst_rate=Decimal(gst), **kw)
    db.session.add(p)
    db.session.commit()
    return p


def make_customer(points=20):
    c = Customer(name='Priya', phone='9876543210', loyalty_points=points)
    db.session.add(c)
    db.session.commit()
    return c


def checkout(store, lines, customer=None, points=0, original=None, sold_by='cashier1'):
    snapshot = store.read_customer(customer.id) if customer else None
    invoice = apply_payment(compute_invoice(lines, points_requested=points, customer=snapshot), 'UPI')
    return CheckoutCoordinator(store).submit_checkout(invoice, sold_by, original)


def stock_of(product_id):
    db.session.expire_all()
    return db.session.get(Product, product_id).stock_quantity


# ── Stock ─────────────────────────────────────────────────────────

def test_sale_decrements_stock_and_writes_ledger(store):
    p1 = make_product()
    saved = checkout(store, [p1.to_line_item(3)])

    assert stock_of(p1.id) == 7
    assert saved.bill_number == 'POS-20261019-001'
    assert saved.sold_by == 'cashier1'
    assert saved.sale_id is not None

    sale = db.session.get(Sale, saved.sale_id)
    assert sale.total_amount == Decimal('300')
    assert [i.quantity for i in sale.items] == [Decimal('3')]

    log = InventoryLog.query.filter_by(product_id=p1.id).one()
    assert (log.old_stock, log.new_stock) == (Decimal('10'), Decimal('7'))
    assert log.changed_by == 'cashier1'
    assert log.reason == 'Sale POS-20261019-001'


def test_failure_before_ledger_write_leaves_stock_untouched(store, monkeypatch):
    p1 = make_product()

    def explode(self, op):
        raise RuntimeError('disk full')
    monkeypatch.setattr(SqlAlchemyBatch, '_write_ledger', explode)

    with pytest.raises(RuntimeError):
        checkout(store, [p1.to_line_item(3)])

    assert stock_of(p1.id) == 10
    assert Sale.query.count() == 0
    assert InventoryLog.query.count() == 0


def test_insufficient_stock_rolls_back_every_line(store):
    p1 = make_product(barcode='P1', stock='10')
    p2 = make_product(name='Soap', barcode='P2', stock='2')

    with pytest.raises(InsufficientStockError) as exc:
        checkout(store, [p1.to_line_item(3), p2.to_line_item(3)])

    assert exc.value.product_id == p2.id
    assert exc.value.available == Decimal('2')
    assert exc.value.requested == Decimal('3')
    assert exc.value.status_code == 409
    assert stock_of(p1.id) == 10
    assert stock_of(p2.id) == 2
    assert Sale.query.count() == 0
    assert InventoryLog.query.count() == 0


def test_negative_stock_allowed_when_configured(store):
    p1 = make_product(stock='1')
    invoice = apply_payment(compute_invoice([p1.to_line_item(2)]), 'Card')
    CheckoutCoordinator(store, allow_negative_stock=True).submit_checkout(invoice, 'admin')
    assert stock_of(p1.id) == -1


def test_free_item_consumes_its_own_stock(store):
    brush = make_product(name='Toothbrush', barcode='TB', price='25', stock='5')
    paste = make_product(name='Toothpaste', barcode='TP', price='95', stock='5',
                         free_product_id=brush.id)
    checkout(store, [paste.to_line_item(2), brush.to_line_item(2, free=True)])
    assert stock_of(paste.id) == 3
    assert stock_of(brush.id) == 3


def test_missing_product_is_not_found(store):
    ghost = LineItem(product_id=999, product_name='Ghost', quantity=Decimal('1'),
                     mrp=Decimal('10'), price_at_sale=Decimal('10'))
    with pytest.raises(NotFoundError) as exc:
        checkout(store, [ghost])
    assert exc.value.kind == 'product'
    assert Sale.query.count() == 0


def test_empty_cart_cannot_be_checked_out(store):
    with pytest.raises(ValidationError):
        CheckoutCoordinator(store).submit_checkout(compute_invoice([]), 'cashier1')


# ── Edit mode ─────────────────────────────────────────────────────

def test_edit_applies_net_stock_delta_once(store):
    p1 = make_product()
    first = checkout(store, [p1.to_line_item(3)])
    assert stock_of(p1.id) == 7

    original = store.read_sale(first.sale_id)
    edited = checkout(store, [p1.to_line_item(5)], original=original, sold_by='admin')

    assert stock_of(p1.id) == 5
    assert edited.sale_id == first.sale_id
    assert edited.bill_number == first.bill_number
    assert edited.version == original.version + 1
    assert Sale.query.count() == 1

    logs = InventoryLog.query.filter_by(product_id=p1.id).order_by(InventoryLog.id).all()
    assert [(l.old_stock, l.new_stock) for l in logs] == [
        (Decimal('10'), Decimal('7')),
        (Decimal('7'), Decimal('5')),
    ]
    assert logs[-1].reason == f'Sale edit {first.bill_number}'


def test_edit_removing_a_product_restocks_it(store):
    p1 = make_product(barcode='P1')
    p2 = make_product(name='Soap', barcode='P2', stock='4')
    first = checkout(store, [p1.to_line_item(2), p2.to_line_item(1)])

    checkout(store, [p1.to_line_item(2)], original=store.read_sale(first.sale_id))

    assert stock_of(p1.id) == 8           # untouched by the edit
    assert stock_of(p2.id) == 4           # returned
    assert InventoryLog.query.filter_by(product_id=p1.id).count() == 1


def test_edit_with_stale_version_conflicts(store):
    p1 = make_product()
    first = checkout(store, [p1.to_line_item(1)])
    stale = store.read_sale(first.sale_id)

    checkout(store, [p1.to_line_item(2)], original=stale)
    assert stock_of(p1.id) == 8

    with pytest.raises(ConcurrencyConflictError):
        checkout(store, [p1.to_line_item(4)], original=stale)
    assert stock_of(p1.id) == 8


# ── Loyalty ───────────────────────────────────────────────────────

def test_points_are_one_net_adjustment(store):
    p1 = make_product(price='500', gst='0')
    c = make_customer(points=20)

    saved = checkout(store, [p1.to_line_item(1)], customer=c, points=10)
    assert saved.loyalty_points_used == 10
    assert saved.loyalty_points_earned == 4
    db.session.expire_all()
    assert db.session.get(Customer, c.id).loyalty_points == 14


def test_overdrawn_points_conflict_at_commit(store):
    p1 = make_product(price='500', gst='0')
    c = make_customer(points=20)
    invoice = apply_payment(
        compute_invoice([p1.to_line_item(1)], points_requested=20, customer=store.read_customer(c.id)),
        'Cash', '500',
    )
    # balance spent elsewhere after the bill was calculated
    c.loyalty_points = 5
    db.session.commit()

    with pytest.raises(ConcurrencyConflictError):
        CheckoutCoordinator(store).submit_checkout(invoice, 'cashier1')
    assert stock_of(p1.id) == 10
    assert db.session.get(Customer, c.id).loyalty_points == 5


def test_deleted_customer_is_not_found(store):
    p1 = make_product()
    invoice = apply_payment(
        compute_invoice([p1.to_line_item(1)], customer=CustomerSnapshot(id=404, name='Gone')), 'UPI',
    )
    with pytest.raises(NotFoundError):
        CheckoutCoordinator(store).submit_checkout(invoice, 'cashier1')
    assert stock_of(p1.id) == 10


# ── Bill numbers ──────────────────────────────────────────────────

def test_bill_numbers_are_sequential_per_day(app):
    p1 = make_product(stock='50')
    today = SqlAlchemyStore(db.session, clock=lambda: SALE_TIME)
    tomorrow = SqlAlchemyStore(db.session, clock=lambda: datetime(2026, 10, 20, 9, 0))

    assert checkout(today, [p1.to_line_item(1)]).bill_number == 'POS-20261019-001'
    assert checkout(today, [p1.to_line_item(1)]).bill_number == 'POS-20261019-002'
    assert checkout(tomorrow, [p1.to_line_item(1)]).bill_number == 'POS-20261020-001'
    assert db.session.get(BillSequence, SALE_TIME.date()).last_seq == 2


def test_rolled_back_sale_does_not_consume_a_bill_number(store, monkeypatch):
    p1 = make_product()

    def explode(self, invoice, sold_by):
        raise RuntimeError('boom')
    with monkeypatch.context() as m:
        m.setattr(Sale, 'apply_invoice', explode)
        with pytest.raises(RuntimeError):
            checkout(store, [p1.to_line_item(1)])

    assert checkout(store, [p1.to_line_item(1)]).bill_number == 'POS-20261019-001'


def test_saved_sale_round_trips_to_the_same_invoice(store):
    p1 = make_product(price='99.40', gst='12')
    saved = checkout(store, [p1.to_line_item(2)])
    again = store.read_sale(saved.sale_id)
    assert again == saved
    assert isinstance(again, Invoice)


# ── Planning (pure) ───────────────────────────────────────────────

def _item(pid, qty, free=False):
    return LineItem(product_id=pid, product_name=f'P{pid}', quantity=Decimal(qty),
                    mrp=Decimal('10'), price_at_sale=Decimal('0' if free else '10'),
                    is_free_item=free)


def test_stock_deltas_diff_old_and_new_carts():
    deltas = stock_deltas([_item(2, '5'), _item(1, '1'), _item(1, '1', free=True)],
                          [_item(2, '3'), _item(3, '4')])
    assert [(d.product_id, d.delta) for d in deltas] == [
        (1, Decimal('-2')),
        (2, Decimal('-2')),
        (3, Decimal('4')),
    ]
    assert deltas[0].product_name == 'P1'


def test_points_move_between_customers_on_edit():
    old = Invoice(items=(_item(1, '1'),), customer_id=1, sale_id=9,
                  loyalty_points_earned=3, loyalty_points_used=0)
    new = Invoice(items=(_item(1, '1'),), customer_id=2,
                  loyalty_points_earned=2, loyalty_points_used=0)
    assert points_deltas(new, old) == [PointsDelta(1, -3), PointsDelta(2, 2)]


def test_points_same_customer_edit_is_difference():
    old = Invoice(customer_id=1, sale_id=9, loyalty_points_earned=3, loyalty_points_used=10)
    new = Invoice(customer_id=1, loyalty_points_earned=5, loyalty_points_used=0)
    assert points_deltas(new, old) == [PointsDelta(1, 12)]


@pytest.mark.parametrize('bad', [
    _item(1, '0'),
    _item(1, '1.5'),
    LineItem(product_id=1, product_name='Free', quantity=Decimal('1'),
             mrp=Decimal('10'), price_at_sale=Decimal('10'), is_free_item=True),
])
def test_plan_rejects_bad_lines(bad):
    with pytest.raises(ValidationError):
        plan_checkout(Invoice(items=(bad,)), 'cashier1')


def test_plan_requires_saved_original():
    with pytest.raises(ValidationError):
        plan_checkout(Invoice(items=(_item(1, '1'),)), 'cashier1', original=Invoice())


def test_store_reads_and_sequence(store):
    p1 = make_product()
    c = make_customer(points=7)

    assert store.read_product(p1.id).barcode == 'P1'
    assert store.read_product(999) is None
    assert store.read_customer(c.id) == CustomerSnapshot(id=c.id, name='Priya', loyalty_points=7,
                                                         phone='9876543210')
    assert store.read_customer(None) is None
    assert store.read_sale(999) is None

    assert store.next_sequence_for_today() == 1
    assert store.next_sequence_for_today() == 2
    db.session.rollback()
    assert store.next_sequence_for_today() == 1
