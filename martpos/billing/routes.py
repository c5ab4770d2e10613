from dataclasses import replace
from datetime import date, datetime, timedelta
from flask import request, session, abort, current_app, jsonify, Response
from sqlalchemy import desc

from martpos import db
from martpos.auth.decorators import login_required
from martpos.billing import billing
from martpos.billing.cart import (
    get_cart, get_bill, get_discount, update_bill, add_to_cart,
    set_quantity, remove_from_cart, load_sale, clear_cart,
)
from martpos.billing.models import Sale
from martpos.billing.store import SqlAlchemyStore
from martpos.customers.models import Customer
from martpos.engine.calculator import PricingPolicy, compute_invoice, apply_payment
from martpos.engine.checkout import CheckoutCoordinator
from martpos.engine.errors import CheckoutError, NotFoundError, ValidationError
from martpos.engine.money import to_decimal
from martpos.engine.receipt import StoreDetails, format_receipt
from martpos.inventory.models import Product


# ── Helpers ───────────────────────────────────────────────────────

def _payload() -> dict:
    """JSON body if there is one, otherwise form fields."""
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


def _int_arg(data, key):
    try:
        return int(data.get(key))
    except (TypeError, ValueError):
        raise ValidationError(f'"{key}" must be a whole number.')


def _store() -> SqlAlchemyStore:
    return SqlAlchemyStore(db.session, bill_prefix=current_app.config['BILL_NUMBER_PREFIX'])


def _policy() -> PricingPolicy:
    return PricingPolicy.from_config(current_app.config)


def _redeemable(customer, original):
    """
    While re-billing, the points the original sale used are still
    redeemable and the points it earned are not yet spendable.
    """
    if customer is None or original is None or original.customer_id != customer.id:
        return customer
    balance = customer.loyalty_points + original.loyalty_points_used - original.loyalty_points_earned
    return replace(customer, loyalty_points=max(0, balance))


def _current_invoice(store):
    """Recompute the invoice for the session cart from fresh reads."""
    bill     = get_bill()
    customer = store.read_customer(bill['customer_id'])
    original = None
    if bill['edit_sale_id'] is not None:
        original = store.read_sale(bill['edit_sale_id'])
        if original is None:
            clear_cart()
            raise NotFoundError('sale', bill['edit_sale_id'])
        # Check against the version the cashier opened, not the row as it is now
        if bill['edit_version'] is not None:
            original = replace(original, version=bill['edit_version'])
    if bill['customer_id'] is not None and customer is None:
        update_bill(customer_id=None, points_requested=0)
        raise NotFoundError('customer', bill['customer_id'])

    invoice = compute_invoice(
        get_cart(), get_discount(), bill['points_requested'],
        _redeemable(customer, original), _policy(),
    )
    return invoice, original


def _cart_response(store=None, status=200):
    store = store or _store()
    invoice, original = _current_invoice(store)
    return jsonify({
        'cart':    [item.to_dict() for item in invoice.items],
        'bill':    get_bill(),
        'editing': original.bill_number if original else None,
        'invoice': invoice.to_dict(),
    }), status


# ── Error handling ────────────────────────────────────────────────

@billing.errorhandler(CheckoutError)
def checkout_error(exc):
    db.session.rollback()
    current_app.logger.warning(f"Billing request failed ({type(exc).__name__}): {exc.message}")
    return jsonify(exc.to_dict()), exc.status_code


# ── CART ──────────────────────────────────────────────────────────

@billing.route('/cart')
@login_required
def cart():
    """Current cart with a live invoice calculation."""
    return _cart_response()


@billing.route('/add-item', methods=['POST'])
@login_required
def add_item():
    """Look up a product by barcode and add it (plus any free item) to the cart."""
    data    = _payload()
    barcode = str(data.get('barcode', '')).strip()
    if not barcode:
        raise ValidationError('Please enter a barcode.')

    product = Product.query.filter_by(barcode=barcode, is_active=True).first()
    if product is None:
        return jsonify({'error': f'No product found for barcode "{barcode}".',
                        'kind': 'NotFoundError'}), 404

    add_to_cart(product, data.get('weight'))
    return _cart_response()


@billing.route('/update-item', methods=['POST'])
@login_required
def update_item():
    data = _payload()
    set_quantity(_int_arg(data, 'index'), data.get('quantity'))
    return _cart_response()


@billing.route('/remove-item', methods=['POST'])
@login_required
def remove_item():
    remove_from_cart(_int_arg(_payload(), 'index'))
    return _cart_response()


@billing.route('/customer/attach', methods=['POST'])
@login_required
def attach_customer():
    customer_id = _int_arg(_payload(), 'customer_id')
    if db.session.get(Customer, customer_id) is None:
        raise NotFoundError('customer', customer_id)
    update_bill(customer_id=customer_id)
    return _cart_response()


@billing.route('/customer/detach', methods=['POST'])
@login_required
def detach_customer():
    update_bill(customer_id=None, points_requested=0)
    return _cart_response()


@billing.route('/adjust', methods=['POST'])
@login_required
def adjust():
    """Set the cart discount and/or the loyalty points to redeem."""
    data    = _payload()
    changes = {}
    if 'discount_type' in data:
        changes['discount_type'] = data['discount_type']
    if 'discount_value' in data:
        changes['discount_value'] = str(to_decimal(data['discount_value'], non_negative=True))
    if 'points_requested' in data:
        changes['points_requested'] = int(to_decimal(data['points_requested'], non_negative=True))
    update_bill(**changes)
    return _cart_response()


@billing.route('/cancel', methods=['POST'])
@login_required
def cancel():
    """Abandon the current bill. Nothing has been written yet, so nothing to undo."""
    clear_cart()
    return jsonify({'message': 'Bill cleared.'})


# ── COMPLETE SALE ─────────────────────────────────────────────────

@billing.route('/complete', methods=['POST'])
@login_required
def complete():
    """
    Finalise the sale:
      1. Recompute the invoice from fresh product/customer reads
      2. Attach payment (Cash must cover the total)
      3. Hand it to the checkout coordinator — stock, points and the
         Sale row commit together or not at all
      4. Clear the cart
    """
    data  = _payload()
    store = _store()

    invoice, original = _current_invoice(store)
    invoice = apply_payment(invoice, data.get('payment_mode', 'Cash'), data.get('amount_received'))

    coordinator = CheckoutCoordinator(
        store, allow_negative_stock=current_app.config.get('ALLOW_NEGATIVE_STOCK', False),
    )
    saved = coordinator.submit_checkout(invoice, session.get('username', 'System'), original)
    clear_cart()

    current_app.logger.info(
        f"{'Sale edited' if original else 'Sale completed'} by {session.get('username')}: "
        f"{saved.bill_number} | Total: {saved.total_amount}"
    )
    return jsonify({'message': f'Sale complete! Bill {saved.bill_number}',
                    'sale': saved.to_dict()}), 200 if original else 201


@billing.route('/sales/<int:sale_id>/edit', methods=['POST'])
@login_required
def edit_sale(sale_id):
    """Load a saved sale into the cart for re-billing."""
    invoice = _store().read_sale(sale_id)
    if invoice is None:
        raise NotFoundError('sale', sale_id)
    load_sale(invoice)
    return _cart_response()


# ── SALES HISTORY ─────────────────────────────────────────────────

@billing.route('/sales')
@login_required
def sales():
    """Sales for one day (?date=YYYY-MM-DD, default today), newest first."""
    day_str = request.args.get('date', '')
    try:
        day = datetime.strptime(day_str, '%Y-%m-%d').date() if day_str else date.today()
    except ValueError:
        raise ValidationError('date must be YYYY-MM-DD.')

    start = datetime.combine(day, datetime.min.time())
    rows = (
        Sale.query
        .filter(Sale.sold_at >= start, Sale.sold_at < start + timedelta(days=1))
        .order_by(desc(Sale.sold_at))
        .all()
    )
    return jsonify({
        'date':  day.isoformat(),
        'sales': [{
            'id':            s.id,
            'bill_number':   s.bill_number,
            'sold_at':       s.sold_at.isoformat(),
            'customer_name': s.customer_name,
            'total_amount':  str(s.total_amount),
            'payment_mode':  s.payment_mode,
        } for s in rows],
    })


@billing.route('/sales/<int:sale_id>')
@login_required
def sale_detail(sale_id):
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        abort(404)
    return jsonify(sale.to_invoice().to_dict())


@billing.route('/sales/<int:sale_id>/receipt')
@login_required
def receipt(sale_id):
    """Plain-text thermal receipt, ready to send to the printer."""
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        abort(404)

    cfg  = current_app.config
    text = format_receipt(
        sale.to_invoice(),
        StoreDetails.from_config(cfg),
        width=cfg.get('RECEIPT_WIDTH', 42),
        split_gst=cfg.get('RECEIPT_SPLIT_GST', True),
    )
    return Response(text, mimetype='text/plain')
