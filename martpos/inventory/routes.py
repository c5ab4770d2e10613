from flask import request, jsonify, abort, current_app, session
from sqlalchemy.exc import IntegrityError
from martpos.inventory import inventory
from martpos.inventory.models import Product, InventoryLog, LOW_STOCK_THRESHOLD
from martpos.inventory.validators import validate_product_form, parse_product_form, validate_stock_in
from martpos.auth.decorators import login_required, admin_required
from martpos.engine.money import to_decimal
from martpos import db


def _payload() -> dict:
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


def _get_product_or_404(product_id):
    product = db.session.get(Product, product_id)
    if product is None:
        abort(404)
    return product


def _check_free_product(data, product_id=None):
    """The linked free item must exist and can't be the product itself."""
    free_id = data.get('free_product_id')
    if free_id is None:
        return {}
    if free_id == product_id:
        return {'free_product_id': 'A product cannot be its own free item.'}
    if db.session.get(Product, free_id) is None:
        return {'free_product_id': f'Product {free_id} does not exist.'}
    return {}


# ── LIST ──────────────────────────────────────────────────────────────────────

@inventory.route('/')
@login_required
def index():
    """All products ordered by name. ?low=1 limits to low-stock items."""
    query = Product.query.order_by(Product.name.asc())
    if request.args.get('active') == '1':
        query = query.filter(Product.is_active.is_(True))
    if request.args.get('low') == '1':
        query = query.filter(Product.stock_quantity <= LOW_STOCK_THRESHOLD)
    return jsonify({
        'low_stock_threshold': LOW_STOCK_THRESHOLD,
        'products': [p.to_dict() for p in query.all()],
    })


@inventory.route('/lookup')
@login_required
def lookup():
    """Barcode lookup for the scanner."""
    barcode = request.args.get('barcode', '').strip()
    if not barcode:
        return jsonify({'error': 'barcode is required'}), 400

    product = Product.query.filter_by(barcode=barcode).first()
    if product is None:
        return jsonify({'error': f'No product found for barcode "{barcode}".'}), 404
    return jsonify(product.to_dict())


# ── CREATE ────────────────────────────────────────────────────────────────────

@inventory.route('/new', methods=['POST'])
@admin_required
def new():
    """Create a product. Opening stock is recorded in the inventory log."""
    form_data = _payload()
    errors = validate_product_form(form_data)

    if not errors and Product.query.filter_by(barcode=str(form_data['barcode']).strip()).first():
        errors['barcode'] = 'A product with this barcode already exists.'
    if errors:
        return jsonify({'errors': errors}), 422

    data = parse_product_form(form_data)
    errors = _check_free_product(data)
    if errors:
        return jsonify({'errors': errors}), 422

    product = Product(**data)
    try:
        db.session.add(product)
        db.session.flush()

        if product.stock_quantity > 0:
            db.session.add(InventoryLog(
                product_id=product.id,
                old_stock=0,
                new_stock=product.stock_quantity,
                changed_by=session.get('username'),
                reason='Initial Stock (Product Created)',
            ))
        db.session.commit()
    except IntegrityError:
        # Another request inserted the same barcode between the check and the commit
        db.session.rollback()
        return jsonify({'errors': {'barcode': 'A product with this barcode already exists.'}}), 422

    current_app.logger.info(f"Admin created product: {product.name} ({product.barcode})")
    return jsonify(product.to_dict()), 201


# ── EDIT ──────────────────────────────────────────────────────────────────────

@inventory.route('/<int:product_id>/edit', methods=['POST'])
@admin_required
def edit(product_id):
    """
    Update a product's details. A stock change made here is logged as a
    manual adjustment. Past sales keep their own price snapshot.
    """
    product = _get_product_or_404(product_id)
    form_data = _payload()
    errors = validate_product_form(form_data)

    if not errors:
        clash = Product.query.filter(
            Product.barcode == str(form_data['barcode']).strip(),
            Product.id != product_id,
        ).first()
        if clash:
            errors['barcode'] = 'Another product already uses this barcode.'
    if errors:
        return jsonify({'errors': errors}), 422

    data = parse_product_form(form_data)
    errors = _check_free_product(data, product_id)
    if errors:
        return jsonify({'errors': errors}), 422

    old_stock = to_decimal(product.stock_quantity)
    for field, value in data.items():
        setattr(product, field, value)
    if 'is_active' in form_data:
        product.is_active = form_data['is_active'] in (True, 'true', '1', 'on')

    if data['stock_quantity'] != old_stock:
        db.session.add(InventoryLog(
            product_id=product.id,
            old_stock=old_stock,
            new_stock=data['stock_quantity'],
            changed_by=session.get('username'),
            reason=str(form_data.get('reason') or 'Manual Adjustment'),
        ))

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({'errors': {'barcode': 'Another product already uses this barcode.'}}), 422

    current_app.logger.info(f"Admin updated product {product.id}: {product.name}")
    return jsonify(product.to_dict())


# ── STOCK IN ──────────────────────────────────────────────────────────────────

@inventory.route('/<int:product_id>/stock-in', methods=['POST'])
@login_required
def stock_in(product_id):
    """Receive goods: add to stock under a row lock and log the change."""
    form_data = _payload()
    product = (
        Product.query
        .filter(Product.id == product_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if product is None:
        abort(404)

    errors = validate_stock_in(form_data, product.unit_type)
    if errors:
        db.session.rollback()
        return jsonify({'errors': errors}), 422

    qty       = to_decimal(form_data['quantity'])
    old_stock = to_decimal(product.stock_quantity)
    product.stock_quantity = old_stock + qty
    db.session.add(InventoryLog(
        product_id=product.id,
        old_stock=old_stock,
        new_stock=old_stock + qty,
        changed_by=session.get('username'),
        reason=str(form_data.get('reason') or 'Stock In'),
    ))
    db.session.commit()

    current_app.logger.info(
        f"Stock in by {session.get('username')}: {product.name} {old_stock} -> {product.stock_quantity}"
    )
    return jsonify(product.to_dict())


# ── LOGS ──────────────────────────────────────────────────────────────────────

@inventory.route('/<int:product_id>/logs')
@login_required
def logs(product_id):
    """Stock audit trail for one product, newest first."""
    product = _get_product_or_404(product_id)
    rows = (
        InventoryLog.query
        .filter_by(product_id=product.id)
        .order_by(InventoryLog.timestamp.desc(), InventoryLog.id.desc())
        .limit(100)
        .all()
    )
    return jsonify({'product': product.to_dict(), 'logs': [log.to_dict() for log in rows]})
