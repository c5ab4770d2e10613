"""
test_inventory.py — Product validation, admin CRUD, stock-in and audit logs.
Run: pytest test_inventory.py -v
"""
import pytest
from decimal import Decimal

from martpos import create_app, db
from martpos.auth.models import User, RoleEnum
from martpos.inventory.models import Product, InventoryLog
from martpos.inventory.validators import validate_product_form, parse_product_form, validate_stock_in


VALID = {
    'name': 'Sunflower Oil 1L',
    'barcode': 'OIL001',
    'mrp': '145',
    'cost_price': '110',
    'selling_price': '139.50',
    'stock_quantity': '12',
    'gst_rate': '5',
    'unit_type': 'piece',
}


@pytest.fixture(scope='function')
def client():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        for username, role in (('admin', RoleEnum.admin), ('cashier1', RoleEnum.cashier)):
            user = User(username=username, name=username.title(), role=role)
            user.set_password('secret')
            db.session.add(user)
        db.session.commit()
        yield app.test_client()
        db.session.remove()
        db.drop_all()


def login(client, username='admin'):
    client.post('/auth/login', json={'username': username, 'password': 'secret'})


# ── Validators (pure) ─────────────────────────────────────────────

def test_valid_form_has_no_errors():
    assert validate_product_form(VALID) == {}


@pytest.mark.parametrize('field, value', [
    ('name', ''),
    ('barcode', '   '),
    ('mrp', ''),
    ('mrp', '0'),
    ('mrp', 'abc'),
    ('cost_price', '-1'),
    ('selling_price', '150'),        # above MRP
    ('stock_quantity', '-2'),
    ('stock_quantity', '1.5'),       # piece items are whole
    ('gst_rate', '101'),
    ('unit_type', 'litre'),
    ('free_product_id', 'x'),
])
def test_invalid_fields_are_reported(field, value):
    errors = validate_product_form({**VALID, field: value})
    assert field in errors


def test_weighed_stock_may_be_fractional():
    assert validate_product_form({**VALID, 'unit_type': 'weight', 'stock_quantity': '12.750'}) == {}


def test_parse_converts_types():
    data = parse_product_form({**VALID, 'is_gst_inclusive': 'false', 'selling_price': ''})
    assert data['mrp'] == Decimal('145')
    assert data['selling_price'] is None
    assert data['stock_quantity'] == Decimal('12')
    assert data['is_gst_inclusive'] is False
    assert data['free_product_id'] is None


def test_stock_in_validation():
    assert validate_stock_in({'quantity': '5'}) == {}
    assert 'quantity' in validate_stock_in({'quantity': '0'})
    assert 'quantity' in validate_stock_in({'quantity': '2.5'}, 'piece')
    assert validate_stock_in({'quantity': '2.5'}, 'weight') == {}


# ── Routes ────────────────────────────────────────────────────────

def test_cashier_cannot_create_products(client):
    login(client, 'cashier1')
    assert client.post('/inventory/new', json=VALID).status_code == 403


def test_admin_creates_product_with_opening_stock_log(client):
    login(client)
    resp = client.post('/inventory/new', json=VALID)
    assert resp.status_code == 201
    data = resp.get_json()
    assert data['effective_price'] == '139.50'

    log = InventoryLog.query.filter_by(product_id=data['id']).one()
    assert log.new_stock == 12
    assert log.changed_by == 'admin'
    assert log.reason == 'Initial Stock (Product Created)'


def test_duplicate_barcode_is_422(client):
    login(client)
    client.post('/inventory/new', json=VALID)
    resp = client.post('/inventory/new', json={**VALID, 'name': 'Other'})
    assert resp.status_code == 422
    assert 'barcode' in resp.get_json()['errors']


def test_free_product_must_exist(client):
    login(client)
    resp = client.post('/inventory/new', json={**VALID, 'free_product_id': '77'})
    assert resp.status_code == 422


def test_edit_logs_manual_adjustment(client):
    login(client)
    pid = client.post('/inventory/new', json=VALID).get_json()['id']
    resp = client.post(f'/inventory/{pid}/edit', json={**VALID, 'stock_quantity': '9', 'reason': 'Damaged'})
    assert resp.status_code == 200
    assert resp.get_json()['stock_quantity'] == '9.000'

    logs = InventoryLog.query.filter_by(product_id=pid).order_by(InventoryLog.id).all()
    assert [(l.old_stock, l.new_stock, l.reason) for l in logs][-1] == (Decimal('12'), Decimal('9'), 'Damaged')


def test_product_cannot_be_its_own_free_item(client):
    login(client)
    pid = client.post('/inventory/new', json=VALID).get_json()['id']
    resp = client.post(f'/inventory/{pid}/edit', json={**VALID, 'free_product_id': str(pid)})
    assert resp.status_code == 422


def test_stock_in_and_logs(client):
    login(client)
    pid = client.post('/inventory/new', json=VALID).get_json()['id']
    client.post('/auth/logout')
    login(client, 'cashier1')

    resp = client.post(f'/inventory/{pid}/stock-in', json={'quantity': '24', 'reason': 'Supplier delivery'})
    assert resp.status_code == 200
    assert Decimal(resp.get_json()['stock_quantity']) == 36

    logs = client.get(f'/inventory/{pid}/logs').get_json()['logs']
    assert logs[0]['reason'] == 'Supplier delivery'
    assert logs[0]['changed_by'] == 'cashier1'
    assert Decimal(logs[0]['change']) == 24
    assert len(logs) == 2


def test_stock_in_rejects_bad_quantity(client):
    login(client)
    pid = client.post('/inventory/new', json=VALID).get_json()['id']
    assert client.post(f'/inventory/{pid}/stock-in', json={'quantity': '-3'}).status_code == 422
    assert client.post('/inventory/999/stock-in', json={'quantity': '3'}).status_code == 404
    db.session.expire_all()
    assert db.session.get(Product, pid).stock_quantity == 12


def test_lookup_and_low_stock_listing(client):
    login(client)
    client.post('/inventory/new', json=VALID)
    client.post('/inventory/new', json={**VALID, 'name': 'Salt', 'barcode': 'SALT', 'stock_quantity': '3',
                                        'selling_price': ''})

    assert client.get('/inventory/lookup?barcode=SALT').get_json()['name'] == 'Salt'
    assert client.get('/inventory/lookup?barcode=NOPE').status_code == 404

    listing = client.get('/inventory/?low=1').get_json()
    assert [p['name'] for p in listing['products']] == ['Salt']
    assert listing['products'][0]['is_low_stock'] is True


def test_unknown_route_is_json_404(client):
    resp = client.get('/nowhere')
    assert resp.status_code == 404
    assert resp.get_json() == {'error': 'Not found.'}
