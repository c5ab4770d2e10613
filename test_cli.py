"""
test_cli.py — Flask CLI commands.
Run: pytest test_cli.py -v
"""
import pytest
from datetime import date

from martpos import create_app, db
from martpos.auth.models import User, RoleEnum
from martpos.billing.models import BillSequence
from martpos.customers.models import Customer
from martpos.inventory.models import Product


@pytest.fixture(scope='function')
def app():
    app = create_app('testing')
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


def test_init_db_seeds_todays_sequence(app):
    runner = app.test_cli_runner()
    result = runner.invoke(args=['init-db'])
    assert result.exit_code == 0
    assert db.session.get(BillSequence, date.today()).last_seq == 0

    result = runner.invoke(args=['show-sequences'])
    assert f'POS-{date.today():%Y%m%d}-001' in result.output


def test_seed_users(app):
    runner = app.test_cli_runner()
    runner.invoke(args=['init-db'])
    result = runner.invoke(args=['seed-admin', '--name', 'Owner', '--username', 'owner', '--password', 'pw'])
    assert result.exit_code == 0
    runner.invoke(args=['seed-cashier', '--name', 'Till', '--username', 'till', '--password', 'pw'])

    assert User.query.filter_by(username='owner').one().role == RoleEnum.admin
    assert User.query.filter_by(username='till').one().check_password('pw')

    again = runner.invoke(args=['seed-admin', '--name', 'X', '--username', 'owner', '--password', 'pw'])
    assert 'already exists' in again.output


def test_seed_demo_is_idempotent(app):
    runner = app.test_cli_runner()
    assert runner.invoke(args=['seed-demo']).exit_code == 0
    assert runner.invoke(args=['seed-demo']).exit_code == 0

    assert Product.query.count() == 7
    assert Customer.query.count() == 1
    paste = Product.query.filter_by(barcode='DEMO004').one()
    assert paste.free_product.barcode == 'DEMO005'
