import click
from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from config import config

db = SQLAlchemy()


def create_app(config_name='default'):
    """Application factory — creates and configures the Flask app."""
    app = Flask(__name__)
    app.config.from_object(config[config_name])

    # ── Logging ───────────────────────────────────────────────────
    from martpos.utils.logging import setup_logging
    setup_logging(app)

    # ── Extensions ────────────────────────────────────────────────
    db.init_app(app)

    # ── Blueprints ────────────────────────────────────────────────
    from martpos.auth import auth as auth_blueprint
    app.register_blueprint(auth_blueprint, url_prefix='/auth')

    from martpos.billing import billing as billing_blueprint
    app.register_blueprint(billing_blueprint, url_prefix='/billing')

    from martpos.customers import customers as customers_blueprint
    app.register_blueprint(customers_blueprint, url_prefix='/customers')

    from martpos.inventory import inventory as inventory_blueprint
    app.register_blueprint(inventory_blueprint, url_prefix='/inventory')

    from martpos.reports import reports as reports_blueprint
    app.register_blueprint(reports_blueprint, url_prefix='/reports')

    # ── Error Handlers ────────────────────────────────────────────
    @app.errorhandler(403)
    def forbidden(e):
        return jsonify({'error': 'You do not have permission to do that.'}), 403

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({'error': 'Not found.'}), 404

    @app.errorhandler(500)
    def internal_error(e):
        db.session.rollback()
        return jsonify({'error': 'Something went wrong on our side.'}), 500

    # ── CLI Commands ──────────────────────────────────────────────
    register_commands(app)

    return app


def _create_user(name, username, password, role):
    from martpos.auth.models import User

    if User.query.filter_by(username=username).first():
        click.echo(f'⚠️  User "{username}" already exists.')
        return None

    user = User(name=name, username=username, role=role)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    return user


def register_commands(app):
    """Register custom Flask CLI commands."""

    @app.cli.command('init-db')
    def init_db():
        """Create all database tables and seed today's bill sequence."""
        from datetime import date
        from martpos.billing.models import BillSequence

        db.create_all()
        click.echo('✅  Database tables created.')

        # A pre-seeded row keeps the first sale of the day from racing to INSERT it
        today = date.today()
        if not db.session.get(BillSequence, today):
            db.session.add(BillSequence(day=today, last_seq=0))
            db.session.commit()
            click.echo(f'✅  Bill sequence seeded for {today} (starts at 0).')
        else:
            click.echo(f'ℹ️   Bill sequence for {today} already exists.')

    @app.cli.command('show-sequences')
    @click.option('--days', default=7, show_default=True, help='How many recent days to show')
    def show_sequences(days):
        """Show recent bill sequence counters (diagnostic)."""
        from martpos.billing.invoice import format_bill_number
        from martpos.billing.models import BillSequence

        rows = BillSequence.query.order_by(BillSequence.day.desc()).limit(days).all()
        if not rows:
            click.echo('No sequence rows found. Run flask init-db first.')
            return
        prefix = app.config['BILL_NUMBER_PREFIX']
        click.echo(f'{"Day":<12} {"Last Seq":<10} {"Next Bill"}')
        click.echo('─' * 40)
        for row in rows:
            click.echo(f'{row.day.isoformat():<12} {row.last_seq:<10} '
                       f'{format_bill_number(prefix, row.day, row.last_seq + 1)}')

    @app.cli.command('seed-admin')
    @click.option('--name',     prompt='Full name',  help='Admin full name')
    @click.option('--username', prompt='Username',   help='Admin username')
    @click.option('--password', prompt=True, hide_input=True,
                  confirmation_prompt=True, help='Admin password')
    def seed_admin(name, username, password):
        """Create the initial admin user."""
        from martpos.auth.models import RoleEnum
        if _create_user(name, username, password, RoleEnum.admin):
            click.echo(f'✅  Admin user "{username}" created successfully.')

    @app.cli.command('seed-cashier')
    @click.option('--name',     prompt='Full name',  help='Cashier full name')
    @click.option('--username', prompt='Username',   help='Cashier username')
    @click.option('--password', prompt=True, hide_input=True,
                  confirmation_prompt=True, help='Cashier password')
    def seed_cashier(name, username, password):
        """Create a cashier user."""
        from martpos.auth.models import RoleEnum
        if _create_user(name, username, password, RoleEnum.cashier):
            click.echo(f'✅  Cashier user "{username}" created successfully.')

    @app.cli.command('seed-demo')
    def seed_demo():
        """Populate the database with demo users, products and a customer."""
        from decimal import Decimal
        from martpos.auth.models import RoleEnum
        from martpos.customers.models import Customer
        from martpos.inventory.models import Product, InventoryLog

        click.echo('🌱 Seeding demo data...')
        db.create_all()

        _create_user('Admin User', 'admin', 'demo123', RoleEnum.admin)
        _create_user('Sarah Cashier', 'cashier1', '123', RoleEnum.cashier)
        click.echo('✅ Users ready (admin/demo123, cashier1/123).')

        if Product.query.count() == 0:
            # (name, barcode, cost, mrp, selling price, stock, gst, unit type)
            catalogue = [
                ('Toor Dal 1kg',        'DEMO001', '120.00', '160.00', '149.00', '40',  '5',  'piece'),
                ('Sunflower Oil 1L',    'DEMO002', '110.00', '145.00', None,     '30',  '5',  'piece'),
                ('Bath Soap 100g',      'DEMO003', '25.00',  '40.00',  '36.00',  '80',  '18', 'piece'),
                ('Toothpaste 150g',     'DEMO004', '60.00',  '95.00',  None,     '50',  '18', 'piece'),
                ('Toothbrush',          'DEMO005', '12.00',  '25.00',  None,     '60',  '18', 'piece'),
                ('Basmati Rice (loose)', 'DEMO006', '70.00', '110.00', '98.00',  '25.5', '0', 'weight'),
                ('Onion (loose)',       'DEMO007', '22.00',  '40.00',  None,     '60',  '0',  'weight'),
            ]
            products = {}
            for name, barcode, cost, mrp, sp, stock, gst, unit in catalogue:
                p = Product(name=name, barcode=barcode, cost_price=Decimal(cost), mrp=Decimal(mrp),
                            selling_price=Decimal(sp) if sp else None, stock_quantity=Decimal(stock),
                            gst_rate=Decimal(gst), unit_type=unit)
                db.session.add(p)
                db.session.flush()
                db.session.add(InventoryLog(product_id=p.id, old_stock=0, new_stock=p.stock_quantity,
                                            changed_by='System', reason='Initial Demo Stock'))
                products[barcode] = p

            # Buy a toothpaste, get a toothbrush
            products['DEMO004'].free_product_id = products['DEMO005'].id
            db.session.commit()
            click.echo('✅ Products seeded.')

        if not Customer.query.filter_by(phone='9876543210').first():
            db.session.add(Customer(name='Priya', phone='9876543210', loyalty_points=40))
            db.session.commit()
            click.echo('✅ Demo customer seeded (9876543210, 40 pts).')

        click.echo('✅ Demo seed complete.')
