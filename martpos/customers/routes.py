from flask import request, jsonify, abort
from sqlalchemy import desc
from martpos import db
from martpos.customers import customers
from martpos.customers.models import Customer
from martpos.auth.decorators import login_required


@customers.route('/search')
@login_required
def search():
    q = request.args.get('q', '').strip()
    if not q:
        return jsonify([])

    # Search by phone or name
    results = Customer.query.filter(
        (Customer.phone.ilike(f'%{q}%')) |
        (Customer.name.ilike(f'%{q}%'))
    ).order_by(Customer.name).limit(10).all()

    return jsonify([c.to_dict() for c in results])


@customers.route('/create', methods=['POST'])
@login_required
def create():
    """Register a customer on first visit. Points always start at zero."""
    data = request.get_json(silent=True) or request.form.to_dict()
    name  = str(data.get('name', '')).strip()
    phone = str(data.get('phone', '')).strip()

    if not name or not phone:
        return jsonify({'error': 'Name and Phone are required'}), 400

    if Customer.query.filter_by(phone=phone).first():
        return jsonify({'error': 'Customer with this phone already exists'}), 400

    c = Customer(name=name, phone=phone,
                 email=data.get('email') or None,
                 address=data.get('address') or None,
                 loyalty_points=0)
    db.session.add(c)
    db.session.commit()

    result = c.to_dict()
    result['message'] = 'Customer created successfully'
    return jsonify(result), 201


@customers.route('/<int:customer_id>')
@login_required
def detail(customer_id):
    """Customer card plus their ten most recent bills."""
    from martpos.billing.models import Sale

    c = db.session.get(Customer, customer_id)
    if c is None:
        abort(404)

    result = c.to_dict()
    result['recent_sales'] = [{
        'id':           s.id,
        'bill_number':  s.bill_number,
        'sold_at':      s.sold_at.isoformat(),
        'total_amount': str(s.total_amount),
    } for s in c.sales.order_by(desc(Sale.sold_at)).limit(10)]
    return jsonify(result)
