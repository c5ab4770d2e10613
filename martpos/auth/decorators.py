"""
martpos/auth/decorators.py
--------------------------
Route-protection decorators for the JSON API.

    from martpos.auth.decorators import login_required, admin_required

    @billing.route('/complete', methods=['POST'])
    @login_required
    def complete():
        ...
"""
from functools import wraps
from flask import session, jsonify, abort


def login_required(f):
    """401 unless the Flask session carries a logged-in user."""
    @wraps(f)
    def decorated(*args, **kwargs):
        if 'user_id' not in session:
            return jsonify({'error': 'Please log in to continue.'}), 401
        return f(*args, **kwargs)
    return decorated


def admin_required(f):
    """
    Allow access only to users with role == 'admin'.
    Unauthenticated callers get 401, authenticated non-admins 403.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        if 'user_id' not in session:
            return jsonify({'error': 'Please log in to continue.'}), 401
        if session.get('role') != 'admin':
            abort(403)
        return f(*args, **kwargs)
    return decorated
