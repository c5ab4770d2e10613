from flask import request, session, current_app, jsonify
from martpos.auth import auth
from martpos.auth.models import User


@auth.route('/login', methods=['POST'])
def login():
    """Validate credentials and populate the session."""
    data = request.get_json(silent=True) or request.form.to_dict()
    username = str(data.get('username', '')).strip()
    password = data.get('password', '')

    if not username or not password:
        return jsonify({'error': 'Username and password are required.'}), 400

    user = User.query.filter_by(username=username, is_active=True).first()
    if user is None or not user.check_password(password):
        # Same message for unknown user and bad password
        current_app.logger.warning(f"Failed login attempt for username: {username}")
        return jsonify({'error': 'Invalid username or password.'}), 401

    session.clear()
    session['user_id']  = user.id
    session['username'] = user.username
    session['role']     = user.role.value
    session.permanent   = True             # respect PERMANENT_SESSION_LIFETIME

    current_app.logger.info(f"User {user.username} logged in successfully.")
    return jsonify({'message': f'Welcome back, {user.name}!', 'user': user.to_dict()})


@auth.route('/logout', methods=['GET', 'POST'])
def logout():
    """Clear the session, including any open cart."""
    session.clear()
    return jsonify({'message': 'You have been logged out.'})
