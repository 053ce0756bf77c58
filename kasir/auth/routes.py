from datetime import datetime
from flask import request, session, jsonify, current_app
from kasir import db
from kasir.auth import auth
from kasir.auth.models import User


@auth.route('/login', methods=['POST'])
def login():
    """Validate credentials and populate the session."""
    data = request.get_json(silent=True) or request.form
    username = (data.get('username') or '').strip()
    password = data.get('password') or ''

    if not username or not password:
        return jsonify({'error': 'Username and password are required.'}), 400

    user = User.query.filter_by(username=username).first()
    if user is None or not user.check_password(password):
        # same message for unknown user and wrong password
        current_app.logger.warning(f"Failed login attempt for username: {username}")
        return jsonify({'error': 'Invalid username or password.'}), 401

    user.last_login_at = datetime.utcnow()
    db.session.commit()

    session.clear()
    session['user_id'] = user.id
    session['role']    = user.role.value
    session.permanent  = True             # respect PERMANENT_SESSION_LIFETIME

    current_app.logger.info(f"User {user.username} logged in successfully.")
    return jsonify({'message': f'Welcome back, {user.name}!', 'user': user.to_dict()})


@auth.route('/logout', methods=['POST'])
def logout():
    session.clear()
    return jsonify({'message': 'You have been logged out.'})


@auth.route('/me')
def me():
    """Return the logged-in operator, or null for an anonymous session."""
    user_id = session.get('user_id')
    user = db.session.get(User, user_id) if user_id else None
    return jsonify({'user': user.to_dict() if user else None})
