"""
kasir/auth/decorators.py
------------------------
Route-protection decorators for the JSON API.
Usage:
    from kasir.auth.decorators import login_required, admin_required

    @orders.route('/checkout', methods=['POST'])
    @login_required
    def checkout():
        ...
"""
from functools import wraps
from flask import session, jsonify, abort


def login_required(f):
    """Return 401 when no operator is logged in (no 'user_id' in session)."""
    @wraps(f)
    def decorated(*args, **kwargs):
        if 'user_id' not in session:
            return jsonify({'error': 'Please log in to access this resource.'}), 401
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
            return jsonify({'error': 'Please log in to access this resource.'}), 401
        if session.get('role') != 'admin':
            abort(403)
        return f(*args, **kwargs)
    return decorated
