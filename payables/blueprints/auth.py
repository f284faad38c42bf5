"""Authentication blueprint - email + password session login."""
from flask import Blueprint, request, session, g, jsonify, current_app
from flask_wtf.csrf import generate_csrf
from payables.database import get_session
from payables.exceptions import UnauthorizedError, ValidationError
from payables.middleware import require_login
from payables.models import AppUser

auth_bp = Blueprint('auth', __name__, url_prefix='/auth')


def _user_dict(user):
    return {'id': user.id, 'email': user.email, 'full_name': user.full_name, 'role': user.role}


@auth_bp.route('/login', methods=['POST'])
def login():
    """Validate email + password and open a session."""
    data = request.get_json(silent=True) or request.form
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''

    if not email or not password:
        raise ValidationError({'email': 'Email and password are required'})

    user = get_session().query(AppUser).filter_by(email=email).first()
    if not user or not user.active or not user.check_password(password):
        current_app.logger.warning(f"[AUTH] Failed login for {email}")
        raise UnauthorizedError('Invalid email or password')

    session.clear()
    session['user_id'] = user.id
    session.permanent = True
    return jsonify({'status': 'ok', 'user': _user_dict(user)})


@auth_bp.route('/logout', methods=['POST'])
def logout():
    session.clear()
    return jsonify({'status': 'ok'})


@auth_bp.route('/me', methods=['GET'])
@require_login
def me():
    return jsonify({'status': 'ok', 'user': _user_dict(g.user)})


@auth_bp.route('/csrf-token', methods=['GET'])
def csrf_token():
    """Token for the X-CSRFToken header on state-changing requests."""
    return jsonify({'csrf_token': generate_csrf()})
