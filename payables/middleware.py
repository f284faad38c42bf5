"""Request context: the logged-in user and role guards for the blueprints."""
from functools import wraps
from flask import session, g
from payables.database import get_session
from payables.exceptions import UnauthorizedError, ForbiddenError
from payables.models import AppUser, UserRole, is_admin_role


def load_current_user():
    """
    Populate g.user / g.user_role from the cookie session.

    A user id that no longer maps to an active user is dropped from the
    session, so the next guarded request answers 401.
    """
    g.user = None
    g.user_role = None

    user_id = session.get('user_id')
    if not user_id:
        return

    user = get_session().get(AppUser, user_id)
    if user is None or not user.active:
        session.pop('user_id', None)
        return

    g.user = user
    g.user_role = user.role


def require_login(f):
    """401 unless a user is loaded."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if g.get('user') is None:
            raise UnauthorizedError()
        return f(*args, **kwargs)
    return decorated_function


def require_role(check, message):
    """Build a guard that raises ForbiddenError when check(role) is false. Stack it under require_login."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not check(g.get('user_role')):
                raise ForbiddenError(message)
            return f(*args, **kwargs)
        return decorated_function
    return decorator


require_admin = require_role(is_admin_role, 'This action requires an admin')
require_super_admin = require_role(
    lambda role: role == UserRole.SUPER_ADMIN.value, 'This action requires a super admin'
)
