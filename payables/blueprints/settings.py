"""Settings blueprint - runtime system settings."""
from flask import Blueprint, jsonify, request, g
from payables.database import get_session
from payables.middleware import require_login, require_admin, require_super_admin
from payables.services import settings_service

settings_bp = Blueprint('settings', __name__, url_prefix='/settings')


@settings_bp.route('/soft-delete-retention', methods=['GET'])
@require_login
@require_admin
def get_retention():
    days = settings_service.get_soft_delete_retention_days(get_session())
    return jsonify({'status': 'ok', 'days': days})


@settings_bp.route('/soft-delete-retention', methods=['PUT'])
@require_login
@require_super_admin
def update_retention():
    """Change how long deleted invoices stay restorable (1-365 days)."""
    data = request.get_json(silent=True) or request.form
    days = settings_service.update_soft_delete_retention_days(get_session(), g.user, data.get('days'))
    return jsonify({'status': 'ok', 'days': days})
