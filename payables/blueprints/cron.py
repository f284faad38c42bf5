"""
Cron blueprint - endpoints triggered by the scheduler.

Authenticated with a shared secret, sent either as
`Authorization: Bearer <CRON_SECRET>` or as `X-Cron-Secret`.
"""
import hmac
import logging
from flask import Blueprint, jsonify, current_app, request
from payables.database import get_session
from payables.exceptions import UnauthorizedError
from payables.services.purge_service import purge_expired_invoices

logger = logging.getLogger(__name__)

cron_bp = Blueprint('cron', __name__, url_prefix='/api/cron')


def _presented_secret():
    auth_header = request.headers.get('Authorization', '')
    if auth_header.startswith('Bearer '):
        return auth_header[len('Bearer '):].strip()
    return request.headers.get('X-Cron-Secret', '').strip()


def verify_cron_secret() -> bool:
    """Constant-time comparison of the presented secret with CRON_SECRET."""
    secret = current_app.config.get('CRON_SECRET')
    if not secret:
        logger.error("[CRON] CRON_SECRET is not configured; refusing cron request")
        return False

    presented = _presented_secret()
    if not presented:
        logger.warning("[CRON] Missing cron secret")
        return False

    return hmac.compare_digest(presented.encode('utf-8'), secret.encode('utf-8'))


@cron_bp.route('/purge-expired-invoices', methods=['GET', 'POST'])
def purge_expired():
    """Run one purge sweep and report purged/failed/remaining counts."""
    if not verify_cron_secret():
        raise UnauthorizedError('Invalid cron secret')

    batch_size = request.args.get('batch_size', type=int) or current_app.config.get('PURGE_BATCH_SIZE')
    result = purge_expired_invoices(get_session(), batch_size=batch_size)

    current_app.logger.info(
        f"[CRON] purge-expired-invoices: purged={result['purged']} failed={result['failed']} "
        f"remaining={result['remaining']}"
    )
    return jsonify({'status': 'ok', **result})
