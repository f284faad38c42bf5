"""System settings service (runtime key/value configuration)."""
import logging

from flask import current_app, has_app_context

from payables.exceptions import ForbiddenError, ValidationError, StorageFailureError
from payables.models import SystemSetting, UserRole

logger = logging.getLogger(__name__)

SOFT_DELETE_RETENTION_DAYS = 'soft_delete_retention_days'
RETENTION_MIN_DAYS = 1
RETENTION_MAX_DAYS = 365
DEFAULT_RETENTION_DAYS = 30


def default_retention_days() -> int:
    if has_app_context():
        return int(current_app.config.get('SOFT_DELETE_RETENTION_DAYS', DEFAULT_RETENTION_DAYS))
    return DEFAULT_RETENTION_DAYS


def _parse_retention(value):
    """Integer within 1..365, or None."""
    try:
        days = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    if days < RETENTION_MIN_DAYS or days > RETENTION_MAX_DAYS:
        return None
    return days


def get_setting(session, key: str, default=None):
    setting = session.get(SystemSetting, key)
    return setting.value if setting is not None else default


def get_soft_delete_retention_days(session) -> int:
    """
    Retention window for soft-deleted invoices, in days.

    Missing or out-of-range stored values fall back to the configured default.
    """
    default = default_retention_days()
    raw = get_setting(session, SOFT_DELETE_RETENTION_DAYS)
    if raw is None:
        return default
    days = _parse_retention(raw)
    if days is None:
        logger.warning(f"[SETTINGS] Invalid {SOFT_DELETE_RETENTION_DAYS} value {raw!r}, using {default}")
        return default
    return days


def update_soft_delete_retention_days(session, actor, days) -> int:
    """
    Update the retention window. Super admin only.

    Raises:
        ForbiddenError: actor is not a super admin
        ValidationError: days outside 1..365
        StorageFailureError: write failed
    """
    if actor.role != UserRole.SUPER_ADMIN.value:
        raise ForbiddenError('Only super admins can change system settings')

    parsed = _parse_retention(days)
    if parsed is None:
        raise ValidationError({
            'days': f'Retention days must be between {RETENTION_MIN_DAYS} and {RETENTION_MAX_DAYS}'
        })

    try:
        setting = session.get(SystemSetting, SOFT_DELETE_RETENTION_DAYS)
        if setting is None:
            setting = SystemSetting(
                key=SOFT_DELETE_RETENTION_DAYS,
                description='Days a deleted invoice can be restored before it is purged'
            )
            session.add(setting)
        setting.value = str(parsed)
        setting.updated_by = actor.id
        session.commit()
    except Exception as e:
        session.rollback()
        logger.exception(f"[SETTINGS] Failed to update {SOFT_DELETE_RETENTION_DAYS}: {e}")
        raise StorageFailureError()

    logger.info(f"[SETTINGS] {SOFT_DELETE_RETENTION_DAYS} set to {parsed} by user {actor.id}")
    return parsed
