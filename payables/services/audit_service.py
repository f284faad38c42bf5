"""
Audit logging service for invoice lifecycle actions.

`record` is fire-and-forget: it is called after the primary transaction has
committed and never raises.
"""
from payables.models import ActivityLog, ActivityAction
import json
import logging

logger = logging.getLogger(__name__)


def snapshot_invoice(invoice) -> dict:
    """Plain-dict view of the audited invoice fields."""
    if invoice is None:
        return None
    return {
        'id': invoice.id,
        'invoice_number': invoice.invoice_number,
        'invoice_name': invoice.invoice_name,
        'vendor_id': invoice.vendor_id,
        'invoice_profile_id': invoice.invoice_profile_id,
        'invoice_date': invoice.invoice_date,
        'due_date': invoice.due_date,
        'invoice_amount': invoice.invoice_amount,
        'tds_applicable': invoice.tds_applicable,
        'tds_percentage': invoice.tds_percentage,
        'tds_rounded': invoice.tds_rounded,
        'status': invoice.status.value if invoice.status else None,
        'lifecycle': invoice.lifecycle.value if invoice.lifecycle else None,
        'hold_reason': invoice.hold_reason,
        'rejection_reason': invoice.rejection_reason,
    }


def _to_json(data):
    if data is None:
        return None
    try:
        return json.dumps(data, default=str)
    except Exception as e:
        logger.warning(f"Failed to serialize audit snapshot: {e}")
        return str(data)


def record(session, invoice_id: int, actor_id: int, action: ActivityAction,
           before: dict = None, after: dict = None) -> bool:
    """
    Write one activity log entry and commit it.

    Args:
        session: Database session
        invoice_id: Audited invoice
        actor_id: User performing the action
        action: ActivityAction enum value
        before: Snapshot before the change (JSON encoded)
        after: Snapshot after the change (JSON encoded)

    Returns:
        True when the entry was stored, False otherwise
    """
    try:
        entry = ActivityLog(
            invoice_id=invoice_id,
            user_id=actor_id,
            action=action,
            old_data=_to_json(before),
            new_data=_to_json(after),
        )
        session.add(entry)
        session.commit()
        logger.info(f"Activity log created: {action.value} by user {actor_id} on invoice {invoice_id}")
        return True
    except Exception as e:
        logger.error(f"Failed to create activity log for invoice {invoice_id}: {e}")
        try:
            session.rollback()
        except Exception:
            logger.exception("Rollback after audit failure also failed")
        # Don't raise exception - audit failures should not break business logic
        return False


def get_activity(session, invoice_id: int, limit: int = 100):
    """Activity entries of one invoice, newest first."""
    return (
        session.query(ActivityLog)
        .filter(ActivityLog.invoice_id == invoice_id)
        .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        .limit(limit)
        .all()
    )
