"""
Purge service - permanent deletion of soft-deleted invoices.

Hidden invoices whose recovery deadline has passed are removed with all their
child rows. Each invoice is purged in its own transaction and leaves a
tombstone, so re-running the sweep (or purging the same id twice) is a no-op.
"""
import logging
import time

from sqlalchemy.exc import SQLAlchemyError

from payables.blueprints.metrics import invoices_purged_total
from payables.exceptions import PayablesError, InvalidStateError, StorageFailureError
from payables.models import (
    Invoice, InvoiceLifecycle, Payment, CreditNote, InvoiceAttachment, InvoiceComment,
    ActivityLog, InvoiceTombstone
)
from payables.utils.dates import utcnow, as_utc

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100


def _expired_filter(query, now):
    return query.filter(
        Invoice.lifecycle == InvoiceLifecycle.HIDDEN,
        Invoice.deleted_at.isnot(None),
        Invoice.recovery_deadline < now
    )


def purge_invoice(session, invoice_id: int) -> bool:
    """
    Permanently delete one soft-deleted invoice and its related records.

    Steps:
    1. Missing row (already purged or never existed) -> no-op
    2. Validate the invoice is soft-deleted
    3. Delete activity log, comments, attachments, credit notes, payments
    4. Delete the invoice and write its tombstone
    5. Commit

    Returns:
        True when the invoice was deleted, False when there was nothing to do

    Raises:
        InvalidStateError: the invoice is not soft-deleted
        StorageFailureError: delete failed (rolled back)
    """
    try:
        # Step 1
        invoice = (
            session.query(Invoice)
            .filter(Invoice.id == invoice_id)
            .with_for_update()
            .first()
        )
        if invoice is None:
            if session.get(InvoiceTombstone, invoice_id) is not None:
                logger.info(f"[PURGE] Invoice {invoice_id} already purged")
            session.rollback()
            return False

        # Step 2
        if not invoice.is_hidden or invoice.deleted_at is None:
            raise InvalidStateError(
                f'Invoice #{invoice_id} is not soft-deleted',
                current_state=invoice.status.value
            )

        invoice_number = invoice.invoice_number
        session.expunge(invoice)

        # Step 3
        for model in (ActivityLog, InvoiceComment, InvoiceAttachment, CreditNote, Payment):
            session.query(model).filter(model.invoice_id == invoice_id).delete(synchronize_session=False)

        # Step 4
        session.query(Invoice).filter(Invoice.id == invoice_id).delete(synchronize_session=False)
        # SQLite can hand a purged id to a later invoice, so the tombstone may already exist
        session.merge(InvoiceTombstone(invoice_id=invoice_id, invoice_number=invoice_number, purged_at=utcnow()))

        # Step 5
        session.commit()

    except PayablesError:
        session.rollback()
        raise
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception(f"[PURGE] Failed to purge invoice {invoice_id}: {e}")
        raise StorageFailureError(f'Failed to delete invoice #{invoice_id}')

    logger.info(f"[PURGE] Invoice {invoice_id} ({invoice_number}) permanently deleted")
    return True


def purge_expired_invoices(session, batch_size: int = None, now=None) -> dict:
    """
    Sweep hidden invoices whose recovery deadline has passed, oldest deadline first.

    Per-invoice failures are collected and the sweep continues. Failing to
    load the candidate set aborts the run.

    Args:
        session: SQLAlchemy session
        batch_size: Maximum invoices handled in this run
        now: Reference time (defaults to current UTC time)

    Returns:
        Dict with purged, failed, errors (invoice_number, error), remaining
        (expired invoices left for the next run) and duration_ms

    Raises:
        StorageFailureError: candidates could not be queried
    """
    started = time.monotonic()
    now = as_utc(now) if now is not None else utcnow()
    batch_size = batch_size or DEFAULT_BATCH_SIZE

    try:
        candidates = (
            _expired_filter(session.query(Invoice.id, Invoice.invoice_number), now)
            .order_by(Invoice.recovery_deadline.asc(), Invoice.id.asc())
            .limit(batch_size)
            .all()
        )
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception(f"[PURGE] Could not load expired invoices: {e}")
        raise StorageFailureError('Could not load invoices to purge')

    logger.info(f"[PURGE] {len(candidates)} expired invoice(s) selected (batch size {batch_size})")

    purged = 0
    errors = []
    for invoice_id, invoice_number in candidates:
        try:
            if purge_invoice(session, invoice_id):
                purged += 1
                invoices_purged_total.labels(result='purged').inc()
        except PayablesError as e:
            invoices_purged_total.labels(result='failed').inc()
            logger.error(f"[PURGE] Invoice {invoice_id} ({invoice_number}) failed: {e.message}")
            errors.append({'invoice_number': invoice_number, 'error': e.message})

    remaining = None
    try:
        remaining = _expired_filter(session.query(Invoice.id), now).count()
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"[PURGE] Could not count remaining expired invoices: {e}")

    result = {
        'purged': purged,
        'failed': len(errors),
        'errors': errors,
        'remaining': remaining,
        'duration_ms': int((time.monotonic() - started) * 1000),
    }
    logger.info(
        f"[PURGE] Done: {purged} purged, {len(errors)} failed, "
        f"{remaining} remaining in {result['duration_ms']}ms"
    )
    return result
