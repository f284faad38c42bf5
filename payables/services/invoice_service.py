"""Invoice service with transactional lifecycle logic."""
from datetime import timedelta
import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import selectinload

from payables.blueprints.metrics import invoice_transitions_total
from payables.exceptions import (
    PayablesError, ForbiddenError, ValidationError, InvalidStateError, DuplicateInvoiceNumberError,
    StaleInvoiceError, StorageFailureError
)
from payables.models import (
    Invoice, InvoiceStatus, InvoiceLifecycle, InvoiceAttachment, ActivityAction, is_admin_role
)
from payables.services import audit_service, settings_service
from payables.services.audit_service import snapshot_invoice
from payables.services.balance_service import (
    summarize, status_from_balance, serialize_summary, get_invoice_or_404, load_ledger
)
from payables.services.payment_service import build_payment
from payables.services.status_machine import (
    Action, transition, validate_rejection_reason
)
from payables.services.storage_service import validate_upload, get_storage_service
from payables.services.validation import run_invoice_pipeline, describe_scope
from payables.utils.dates import utcnow, as_utc, parse_iso_datetime

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    'invoice_number', 'invoice_name', 'description', 'invoice_profile_id',
    'period_start', 'period_end', 'vendor_id', 'entity_id', 'category_id', 'currency_id',
    'invoice_date', 'due_date', 'invoice_amount', 'tds_applicable', 'tds_percentage', 'tds_rounded',
)
HIDDEN_REASON_MAX = 500
PAST_TENSE = {Action.APPROVE: 'approved', Action.REJECT: 'rejected'}


def _is_scope_violation(error: IntegrityError) -> bool:
    message = str(error.orig)
    return 'uq_invoice_number_scope' in message or 'invoice.scope_key' in message


def _read_upload(file):
    """(bytes, file name, content type) of a werkzeug FileStorage, validated."""
    file.stream.seek(0)
    content = file.read()
    content_type = validate_upload(content, file.filename, file.content_type)
    return content, file.filename, content_type


def _store_attachment(session, storage, invoice, actor, upload):
    """
    Upload the document and add its attachment row to the open transaction.

    Any file store failure is raised as StorageFailureError so the caller
    rolls the whole transaction back.
    """
    content, file_name, content_type = upload
    try:
        key = storage.store(content, invoice.id, actor.id, file_name, content_type)
    except Exception as e:
        logger.exception(f"[STORAGE] Upload for invoice {invoice.id} failed: {e}")
        raise StorageFailureError('The invoice document could not be stored. Nothing was saved.')

    session.add(InvoiceAttachment(
        invoice_id=invoice.id,
        storage_key=key,
        file_name=file_name,
        file_size=len(content),
        mime_type=content_type,
        uploaded_by=actor.id,
    ))
    return key


def _discard_upload(storage, key):
    if storage is not None and key:
        storage.delete(key)


def _apply_fields(invoice, data):
    for field in EDITABLE_FIELDS:
        setattr(invoice, field, data[field])
    invoice.scope_key = data['scope_key']


def create_invoice(session, actor, payload: dict, file=None, storage=None) -> Invoice:
    """
    Create an invoice, its optional initial payment and optional document in one transaction.

    Steps:
    1. Run the validation pipeline
    2. Validate the upload (size, type)
    3. Derive the initial status from the actor role and is_paid
    4. Insert invoice (+ full payment when is_paid)
    5. Store the document and its attachment row
    6. Commit; any failure rolls everything back

    Args:
        session: SQLAlchemy session
        actor: AppUser creating the invoice
        payload: Invoice fields (see validation.validate_fields)
        file: Optional werkzeug FileStorage
        storage: Object with store()/delete(); defaults to the S3 StorageService

    Returns:
        Invoice object

    Raises:
        ValidationError, NotFoundError, DuplicateInvoiceNumberError, StorageFailureError
    """
    stored_key = None
    data = {}
    try:
        # Step 1-2: validation
        result = run_invoice_pipeline(session, payload)
        data = result['data']
        upload = _read_upload(file) if file is not None else None
        if upload is not None and storage is None:
            storage = get_storage_service()

        # Step 3: initial status
        status = transition(None, actor.role, Action.CREATE, is_paid=data['is_paid'])

        # Step 4: insert
        invoice = Invoice(
            is_recurring=data['is_recurring'],
            status=status,
            lifecycle=InvoiceLifecycle.ACTIVE,
            created_by=actor.id,
        )
        _apply_fields(invoice, data)
        session.add(invoice)
        session.flush()

        if result['initial_payment'] is not None:
            payment_date, payment_type, reference = result['initial_payment']
            summary = summarize(invoice, [], [])
            if summary['net_payable'] > 0:
                session.add(build_payment(
                    invoice, actor.id, summary['net_payable'], payment_date, payment_type, reference, summary
                ))

        # Step 5: document
        if upload is not None:
            stored_key = _store_attachment(session, storage, invoice, actor, upload)

        session.commit()

    except PayablesError:
        session.rollback()
        raise
    except IntegrityError as e:
        session.rollback()
        _discard_upload(storage, stored_key)
        if _is_scope_violation(e):
            raise DuplicateInvoiceNumberError(data['invoice_number'], describe_scope(data))
        logger.exception(f"[INVOICE] Integrity error creating invoice: {e}")
        raise StorageFailureError()
    except SQLAlchemyError as e:
        session.rollback()
        _discard_upload(storage, stored_key)
        logger.exception(f"[INVOICE] Failed to create invoice: {e}")
        raise StorageFailureError()

    invoice_transitions_total.labels(action=Action.CREATE.value).inc()
    logger.info(f"[INVOICE] Invoice {invoice.id} ({invoice.invoice_number}) created as {invoice.status.value}")
    audit_service.record(session, invoice.id, actor.id, ActivityAction.INVOICE_CREATED,
                         after=snapshot_invoice(invoice))
    if stored_key:
        audit_service.record(session, invoice.id, actor.id, ActivityAction.ATTACHMENT_UPLOADED,
                             after={'storage_key': stored_key})
    return invoice


def _current_payload(invoice) -> dict:
    payload = {field: getattr(invoice, field) for field in EDITABLE_FIELDS}
    payload['is_recurring'] = invoice.is_recurring
    return payload


def update_invoice(session, actor, invoice_id: int, payload: dict, file=None, storage=None,
                   expected_updated_at=None) -> Invoice:
    """
    Edit an invoice.

    Standard users may only edit their own invoices and send them back for
    approval; admin edits keep the status. `is_recurring` never changes.
    Missing payload keys keep their current values.

    Raises:
        ForbiddenError, InvalidStateError, StaleInvoiceError, ValidationError,
        NotFoundError, DuplicateInvoiceNumberError, StorageFailureError
    """
    stored_key = None
    data = {}
    try:
        invoice = get_invoice_or_404(session, invoice_id, lock=True)
        new_status = transition(
            invoice.status, actor.role, Action.EDIT,
            is_owner=invoice.created_by == actor.id, hidden=invoice.is_hidden
        )

        if expected_updated_at is not None:
            try:
                expected = parse_iso_datetime(expected_updated_at)
            except ValueError:
                raise ValidationError({'expected_updated_at': 'Invalid timestamp'})
            if as_utc(invoice.updated_at) != expected:
                raise StaleInvoiceError(invoice.id)

        before = snapshot_invoice(invoice)

        merged = _current_payload(invoice)
        merged.update({k: v for k, v in payload.items() if k in EDITABLE_FIELDS})
        merged['is_recurring'] = invoice.is_recurring
        result = run_invoice_pipeline(session, merged, exclude_id=invoice.id)
        data = result['data']
        upload = _read_upload(file) if file is not None else None
        if upload is not None and storage is None:
            storage = get_storage_service()

        _apply_fields(invoice, data)

        payments, credit_notes = load_ledger(session, invoice.id)
        summary = summarize(invoice, payments, credit_notes)
        if summary['net_payable'] < summary['total_paid']:
            raise ValidationError({
                'invoice_amount': (
                    f"Net payable ({summary['net_payable']}) cannot be lower than the amount "
                    f"already paid ({summary['total_paid']})"
                )
            })

        if new_status != invoice.status:
            invoice.hold_reason = None
            invoice.hold_by = None
            invoice.hold_at = None
        invoice.status = new_status

        if upload is not None:
            stored_key = _store_attachment(session, storage, invoice, actor, upload)

        session.commit()

    except PayablesError:
        session.rollback()
        raise
    except IntegrityError as e:
        session.rollback()
        _discard_upload(storage, stored_key)
        if _is_scope_violation(e):
            raise DuplicateInvoiceNumberError(data['invoice_number'], describe_scope(data))
        logger.exception(f"[INVOICE] Integrity error updating invoice {invoice_id}: {e}")
        raise StorageFailureError()
    except SQLAlchemyError as e:
        session.rollback()
        _discard_upload(storage, stored_key)
        logger.exception(f"[INVOICE] Failed to update invoice {invoice_id}: {e}")
        raise StorageFailureError()

    invoice_transitions_total.labels(action=Action.EDIT.value).inc()
    logger.info(f"[INVOICE] Invoice {invoice.id} updated by user {actor.id}, status {invoice.status.value}")
    audit_service.record(session, invoice.id, actor.id, ActivityAction.INVOICE_UPDATED,
                         before=before, after=snapshot_invoice(invoice))
    if stored_key:
        audit_service.record(session, invoice.id, actor.id, ActivityAction.ATTACHMENT_UPLOADED,
                             after={'storage_key': stored_key})
    return invoice


def _mutate(session, actor, invoice_id, action, audit_action, mutate) -> Invoice:
    """
    Lock an invoice, apply `mutate(invoice)` and commit, then audit.

    `mutate` runs the state machine and changes fields; any PayablesError it
    raises rolls the transaction back.
    """
    try:
        invoice = get_invoice_or_404(session, invoice_id, lock=True)
        before = snapshot_invoice(invoice)
        mutate(invoice)
        session.commit()
    except PayablesError:
        session.rollback()
        raise
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception(f"[INVOICE] {action.value} failed for invoice {invoice_id}: {e}")
        raise StorageFailureError()

    invoice_transitions_total.labels(action=action.value).inc()
    logger.info(f"[INVOICE] Invoice {invoice.id}: {action.value} by user {actor.id}, status {invoice.status.value}")
    audit_service.record(session, invoice.id, actor.id, audit_action,
                         before=before, after=snapshot_invoice(invoice))
    return invoice


def _balance_status(session, invoice):
    """unpaid, partially_paid or paid from the invoice's current ledger."""
    payments, credit_notes = load_ledger(session, invoice.id)
    return status_from_balance(summarize(invoice, payments, credit_notes), InvoiceStatus.UNPAID)


def approve_invoice(session, actor, invoice_id: int) -> Invoice:
    """
    Approve a pending invoice (admin only).

    The new status follows the balance: unpaid, or partially_paid/paid when
    payments or credit notes were recorded while it was pending.
    """
    def mutate(invoice):
        invoice.status = transition(
            invoice.status, actor.role, Action.APPROVE, hidden=invoice.is_hidden,
            derived_status=_balance_status(session, invoice)
        )

    return _mutate(session, actor, invoice_id, Action.APPROVE, ActivityAction.INVOICE_APPROVED, mutate)


def reject_invoice(session, actor, invoice_id: int, reason: str) -> Invoice:
    """Reject a pending invoice (admin only). The trimmed reason is stored."""
    def mutate(invoice):
        invoice.status = transition(
            invoice.status, actor.role, Action.REJECT, hidden=invoice.is_hidden, reason=reason
        )
        invoice.rejection_reason = reason.strip()
        invoice.rejected_by = actor.id
        invoice.rejected_at = utcnow()

    return _mutate(session, actor, invoice_id, Action.REJECT, ActivityAction.INVOICE_REJECTED, mutate)


def hold_invoice(session, actor, invoice_id: int, reason: str) -> Invoice:
    """Put an unpaid or partially paid invoice on hold (admin only)."""
    def mutate(invoice):
        invoice.status = transition(
            invoice.status, actor.role, Action.HOLD, hidden=invoice.is_hidden, reason=reason
        )
        invoice.hold_reason = reason.strip()
        invoice.hold_by = actor.id
        invoice.hold_at = utcnow()

    return _mutate(session, actor, invoice_id, Action.HOLD, ActivityAction.INVOICE_ON_HOLD, mutate)


def release_hold(session, actor, invoice_id: int) -> Invoice:
    """Take an invoice off hold; the status is derived from its balance."""
    def mutate(invoice):
        invoice.status = transition(
            invoice.status, actor.role, Action.RELEASE_HOLD, hidden=invoice.is_hidden,
            derived_status=_balance_status(session, invoice)
        )
        invoice.hold_reason = None
        invoice.hold_by = None
        invoice.hold_at = None

    return _mutate(session, actor, invoice_id, Action.RELEASE_HOLD, ActivityAction.INVOICE_HOLD_RELEASED, mutate)


def _bulk_transition(session, actor, invoice_ids, action, audit_action, apply, derive=None, **context):
    """
    Validate every invoice first; apply all or none.

    `derive(invoice)`, when given, supplies the derived_status for each invoice.

    Raises:
        ForbiddenError: actor is not an admin
        ValidationError: one or more invoices cannot make the transition,
            errors maps invoice id to the reason
    """
    if not is_admin_role(actor.role):
        raise ForbiddenError(f'Only admins can {action.value} invoices')

    ids = []
    for raw in invoice_ids or []:
        try:
            invoice_id = int(raw)
        except (TypeError, ValueError):
            raise ValidationError({'invoice_ids': f'Invalid invoice id: {raw!r}'})
        if invoice_id not in ids:
            ids.append(invoice_id)
    if not ids:
        raise ValidationError({'invoice_ids': 'No invoices selected'})

    try:
        invoices = (
            session.query(Invoice)
            .filter(Invoice.id.in_(ids))
            .order_by(Invoice.id)
            .with_for_update()
            .populate_existing()
            .all()
        )
        found = {invoice.id: invoice for invoice in invoices}

        errors = {}
        next_status = {}
        for invoice_id in ids:
            invoice = found.get(invoice_id)
            if invoice is None:
                errors[str(invoice_id)] = f'Invoice #{invoice_id} not found'
                continue
            try:
                if derive is not None and not invoice.is_hidden:
                    context['derived_status'] = derive(invoice)
                next_status[invoice_id] = transition(
                    invoice.status, actor.role, action, hidden=invoice.is_hidden, **context
                )
            except PayablesError as e:
                errors[str(invoice_id)] = f'Invoice #{invoice_id} ({invoice.invoice_number}): {e.message}'

        if errors:
            raise ValidationError(
                errors,
                message=f'{len(errors)} of {len(ids)} invoices cannot be {PAST_TENSE[action]}. No invoice was changed.'
            )

        befores = {}
        for invoice_id in ids:
            invoice = found[invoice_id]
            befores[invoice_id] = snapshot_invoice(invoice)
            invoice.status = next_status[invoice_id]
            apply(invoice)
        session.commit()

    except PayablesError:
        session.rollback()
        raise
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception(f"[INVOICE] Bulk {action.value} failed: {e}")
        raise StorageFailureError()

    invoice_transitions_total.labels(action=action.value).inc(len(ids))
    logger.info(f"[INVOICE] Bulk {action.value} of {len(ids)} invoices by user {actor.id}")
    for invoice_id in ids:
        audit_service.record(session, invoice_id, actor.id, audit_action,
                             before=befores[invoice_id], after=snapshot_invoice(found[invoice_id]))
    return [found[invoice_id] for invoice_id in ids]


def bulk_approve_invoices(session, actor, invoice_ids) -> list:
    """Approve several pending invoices at once. Fails fast: one bad id rejects the batch."""
    return _bulk_transition(
        session, actor, invoice_ids, Action.APPROVE, ActivityAction.INVOICE_APPROVED,
        apply=lambda invoice: None,
        derive=lambda invoice: _balance_status(session, invoice)
    )


def bulk_reject_invoices(session, actor, invoice_ids, reason: str) -> list:
    """Reject several pending invoices with one reason. Fails fast like bulk approve."""
    if not is_admin_role(actor.role):
        raise ForbiddenError('Only admins can reject invoices')
    cleaned = validate_rejection_reason(reason)
    rejected_at = utcnow()

    def apply(invoice):
        invoice.rejection_reason = cleaned
        invoice.rejected_by = actor.id
        invoice.rejected_at = rejected_at

    return _bulk_transition(
        session, actor, invoice_ids, Action.REJECT, ActivityAction.INVOICE_REJECTED,
        apply=apply, reason=cleaned
    )


def soft_delete_invoice(session, actor, invoice_id: int, reason: str = None) -> Invoice:
    """
    Hide an invoice (owner or admin). It can be restored until its recovery
    deadline, after which the purge sweep removes it.
    """
    hidden_reason = (reason or '').strip() or None
    if hidden_reason and len(hidden_reason) > HIDDEN_REASON_MAX:
        raise ValidationError({'reason': f'Reason cannot exceed {HIDDEN_REASON_MAX} characters'})

    def mutate(invoice):
        transition(
            invoice.status, actor.role, Action.SOFT_DELETE,
            is_owner=invoice.created_by == actor.id, hidden=invoice.is_hidden
        )
        retention_days = settings_service.get_soft_delete_retention_days(session)
        now = utcnow()
        invoice.lifecycle = InvoiceLifecycle.HIDDEN
        invoice.hidden_by = actor.id
        invoice.hidden_at = now
        invoice.hidden_reason = hidden_reason
        invoice.deleted_at = now
        invoice.recovery_deadline = now + timedelta(days=retention_days)

    return _mutate(session, actor, invoice_id, Action.SOFT_DELETE, ActivityAction.INVOICE_HIDDEN, mutate)


def restore_invoice(session, actor, invoice_id: int, now=None) -> Invoice:
    """Bring a hidden invoice back while its recovery window is open (owner or admin)."""
    now = as_utc(now) if now is not None else utcnow()

    def mutate(invoice):
        transition(
            invoice.status, actor.role, Action.RESTORE,
            is_owner=invoice.created_by == actor.id, hidden=invoice.is_hidden
        )
        deadline = as_utc(invoice.recovery_deadline)
        if deadline is not None and deadline <= now:
            raise InvalidStateError(
                f'The recovery window for invoice #{invoice.id} has expired',
                current_state='hidden'
            )
        invoice.lifecycle = InvoiceLifecycle.ACTIVE
        invoice.hidden_by = None
        invoice.hidden_at = None
        invoice.hidden_reason = None
        invoice.deleted_at = None
        invoice.recovery_deadline = None

    return _mutate(session, actor, invoice_id, Action.RESTORE, ActivityAction.INVOICE_RESTORED, mutate)


def serialize_invoice(invoice, summary: dict) -> dict:
    """JSON-ready invoice with its derived numbers."""
    return {
        'id': invoice.id,
        'invoice_number': invoice.invoice_number,
        'invoice_name': invoice.invoice_name,
        'description': invoice.description,
        'is_recurring': invoice.is_recurring,
        'invoice_profile_id': invoice.invoice_profile_id,
        'period_start': invoice.period_start.isoformat() if invoice.period_start else None,
        'period_end': invoice.period_end.isoformat() if invoice.period_end else None,
        'vendor_id': invoice.vendor_id,
        'entity_id': invoice.entity_id,
        'category_id': invoice.category_id,
        'currency_id': invoice.currency_id,
        'invoice_date': invoice.invoice_date.isoformat(),
        'due_date': invoice.due_date.isoformat() if invoice.due_date else None,
        'invoice_amount': str(invoice.invoice_amount),
        'tds_applicable': invoice.tds_applicable,
        'tds_percentage': str(invoice.tds_percentage) if invoice.tds_percentage is not None else None,
        'tds_rounded': invoice.tds_rounded,
        'status': invoice.status.value,
        'rejection_reason': invoice.rejection_reason,
        'hold_reason': invoice.hold_reason,
        'is_hidden': invoice.is_hidden,
        'recovery_deadline': as_utc(invoice.recovery_deadline).isoformat() if invoice.recovery_deadline else None,
        'created_by': invoice.created_by,
        'created_at': as_utc(invoice.created_at).isoformat(),
        'updated_at': as_utc(invoice.updated_at).isoformat(),
        'balance': serialize_summary(summary),
    }


def get_invoice_detail(session, invoice_id: int) -> dict:
    """Invoice with balance, payments, credit notes and attachments."""
    invoice = get_invoice_or_404(session, invoice_id)
    payments, credit_notes = load_ledger(session, invoice.id)
    summary = summarize(invoice, payments, credit_notes)

    detail = serialize_invoice(invoice, summary)
    detail['payments'] = [
        {
            'id': p.id,
            'amount_paid': str(p.amount_paid),
            'payment_date': p.payment_date.isoformat(),
            'payment_type_id': p.payment_type_id,
            'payment_reference': p.payment_reference,
            'tds_amount_applied': str(p.tds_amount_applied) if p.tds_amount_applied is not None else None,
            'tds_rounded': p.tds_rounded,
        }
        for p in payments
    ]
    detail['credit_notes'] = [
        {
            'id': cn.id,
            'credit_note_number': cn.credit_note_number,
            'credit_note_date': cn.credit_note_date.isoformat(),
            'amount': str(cn.amount),
            'reason': cn.reason,
            'tds_applicable': cn.tds_applicable,
            'tds_amount': str(cn.tds_amount),
        }
        for cn in credit_notes
    ]
    detail['attachments'] = [
        {'id': a.id, 'file_name': a.file_name, 'mime_type': a.mime_type, 'file_size': a.file_size}
        for a in invoice.attachments
    ]
    return detail


def list_invoices(session, status=None, vendor_id=None, include_hidden=False, limit=50, offset=0) -> dict:
    """
    Paginated invoice list with derived balances.

    Hidden invoices are excluded unless include_hidden is set.

    Returns:
        Dict with items (serialized invoices) and total
    """
    query = session.query(Invoice)
    if not include_hidden:
        query = query.filter(Invoice.lifecycle == InvoiceLifecycle.ACTIVE)
    if status:
        try:
            query = query.filter(Invoice.status == InvoiceStatus(status))
        except ValueError:
            raise ValidationError({'status': f'Unknown status: {status}'})
    if vendor_id:
        query = query.filter(Invoice.vendor_id == vendor_id)

    total = query.count()
    invoices = (
        query.options(selectinload(Invoice.payments), selectinload(Invoice.credit_notes))
        .order_by(Invoice.invoice_date.desc(), Invoice.id.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )
    return {
        'items': [serialize_invoice(invoice, summarize(invoice)) for invoice in invoices],
        'total': total,
    }
