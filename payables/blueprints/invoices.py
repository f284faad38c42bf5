"""Invoices blueprint - JSON API for the invoice lifecycle."""
from flask import Blueprint, request, jsonify, current_app, g
from payables.database import get_session
from payables.exceptions import ForbiddenError, ValidationError
from payables.middleware import require_login, require_admin
from payables.models import is_admin_role
from payables.services import invoice_service, payment_service, credit_note_service, audit_service
from payables.services.balance_service import serialize_summary, summarize, get_invoice_or_404, load_ledger
from payables.services.validation import to_bool

invoices_bp = Blueprint('invoices', __name__, url_prefix='/invoices')

MAX_PER_PAGE = 200


def _payload() -> dict:
    """JSON body, or form fields for multipart requests carrying a document."""
    if request.is_json:
        return request.get_json(silent=True) or {}
    return request.form.to_dict()


def _uploaded_file():
    file = request.files.get('file')
    if file is None or not file.filename:
        return None
    return file


def _invoice_response(invoice, status_code=200):
    payments, credit_notes = load_ledger(get_session(), invoice.id)
    data = invoice_service.serialize_invoice(invoice, summarize(invoice, payments, credit_notes))
    return jsonify({'status': 'ok', 'invoice': data}), status_code


@invoices_bp.route('/', methods=['GET'])
@require_login
def list_invoices():
    """List invoices with derived balances. Hidden invoices only on request (admins)."""
    include_hidden = to_bool(request.args.get('include_hidden'))
    if include_hidden and not is_admin_role(g.user_role):
        raise ForbiddenError('Only admins can list deleted invoices')

    page = max(request.args.get('page', 1, type=int), 1)
    per_page = min(max(request.args.get('per_page', 50, type=int), 1), MAX_PER_PAGE)

    result = invoice_service.list_invoices(
        get_session(),
        status=request.args.get('status') or None,
        vendor_id=request.args.get('vendor_id', type=int),
        include_hidden=include_hidden,
        limit=per_page,
        offset=(page - 1) * per_page,
    )
    return jsonify({'status': 'ok', 'page': page, 'per_page': per_page, **result})


@invoices_bp.route('/', methods=['POST'])
@require_login
def create_invoice():
    """Create an invoice (optionally paid, optionally with a document)."""
    invoice = invoice_service.create_invoice(get_session(), g.user, _payload(), file=_uploaded_file())
    current_app.logger.info(f"[INVOICE] User {g.user.id} created invoice {invoice.id}")
    return _invoice_response(invoice, 201)


@invoices_bp.route('/<int:invoice_id>', methods=['GET'])
@require_login
def view_invoice(invoice_id):
    """Invoice detail with balance, payments, credit notes and attachments."""
    return jsonify({'status': 'ok', 'invoice': invoice_service.get_invoice_detail(get_session(), invoice_id)})


@invoices_bp.route('/<int:invoice_id>', methods=['PUT', 'PATCH'])
@require_login
def update_invoice(invoice_id):
    payload = _payload()
    invoice = invoice_service.update_invoice(
        get_session(), g.user, invoice_id, payload,
        file=_uploaded_file(),
        expected_updated_at=payload.get('expected_updated_at')
    )
    return _invoice_response(invoice)


@invoices_bp.route('/<int:invoice_id>/approve', methods=['POST'])
@require_login
def approve_invoice(invoice_id):
    invoice = invoice_service.approve_invoice(get_session(), g.user, invoice_id)
    return _invoice_response(invoice)


@invoices_bp.route('/<int:invoice_id>/reject', methods=['POST'])
@require_login
def reject_invoice(invoice_id):
    invoice = invoice_service.reject_invoice(get_session(), g.user, invoice_id, _payload().get('reason'))
    return _invoice_response(invoice)


@invoices_bp.route('/<int:invoice_id>/hold', methods=['POST'])
@require_login
def hold_invoice(invoice_id):
    invoice = invoice_service.hold_invoice(get_session(), g.user, invoice_id, _payload().get('reason'))
    return _invoice_response(invoice)


@invoices_bp.route('/<int:invoice_id>/release-hold', methods=['POST'])
@require_login
def release_hold(invoice_id):
    invoice = invoice_service.release_hold(get_session(), g.user, invoice_id)
    return _invoice_response(invoice)


@invoices_bp.route('/<int:invoice_id>', methods=['DELETE'])
@require_login
def delete_invoice(invoice_id):
    """Soft delete: the invoice stays restorable until its recovery deadline."""
    invoice = invoice_service.soft_delete_invoice(get_session(), g.user, invoice_id, _payload().get('reason'))
    return _invoice_response(invoice)


@invoices_bp.route('/<int:invoice_id>/restore', methods=['POST'])
@require_login
def restore_invoice(invoice_id):
    invoice = invoice_service.restore_invoice(get_session(), g.user, invoice_id)
    return _invoice_response(invoice)


@invoices_bp.route('/bulk/approve', methods=['POST'])
@require_login
@require_admin
def bulk_approve():
    """Approve all given invoices or none of them."""
    invoices = invoice_service.bulk_approve_invoices(get_session(), g.user, _payload().get('invoice_ids'))
    return jsonify({'status': 'ok', 'count': len(invoices), 'invoice_ids': [i.id for i in invoices]})


@invoices_bp.route('/bulk/reject', methods=['POST'])
@require_login
@require_admin
def bulk_reject():
    payload = _payload()
    invoices = invoice_service.bulk_reject_invoices(
        get_session(), g.user, payload.get('invoice_ids'), payload.get('reason')
    )
    return jsonify({'status': 'ok', 'count': len(invoices), 'invoice_ids': [i.id for i in invoices]})


@invoices_bp.route('/<int:invoice_id>/payments/preview', methods=['GET'])
@require_login
def payment_preview(invoice_id):
    """Remaining balance (net of credit notes) for the payment form."""
    rounded = request.args.get('tds_rounded')
    preview = payment_service.payment_preview(
        get_session(), invoice_id, rounded=None if rounded is None else to_bool(rounded)
    )
    return jsonify({'status': 'ok', 'preview': serialize_summary(preview)})


@invoices_bp.route('/<int:invoice_id>/payments', methods=['POST'])
@require_login
def record_payment(invoice_id):
    payment = payment_service.record_payment(get_session(), g.user, invoice_id, _payload())
    preview = payment_service.payment_preview(get_session(), invoice_id)
    return jsonify({
        'status': 'ok',
        'payment': {
            'id': payment.id,
            'amount_paid': str(payment.amount_paid),
            'payment_date': payment.payment_date.isoformat(),
            'tds_amount_applied': str(payment.tds_amount_applied),
            'tds_rounded': payment.tds_rounded,
        },
        'invoice_status': payment.invoice.status.value,
        'balance': serialize_summary(preview),
    }), 201


@invoices_bp.route('/<int:invoice_id>/credit-notes', methods=['POST'])
@require_login
def record_credit_note(invoice_id):
    """Record a credit note. An amount above the balance succeeds with a warning."""
    credit_note, warning = credit_note_service.record_credit_note(get_session(), g.user, invoice_id, _payload())
    return jsonify({
        'status': 'ok',
        'credit_note': {
            'id': credit_note.id,
            'amount': str(credit_note.amount),
            'tds_amount': str(credit_note.tds_amount),
            'credit_note_date': credit_note.credit_note_date.isoformat(),
        },
        'warning': warning,
        'totals': serialize_summary(credit_note_service.credit_note_totals(get_session(), invoice_id)),
    }), 201


@invoices_bp.route('/<int:invoice_id>/activity', methods=['GET'])
@require_login
def invoice_activity(invoice_id):
    db_session = get_session()
    get_invoice_or_404(db_session, invoice_id)
    limit = request.args.get('limit', 100, type=int)
    if limit < 1:
        raise ValidationError({'limit': 'Limit must be positive'})
    entries = audit_service.get_activity(db_session, invoice_id, limit=min(limit, 500))
    return jsonify({
        'status': 'ok',
        'activity': [
            {
                'id': entry.id,
                'action': entry.action.value,
                'user_id': entry.user_id,
                'old_data': entry.old_data,
                'new_data': entry.new_data,
                'created_at': entry.created_at.isoformat() if entry.created_at else None,
            }
            for entry in entries
        ]
    })
