"""Credit note service - post-hoc reductions of the amount owed on an invoice."""
from decimal import Decimal
import logging

from sqlalchemy.exc import SQLAlchemyError

from payables.blueprints.metrics import credit_notes_recorded_total
from payables.exceptions import PayablesError, ValidationError, StorageFailureError
from payables.models import CreditNote, InvoiceStatus, ActivityAction
from payables.services import audit_service
from payables.services.balance_service import summarize, get_invoice_or_404, load_ledger
from payables.services.status_machine import Action, transition, PAYABLE
from payables.services.validation import parse_amount, to_bool
from payables.utils.dates import parse_iso_date, today
from payables.utils.number_format import quantize_money, money

logger = logging.getLogger(__name__)

ZERO = Decimal('0')
ONE = Decimal('1')
CREDIT_NOTE_NUMBER_MAX = 100
REASON_MAX = 500


def reversed_tds(invoice_tds: Decimal, amount: Decimal, net_payable: Decimal) -> Decimal:
    """
    Withheld tax reversed by a credit note.

    Proportional to amount / net_payable and capped at 100% of the invoice's
    withheld tax, rounded to 2 decimals.
    """
    if invoice_tds == ZERO or net_payable <= ZERO:
        return ZERO
    ratio = min(amount / net_payable, ONE)
    return quantize_money(invoice_tds * ratio)


def _validate_candidate(candidate: dict) -> dict:
    errors = {}
    data = {}

    data['amount'] = parse_amount(candidate.get('amount'), 'amount', errors, 'Credit note amount')

    reason = (candidate.get('reason') or '').strip()
    if not reason:
        errors['reason'] = 'Reason is required'
    elif len(reason) > REASON_MAX:
        errors['reason'] = f'Reason cannot exceed {REASON_MAX} characters'
    data['reason'] = reason

    try:
        credit_note_date = parse_iso_date(candidate.get('credit_note_date'), 'credit note date')
    except ValueError as e:
        errors['credit_note_date'] = str(e)
        credit_note_date = None
    else:
        if credit_note_date is None:
            errors['credit_note_date'] = 'Credit note date is required'
        elif credit_note_date > today():
            errors['credit_note_date'] = 'Credit note date cannot be in the future'
    data['credit_note_date'] = credit_note_date

    number = (candidate.get('credit_note_number') or '').strip() or None
    if number and len(number) > CREDIT_NOTE_NUMBER_MAX:
        errors['credit_note_number'] = f'Credit note number cannot exceed {CREDIT_NOTE_NUMBER_MAX} characters'
    data['credit_note_number'] = number

    data['notes'] = (candidate.get('notes') or '').strip() or None
    data['attachment_ref'] = (candidate.get('attachment_ref') or '').strip() or None
    data['tds_applicable'] = to_bool(candidate.get('tds_applicable'))

    if errors:
        raise ValidationError(errors)
    return data


def record_credit_note(session, actor, invoice_id: int, candidate: dict):
    """
    Record a credit note against an invoice.

    An amount above the remaining balance is accepted; the caller gets a
    warning string back instead of an error.

    Args:
        session: SQLAlchemy session
        actor: AppUser recording the credit note
        invoice_id: Invoice ID
        candidate: Dictionary with amount, reason, credit_note_date and
            optional credit_note_number, notes, attachment_ref, tds_applicable
            (request a proportional TDS reversal)

    Returns:
        (CreditNote, warning or None)
    """
    warning = None
    try:
        invoice = get_invoice_or_404(session, invoice_id, lock=True)
        transition(invoice.status, actor.role, Action.RECORD_CREDIT_NOTE, hidden=invoice.is_hidden)
        before_status = invoice.status

        data = _validate_candidate(candidate)

        if data['tds_applicable'] and not invoice.tds_applicable:
            raise ValidationError({
                'tds_applicable': 'TDS reversal is not possible: the invoice has no TDS'
            })

        payments, credit_notes = load_ledger(session, invoice.id)
        summary = summarize(invoice, payments, credit_notes)

        if data['amount'] > summary['remaining_balance']:
            warning = (
                f"Credit note amount ({money(data['amount'])}) exceeds the remaining balance "
                f"({money(summary['remaining_balance'])}); the invoice will carry a credit balance"
            )

        tds_amount = ZERO
        if data['tds_applicable']:
            tds_amount = reversed_tds(summary['tds_amount'], data['amount'], summary['net_payable'])

        credit_note = CreditNote(
            invoice_id=invoice.id,
            credit_note_number=data['credit_note_number'],
            credit_note_date=data['credit_note_date'],
            amount=data['amount'],
            reason=data['reason'],
            notes=data['notes'],
            tds_applicable=data['tds_applicable'],
            tds_amount=tds_amount,
            attachment_ref=data['attachment_ref'],
            created_by=actor.id,
        )
        session.add(credit_note)

        # A credit that clears the balance settles a payable invoice
        after = summarize(invoice, payments, credit_notes + [credit_note])
        if after['remaining_balance'] == ZERO and invoice.status in PAYABLE:
            invoice.status = InvoiceStatus.PAID

        session.commit()

    except PayablesError:
        session.rollback()
        raise
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception(f"[CREDIT_NOTE] Failed to record credit note for invoice {invoice_id}: {e}")
        raise StorageFailureError()

    credit_notes_recorded_total.inc()
    if warning:
        logger.warning(f"[CREDIT_NOTE] Invoice {invoice.id}: {warning}")
    logger.info(f"[CREDIT_NOTE] Invoice {invoice.id}: credit note {credit_note.id} of {data['amount']} recorded")

    audit_service.record(
        session, invoice.id, actor.id, ActivityAction.CREDIT_NOTE_RECORDED,
        before={'status': before_status.value, 'remaining_balance': summary['remaining_balance']},
        after={
            'status': invoice.status.value,
            'credit_note_id': credit_note.id,
            'amount': data['amount'],
            'tds_reversed': tds_amount,
            'remaining_balance': after['remaining_balance'],
        }
    )
    return credit_note, warning


def credit_note_totals(session, invoice_id: int) -> dict:
    """Count, total amount and total reversed TDS of an invoice's credit notes."""
    _, credit_notes = load_ledger(session, invoice_id)
    return {
        'count': len(credit_notes),
        'total_amount': sum((Decimal(cn.amount) for cn in credit_notes), ZERO),
        'total_tds_reversed': sum((Decimal(cn.tds_amount or 0) for cn in credit_notes), ZERO),
    }
