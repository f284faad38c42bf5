"""Payment service - records payments against invoices."""
from decimal import Decimal
import logging

from sqlalchemy.exc import SQLAlchemyError

from payables.blueprints.metrics import payments_recorded_total, payment_rejections_total
from payables.exceptions import PayablesError, AmountExceedsBalanceError, StorageFailureError
from payables.models import Payment, ActivityAction
from payables.services import audit_service
from payables.services.balance_service import (
    summarize, status_from_balance, get_invoice_or_404, load_ledger
)
from payables.services.status_machine import Action, transition
from payables.services.validation import (
    check_payment_date, check_payment_amount, check_payment_type, check_payment_reference, to_bool
)
from payables.utils.number_format import quantize_money

logger = logging.getLogger(__name__)

ZERO = Decimal('0')


def proportional_tds(summary: dict, amount: Decimal) -> Decimal:
    """Share of the invoice's withheld tax covered by a payment of `amount`."""
    if summary['tds_amount'] == ZERO or summary['net_payable'] == ZERO:
        return ZERO
    return quantize_money(summary['tds_amount'] * amount / summary['net_payable'])


def build_payment(invoice, actor_id, amount, payment_date, payment_type, reference, summary) -> Payment:
    """Payment row with the invoice's current rounding mode snapshotted."""
    return Payment(
        invoice_id=invoice.id,
        amount_paid=amount,
        payment_date=payment_date,
        payment_type_id=payment_type.id,
        payment_reference=reference,
        tds_amount_applied=proportional_tds(summary, amount),
        tds_rounded=bool(invoice.tds_rounded),
        created_by=actor_id,
    )


def payment_preview(session, invoice_id, rounded=None) -> dict:
    """
    Numbers shown on the payment form.

    `remaining_balance` is the maximum a new payment may be. It is already net
    of credit notes.
    """
    invoice = get_invoice_or_404(session, invoice_id)
    payments, credit_notes = load_ledger(session, invoice.id)
    summary = summarize(invoice, payments, credit_notes, rounded=rounded)
    summary['invoice_id'] = invoice.id
    summary['tds_rounded'] = bool(invoice.tds_rounded if rounded is None else rounded)
    return summary


def record_payment(session, actor, invoice_id: int, candidate: dict) -> Payment:
    """
    Record a payment (partial or full) and re-derive the invoice status.

    Steps:
    1. Lock invoice row (NotFound / Hidden / status guard)
    2. Payment date not in the future
    3. Amount > 0 with at most two decimals
    4. Apply the optional rounding-mode override
    5. Amount <= remaining balance
    6. Payment type exists and is active, reference when required
    7. Insert payment, update status, commit

    Args:
        session: SQLAlchemy session
        actor: AppUser recording the payment
        invoice_id: Invoice ID
        candidate: Dictionary with:
            - amount_paid
            - payment_date: 'YYYY-MM-DD' or date
            - payment_type_id
            - payment_reference: optional
            - tds_rounded: optional, flips the invoice's rounding preference

    Returns:
        Payment object

    Raises:
        PayablesError subclasses for business errors
        StorageFailureError: write failed
    """
    try:
        # Step 1: Lock invoice row before reading its balance
        invoice = get_invoice_or_404(session, invoice_id, lock=True)
        transition(invoice.status, actor.role, Action.RECORD_PAYMENT, hidden=invoice.is_hidden)
        before_status = invoice.status

        # Step 2-3: validate candidate
        payment_date = check_payment_date(candidate.get('payment_date'))
        amount = check_payment_amount(candidate.get('amount_paid'))

        # Step 4: sticky rounding preference, overridable per payment
        if invoice.tds_applicable and candidate.get('tds_rounded') is not None:
            invoice.tds_rounded = to_bool(candidate.get('tds_rounded'))

        # Step 5: balance check against the locked row
        payments, credit_notes = load_ledger(session, invoice.id)
        summary = summarize(invoice, payments, credit_notes)
        if amount > summary['remaining_balance']:
            payment_rejections_total.inc()
            raise AmountExceedsBalanceError(amount, summary['remaining_balance'])

        # Step 6: payment type and reference
        payment_type = check_payment_type(session, candidate.get('payment_type_id'))
        reference = check_payment_reference(payment_type, candidate.get('payment_reference'))

        # Step 7: insert and derive status
        payment = build_payment(invoice, actor.id, amount, payment_date, payment_type, reference, summary)
        session.add(payment)

        after = summarize(invoice, payments + [payment], credit_notes)
        invoice.status = transition(
            invoice.status, actor.role, Action.RECORD_PAYMENT,
            derived_status=status_from_balance(after, invoice.status)
        )
        session.commit()

    except PayablesError:
        session.rollback()
        raise
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception(f"[PAYMENT] Failed to record payment for invoice {invoice_id}: {e}")
        raise StorageFailureError()

    payments_recorded_total.inc()
    logger.info(
        f"[PAYMENT] Invoice {invoice.id}: payment {payment.id} of {amount} recorded, "
        f"status {before_status.value} -> {invoice.status.value}"
    )
    audit_service.record(
        session, invoice.id, actor.id, ActivityAction.PAYMENT_RECORDED,
        before={'status': before_status.value, 'remaining_balance': summary['remaining_balance']},
        after={
            'status': invoice.status.value,
            'payment_id': payment.id,
            'amount_paid': amount,
            'remaining_balance': after['remaining_balance'],
        }
    )
    return payment
