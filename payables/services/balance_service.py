"""
Balance service - the single derivation of an invoice's financial numbers.

Detail view, list view, payment and credit note validation and status
derivation all read their numbers from `summarize`.
"""
from decimal import Decimal
import logging

from payables.exceptions import NotFoundError
from payables.models import Invoice, InvoiceStatus, Payment, CreditNote
from payables.services.tds_service import invoice_withholding

logger = logging.getLogger(__name__)

ZERO = Decimal('0')


def summarize(invoice, payments=None, credit_notes=None, rounded=None) -> dict:
    """
    Derive totals for one invoice.

    Args:
        invoice: Invoice instance
        payments: Payments to count (defaults to invoice.payments)
        credit_notes: Credit notes to count (defaults to invoice.credit_notes)
        rounded: Rounding mode override (defaults to the invoice preference)

    Returns:
        Dict with keys:
        - gross, tds_amount, net_payable
        - total_paid, total_credited, total_tds_reversed
        - remaining_balance (never negative)
        - payment_count, credit_note_count
        - is_credit_balance: credits and payments exceed net payable
    """
    if payments is None:
        payments = invoice.payments
    if credit_notes is None:
        credit_notes = invoice.credit_notes

    tds_amount, net_payable = invoice_withholding(invoice, rounded=rounded)

    total_paid = sum((Decimal(p.amount_paid) for p in payments), ZERO)
    total_credited = sum((Decimal(cn.amount) for cn in credit_notes), ZERO)
    total_tds_reversed = sum((Decimal(cn.tds_amount or 0) for cn in credit_notes), ZERO)

    outstanding = net_payable - total_paid - total_credited

    return {
        'gross': Decimal(invoice.invoice_amount),
        'tds_amount': tds_amount,
        'net_payable': net_payable,
        'total_paid': total_paid,
        'total_credited': total_credited,
        'total_tds_reversed': total_tds_reversed,
        'remaining_balance': max(ZERO, outstanding),
        'payment_count': len(payments),
        'credit_note_count': len(credit_notes),
        'is_credit_balance': outstanding < 0,
    }


def remaining_balance(invoice, payments=None, credit_notes=None, rounded=None) -> Decimal:
    """Amount still owed, net of tax, payments and credit notes. Never negative."""
    return summarize(invoice, payments, credit_notes, rounded)['remaining_balance']


def status_from_balance(summary: dict, current_status: InvoiceStatus) -> InvoiceStatus:
    """
    Status implied by a balance summary.

    0 remaining -> paid; something paid but not all -> partially_paid;
    otherwise the current status is kept.
    """
    remaining = summary['remaining_balance']
    if remaining == ZERO:
        return InvoiceStatus.PAID
    if remaining < summary['net_payable']:
        return InvoiceStatus.PARTIALLY_PAID
    return current_status


def serialize_summary(summary: dict) -> dict:
    """JSON-friendly copy (Decimal -> str)."""
    return {
        key: (str(value) if isinstance(value, Decimal) else value)
        for key, value in summary.items()
    }


def get_invoice_or_404(session, invoice_id, lock=False):
    """
    Load an invoice by id.

    With lock=True the row is selected FOR UPDATE (on SQLite the transaction
    already holds the write lock) and refreshed from the database.

    Raises:
        NotFoundError: no such invoice
    """
    query = session.query(Invoice).filter(Invoice.id == invoice_id)
    if lock:
        query = query.with_for_update().populate_existing()
    invoice = query.first()
    if invoice is None:
        raise NotFoundError(f'Invoice #{invoice_id} not found')
    return invoice


def load_ledger(session, invoice_id):
    """Fresh (payments, credit_notes) lists for one invoice, oldest first."""
    payments = (
        session.query(Payment)
        .filter(Payment.invoice_id == invoice_id)
        .order_by(Payment.id)
        .all()
    )
    credit_notes = (
        session.query(CreditNote)
        .filter(CreditNote.invoice_id == invoice_id)
        .order_by(CreditNote.id)
        .all()
    )
    return payments, credit_notes
