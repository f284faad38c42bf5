"""
Integration tests for invoice creation, approval, editing and hold.
"""

import pytest
from datetime import date
from decimal import Decimal
from io import BytesIO

from werkzeug.datastructures import FileStorage

from payables.exceptions import (
    ForbiddenError, InvalidStateError, ValidationError, StaleInvoiceError, StorageFailureError,
    AlreadyOnHoldError, DuplicateInvoiceNumberError
)
from payables.models import (
    Invoice, InvoiceStatus, InvoiceAttachment, Payment, ActivityLog, ActivityAction, build_scope_key
)
from payables.services import invoice_service, validation
from payables.services.balance_service import summarize
from payables.services.credit_note_service import record_credit_note
from payables.utils.dates import as_utc


def _pdf(name='invoice.pdf'):
    return FileStorage(stream=BytesIO(b'%PDF-1.4 test document'), filename=name, content_type='application/pdf')


class TestCreateAndApprove:
    """Creation status and approval."""

    def test_standard_user_then_admin_approves(self, session, make_invoice, standard_user, admin_user):
        """Standard user's invoice waits for approval, then becomes unpaid."""
        invoice = make_invoice(actor=standard_user, invoice_amount='1000')
        assert invoice.status == InvoiceStatus.PENDING_APPROVAL

        approved = invoice_service.approve_invoice(session, admin_user, invoice.id)

        assert approved.status == InvoiceStatus.UNPAID
        assert summarize(approved)['remaining_balance'] == Decimal('1000')

    def test_fully_credited_invoice_is_approved_as_paid(self, session, make_invoice, standard_user, admin_user):
        invoice = make_invoice(actor=standard_user, invoice_amount='1000')
        record_credit_note(session, admin_user, invoice.id, {
            'amount': '1000', 'reason': 'Order cancelled', 'credit_note_date': date.today().isoformat()
        })

        approved = invoice_service.approve_invoice(session, admin_user, invoice.id)

        assert approved.status == InvoiceStatus.PAID
        assert summarize(approved)['remaining_balance'] == Decimal('0')

    def test_reapproval_keeps_partial_payment(self, session, make_invoice, standard_user, admin_user, pay):
        invoice = make_invoice(actor=standard_user, invoice_amount='1000')
        invoice_service.approve_invoice(session, admin_user, invoice.id)
        pay(invoice.id, '400')
        invoice_service.update_invoice(session, standard_user, invoice.id, {'description': 'Corrected'})

        approved = invoice_service.approve_invoice(session, admin_user, invoice.id)

        assert approved.status == InvoiceStatus.PARTIALLY_PAID

    def test_bulk_approve_follows_balance(self, session, make_invoice, standard_user, admin_user):
        credited = make_invoice(actor=standard_user, invoice_amount='500')
        plain = make_invoice(actor=standard_user, invoice_amount='500')
        record_credit_note(session, admin_user, credited.id, {
            'amount': '500', 'reason': 'Order cancelled', 'credit_note_date': date.today().isoformat()
        })

        approved = invoice_service.bulk_approve_invoices(session, admin_user, [credited.id, plain.id])

        assert [i.status for i in approved] == [InvoiceStatus.PAID, InvoiceStatus.UNPAID]

    def test_admin_invoice_starts_unpaid(self, make_invoice, admin_user):
        assert make_invoice(actor=admin_user).status == InvoiceStatus.UNPAID

    def test_standard_user_cannot_approve(self, session, make_invoice, standard_user):
        invoice = make_invoice(actor=standard_user)

        with pytest.raises(ForbiddenError):
            invoice_service.approve_invoice(session, standard_user, invoice.id)

        session.refresh(invoice)
        assert invoice.status == InvoiceStatus.PENDING_APPROVAL

    def test_create_writes_activity(self, session, make_invoice):
        invoice = make_invoice()

        actions = [e.action for e in session.query(ActivityLog).filter_by(invoice_id=invoice.id)]
        assert actions == [ActivityAction.INVOICE_CREATED]

    @pytest.mark.parametrize('role_fixture', ['standard_user', 'admin_user'])
    def test_paid_at_creation(self, request, session, make_invoice, master_data, role_fixture):
        """An invoice created as paid gets one payment for its net payable."""
        actor = request.getfixturevalue(role_fixture)
        invoice = make_invoice(
            actor=actor,
            invoice_amount='1000',
            tds_applicable=True,
            tds_percentage='10',
            is_paid=True,
            payment_date=date.today().isoformat(),
            payment_type_id=master_data['bank_transfer_id'],
        )

        assert invoice.status == InvoiceStatus.PAID
        payments = session.query(Payment).filter_by(invoice_id=invoice.id).all()
        assert len(payments) == 1
        assert payments[0].amount_paid == Decimal('900.00')
        assert payments[0].tds_amount_applied == Decimal('100.00')

    def test_paid_at_creation_requires_reference(self, session, make_invoice, master_data):
        with pytest.raises(ValidationError) as exc:
            make_invoice(
                is_paid=True,
                payment_date=date.today().isoformat(),
                payment_type_id=master_data['cheque_id'],
            )

        assert 'payment_reference' in exc.value.errors
        assert session.query(Invoice).count() == 0


class TestRejection:
    """Admin rejection of pending invoices."""

    def test_short_reason_is_refused(self, session, make_invoice, standard_user, admin_user):
        invoice = make_invoice(actor=standard_user)

        with pytest.raises(ValidationError):
            invoice_service.reject_invoice(session, admin_user, invoice.id, 'Wrong')

        session.refresh(invoice)
        assert invoice.status == InvoiceStatus.PENDING_APPROVAL

    def test_reason_is_stored_trimmed(self, session, make_invoice, standard_user, admin_user):
        invoice = make_invoice(actor=standard_user)

        rejected = invoice_service.reject_invoice(session, admin_user, invoice.id, '  Wrong vendor  ')

        assert rejected.status == InvoiceStatus.REJECTED
        assert rejected.rejection_reason == 'Wrong vendor'
        assert rejected.rejected_by == admin_user.id

    def test_reject_unpaid_invoice(self, session, make_invoice, admin_user):
        invoice = make_invoice(actor=admin_user)

        with pytest.raises(InvalidStateError):
            invoice_service.reject_invoice(session, admin_user, invoice.id, 'Duplicate of another invoice')


class TestDocuments:
    """Document upload is part of the creating transaction."""

    def test_document_is_stored(self, session, admin_user, invoice_payload, storage):
        invoice = invoice_service.create_invoice(
            session, admin_user, invoice_payload(), file=_pdf(), storage=storage
        )

        attachment = session.query(InvoiceAttachment).filter_by(invoice_id=invoice.id).one()
        assert attachment.file_name == 'invoice.pdf'
        assert attachment.storage_key in storage.objects

    def test_storage_failure_saves_nothing(self, session, admin_user, invoice_payload, failing_storage):
        with pytest.raises(StorageFailureError):
            invoice_service.create_invoice(
                session, admin_user, invoice_payload(), file=_pdf(), storage=failing_storage
            )

        assert session.query(Invoice).count() == 0
        assert session.query(InvoiceAttachment).count() == 0

    def test_disallowed_file_type(self, session, admin_user, invoice_payload, storage):
        upload = FileStorage(stream=BytesIO(b'MZ'), filename='run.exe', content_type='application/x-msdownload')

        with pytest.raises(ValidationError) as exc:
            invoice_service.create_invoice(session, admin_user, invoice_payload(), file=upload, storage=storage)

        assert 'file' in exc.value.errors
        assert storage.objects == {}


class TestEdit:
    """Editing rules."""

    def test_owner_edit_sends_back_to_approval(self, session, make_invoice, standard_user, admin_user):
        invoice = make_invoice(actor=standard_user)
        invoice_service.approve_invoice(session, admin_user, invoice.id)

        edited = invoice_service.update_invoice(
            session, standard_user, invoice.id, {'invoice_amount': '1200.00'}
        )

        assert edited.status == InvoiceStatus.PENDING_APPROVAL
        assert edited.invoice_amount == Decimal('1200.00')

    def test_owner_cannot_edit_pending(self, session, make_invoice, standard_user):
        invoice = make_invoice(actor=standard_user)

        with pytest.raises(InvalidStateError):
            invoice_service.update_invoice(session, standard_user, invoice.id, {'description': 'x'})

    def test_other_user_cannot_edit(self, session, make_invoice, standard_user, other_user, admin_user):
        invoice = make_invoice(actor=standard_user)
        invoice_service.approve_invoice(session, admin_user, invoice.id)

        with pytest.raises(ForbiddenError):
            invoice_service.update_invoice(session, other_user, invoice.id, {'description': 'x'})

    def test_admin_edit_keeps_status(self, session, make_invoice, admin_user, pay):
        invoice = make_invoice(actor=admin_user)
        pay(invoice.id, '100')

        edited = invoice_service.update_invoice(session, admin_user, invoice.id, {'description': 'Fixed'})

        assert edited.status == InvoiceStatus.PARTIALLY_PAID
        assert edited.description == 'Fixed'

    def test_edit_cannot_go_below_paid(self, session, make_invoice, admin_user, pay):
        invoice = make_invoice(actor=admin_user, invoice_amount='1000')
        pay(invoice.id, '600')

        with pytest.raises(ValidationError) as exc:
            invoice_service.update_invoice(session, admin_user, invoice.id, {'invoice_amount': '500'})

        assert 'invoice_amount' in exc.value.errors
        session.refresh(invoice)
        assert invoice.invoice_amount == Decimal('1000.00')

    def test_stale_edit_is_refused(self, session, make_invoice, admin_user):
        invoice = make_invoice(actor=admin_user)
        token = as_utc(invoice.updated_at).isoformat()

        invoice_service.update_invoice(
            session, admin_user, invoice.id, {'description': 'First edit'}, expected_updated_at=token
        )

        with pytest.raises(StaleInvoiceError):
            invoice_service.update_invoice(
                session, admin_user, invoice.id, {'description': 'Second edit'}, expected_updated_at=token
            )

        session.refresh(invoice)
        assert invoice.description == 'First edit'

    def test_recurring_flag_never_changes(self, session, make_invoice, admin_user):
        invoice = make_invoice(actor=admin_user)

        edited = invoice_service.update_invoice(session, admin_user, invoice.id, {'is_recurring': True})

        assert edited.is_recurring is False


class TestHold:
    """Hold and release."""

    def test_hold_and_release_to_partially_paid(self, session, make_invoice, admin_user, pay):
        invoice = make_invoice(actor=admin_user, invoice_amount='1000')
        pay(invoice.id, '250')

        held = invoice_service.hold_invoice(session, admin_user, invoice.id, 'Vendor dispute')
        assert held.status == InvoiceStatus.ON_HOLD
        assert held.hold_reason == 'Vendor dispute'

        released = invoice_service.release_hold(session, admin_user, invoice.id)
        assert released.status == InvoiceStatus.PARTIALLY_PAID
        assert released.hold_reason is None

    def test_hold_twice(self, session, make_invoice, admin_user):
        invoice = make_invoice(actor=admin_user)
        invoice_service.hold_invoice(session, admin_user, invoice.id, 'Vendor dispute')

        with pytest.raises(AlreadyOnHoldError):
            invoice_service.hold_invoice(session, admin_user, invoice.id, 'Again')

    def test_owner_edit_clears_hold(self, session, make_invoice, standard_user, admin_user):
        invoice = make_invoice(actor=standard_user)
        invoice_service.approve_invoice(session, admin_user, invoice.id)
        invoice_service.hold_invoice(session, admin_user, invoice.id, 'Missing PO')

        edited = invoice_service.update_invoice(session, standard_user, invoice.id, {'description': 'PO attached'})

        assert edited.status == InvoiceStatus.PENDING_APPROVAL
        assert edited.hold_reason is None


class TestListing:
    """List view uses the same balance numbers as the detail view."""

    def test_list_and_detail_agree(self, session, make_invoice, admin_user, pay):
        invoice = make_invoice(actor=admin_user, invoice_amount='500')
        pay(invoice.id, '125.50')

        listed = invoice_service.list_invoices(session)
        detail = invoice_service.get_invoice_detail(session, invoice.id)

        assert listed['total'] == 1
        assert listed['items'][0]['balance'] == detail['balance']
        assert detail['balance']['remaining_balance'] == '374.50'
        assert len(detail['payments']) == 1

    def test_unknown_status_filter(self, session):
        with pytest.raises(ValidationError):
            invoice_service.list_invoices(session, status='settled')


class TestScopeConstraint:
    """The unique constraint catches duplicates that get past the pre-check."""

    @pytest.fixture
    def skip_scope_check(self, monkeypatch):
        def scope_key_only(session, data, exclude_id=None, profile=None):
            return build_scope_key(data['is_recurring'], data.get('invoice_profile_id'), data.get('invoice_name'))

        monkeypatch.setattr(validation, 'validate_unique_scope', scope_key_only)

    def test_create_race(self, session, make_invoice, skip_scope_check):
        make_invoice(invoice_number='DUP-1')

        with pytest.raises(DuplicateInvoiceNumberError) as exc:
            make_invoice(invoice_number='DUP-1')

        assert 'with invoice name "Stationery"' in exc.value.message
        assert session.query(Invoice).filter_by(invoice_number='DUP-1').count() == 1

    def test_update_race(self, session, make_invoice, admin_user, skip_scope_check):
        make_invoice(invoice_number='DUP-1')
        other = make_invoice(invoice_number='DUP-2')

        with pytest.raises(DuplicateInvoiceNumberError) as exc:
            invoice_service.update_invoice(session, admin_user, other.id, {'invoice_number': 'DUP-1'})

        assert exc.value.invoice_number == 'DUP-1'
        session.refresh(other)
        assert other.invoice_number == 'DUP-2'
