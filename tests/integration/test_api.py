"""
Integration tests for the HTTP API (auth, invoices, settings, cron).
"""

from datetime import date, timedelta
from io import BytesIO

import pytest

from payables.models import Invoice, InvoiceTombstone
from payables.services import invoice_service
from payables.utils.dates import utcnow

CRON_URL = '/api/cron/purge-expired-invoices'


class TestAuth:
    """Session login."""

    def test_login_and_me(self, client, standard_user):
        response = client.post('/auth/login', json={'email': standard_user.email, 'password': 'password123'})
        assert response.status_code == 200

        response = client.get('/auth/me')
        assert response.status_code == 200
        assert response.get_json()['user']['role'] == 'standard_user'

    def test_wrong_password(self, client, standard_user):
        response = client.post('/auth/login', json={'email': standard_user.email, 'password': 'nope'})

        assert response.status_code == 401
        assert response.get_json()['error'] == 'UnauthorizedError'

    def test_logout(self, standard_client):
        standard_client.post('/auth/logout')

        assert standard_client.get('/auth/me').status_code == 401

    def test_csrf_token(self, client):
        response = client.get('/auth/csrf-token')

        assert response.status_code == 200
        assert response.get_json()['csrf_token']

    def test_invoices_require_login(self, client):
        assert client.get('/invoices/').status_code == 401


class TestInvoiceEndpoints:
    """Invoice lifecycle over HTTP."""

    def test_create_approve_and_pay(self, client, login_as, standard_user, admin_user, invoice_payload, master_data):
        login_as(standard_user)
        response = client.post('/invoices/', json=invoice_payload(invoice_amount='1000'))
        assert response.status_code == 201
        invoice = response.get_json()['invoice']
        assert invoice['status'] == 'pending_approval'
        assert invoice['balance']['remaining_balance'] == '1000.00'

        login_as(admin_user)
        response = client.post(f"/invoices/{invoice['id']}/approve")
        assert response.get_json()['invoice']['status'] == 'unpaid'

        response = client.post(f"/invoices/{invoice['id']}/payments", json={
            'amount_paid': '400',
            'payment_date': date.today().isoformat(),
            'payment_type_id': master_data['bank_transfer_id'],
        })
        assert response.status_code == 201
        body = response.get_json()
        assert body['invoice_status'] == 'partially_paid'
        assert body['balance']['remaining_balance'] == '600.00'

    def test_validation_error_shape(self, admin_client, invoice_payload):
        response = admin_client.post('/invoices/', json=invoice_payload(invoice_number='', invoice_amount='0'))

        assert response.status_code == 422
        body = response.get_json()
        assert body['error'] == 'ValidationError'
        assert set(body['errors']) == {'invoice_number', 'invoice_amount'}

    def test_duplicate_number_conflict(self, admin_client, invoice_payload):
        payload = invoice_payload(invoice_number='INV-9')
        admin_client.post('/invoices/', json=payload)

        response = admin_client.post('/invoices/', json=payload)

        assert response.status_code == 409
        assert response.get_json()['error'] == 'DuplicateInvoiceNumberError'

    def test_payment_over_balance(self, admin_client, make_invoice, master_data):
        invoice = make_invoice(invoice_amount='100')

        response = admin_client.post(f'/invoices/{invoice.id}/payments', json={
            'amount_paid': '150',
            'payment_date': date.today().isoformat(),
            'payment_type_id': master_data['bank_transfer_id'],
        })

        assert response.status_code == 422
        assert response.get_json()['remaining_balance'] == '100.00'

    def test_credit_note_warning(self, admin_client, make_invoice):
        invoice = make_invoice(invoice_amount='100')

        response = admin_client.post(f'/invoices/{invoice.id}/credit-notes', json={
            'amount': '150',
            'reason': 'Full refund plus goodwill',
            'credit_note_date': date.today().isoformat(),
        })

        assert response.status_code == 201
        body = response.get_json()
        assert 'exceeds the remaining balance' in body['warning']
        assert body['totals']['count'] == 1

    def test_stale_update(self, admin_client, make_invoice):
        invoice = make_invoice()
        token = admin_client.get(f'/invoices/{invoice.id}').get_json()['invoice']['updated_at']

        first = admin_client.put(f'/invoices/{invoice.id}', json={'description': 'A', 'expected_updated_at': token})
        second = admin_client.put(f'/invoices/{invoice.id}', json={'description': 'B', 'expected_updated_at': token})

        assert first.status_code == 200
        assert second.status_code == 409
        assert second.get_json()['error'] == 'StaleInvoiceError'

    def test_delete_and_restore(self, standard_client, make_invoice, standard_user):
        invoice = make_invoice(actor=standard_user)

        response = standard_client.delete(f'/invoices/{invoice.id}', json={'reason': 'Typo'})
        assert response.get_json()['invoice']['is_hidden'] is True
        assert standard_client.get('/invoices/').get_json()['total'] == 0
        assert standard_client.get('/invoices/?include_hidden=1').status_code == 403

        response = standard_client.post(f'/invoices/{invoice.id}/restore')
        assert response.get_json()['invoice']['is_hidden'] is False

    def test_bulk_requires_admin(self, standard_client, make_invoice, standard_user):
        invoice = make_invoice(actor=standard_user)

        response = standard_client.post('/invoices/bulk/approve', json={'invoice_ids': [invoice.id]})

        assert response.status_code == 403

    def test_bulk_approve(self, admin_client, make_invoice, standard_user):
        ids = [make_invoice(actor=standard_user).id for _ in range(2)]

        response = admin_client.post('/invoices/bulk/approve', json={'invoice_ids': ids})

        assert response.status_code == 200
        assert response.get_json()['count'] == 2

    def test_multipart_create_with_document(self, admin_client, invoice_payload, storage, monkeypatch):
        monkeypatch.setattr(invoice_service, 'get_storage_service', lambda: storage)
        data = {key: str(value) for key, value in invoice_payload().items()}
        data['file'] = (BytesIO(b'%PDF-1.4 test'), 'bill.pdf', 'application/pdf')

        response = admin_client.post('/invoices/', data=data, content_type='multipart/form-data')

        assert response.status_code == 201
        detail = admin_client.get(f"/invoices/{response.get_json()['invoice']['id']}").get_json()['invoice']
        assert detail['attachments'][0]['file_name'] == 'bill.pdf'
        assert len(storage.objects) == 1

    def test_activity(self, admin_client, make_invoice, admin_user, session):
        invoice = make_invoice()
        invoice_service.hold_invoice(session, admin_user, invoice.id, 'Vendor dispute')

        entries = admin_client.get(f'/invoices/{invoice.id}/activity').get_json()['activity']

        assert [e['action'] for e in entries][:2] == ['INVOICE_ON_HOLD', 'INVOICE_CREATED']

    def test_missing_invoice(self, admin_client):
        response = admin_client.get('/invoices/999999')

        assert response.status_code == 404


class TestSettingsEndpoints:
    """Retention setting over HTTP."""

    def test_super_admin_updates(self, client, login_as, super_admin):
        login_as(super_admin)

        response = client.put('/settings/soft-delete-retention', json={'days': 14})

        assert response.get_json()['days'] == 14
        assert client.get('/settings/soft-delete-retention').get_json()['days'] == 14

    def test_admin_cannot_update(self, admin_client):
        assert admin_client.put('/settings/soft-delete-retention', json={'days': 14}).status_code == 403

    def test_out_of_range(self, client, login_as, super_admin):
        login_as(super_admin)

        assert client.put('/settings/soft-delete-retention', json={'days': 400}).status_code == 422


class TestCronEndpoint:
    """Scheduled purge trigger."""

    @pytest.fixture
    def expired_invoice(self, session, make_invoice, admin_user):
        invoice = make_invoice()
        invoice_service.soft_delete_invoice(session, admin_user, invoice.id)
        invoice.recovery_deadline = utcnow() - timedelta(days=1)
        session.commit()
        return invoice.id

    def test_missing_secret(self, client, expired_invoice, session):
        response = client.post(CRON_URL)

        assert response.status_code == 401
        assert session.get(Invoice, expired_invoice) is not None

    def test_wrong_secret(self, client):
        response = client.post(CRON_URL, headers={'Authorization': 'Bearer not-the-secret'})

        assert response.status_code == 401

    def test_bearer_secret(self, client, expired_invoice, session):
        response = client.post(CRON_URL, headers={'Authorization': 'Bearer test-cron-secret'})

        assert response.status_code == 200
        body = response.get_json()
        assert body['purged'] == 1
        assert body['remaining'] == 0
        assert session.get(InvoiceTombstone, expired_invoice) is not None

    def test_header_secret(self, client, expired_invoice):
        response = client.get(CRON_URL, headers={'X-Cron-Secret': 'test-cron-secret'})

        assert response.status_code == 200
        assert response.get_json()['purged'] == 1


class TestMetricsEndpoint:

    def test_metrics(self, client):
        response = client.get('/metrics')

        assert response.status_code == 200
        assert b'payments_recorded_total' in response.data
