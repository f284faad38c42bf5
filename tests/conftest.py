import pytest
from datetime import date
from decimal import Decimal
import uuid

from config import TestConfig
from payables import create_app
from payables import database
from payables.database import get_session
from payables.models import (
    AppUser, UserRole, Vendor, Entity, Category, Currency, PaymentType, InvoiceProfile
)


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application instance for testing, backed by a SQLite file."""
    db_file = tmp_path_factory.mktemp('db') / 'payables-test.db'

    class _TestConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f'sqlite:///{db_file}'

    return create_app(_TestConfig)


@pytest.fixture(autouse=True)
def app_context(app):
    """
    Fresh schema and an app context for every test.

    Requests made with the test client reuse this context, so the test and
    the request share one scoped session.
    """
    database.db_session.remove()
    database.drop_all()
    database.create_all()
    with app.app_context():
        yield
    database.db_session.remove()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session():
    """Database session for testing."""
    session = get_session()
    yield session
    session.rollback()


def _make_user(session, role, name):
    suffix = str(uuid.uuid4())[:8]
    user = AppUser(
        email=f'{name}-{suffix}@test.com',
        full_name=name.replace('_', ' ').title(),
        role=role,
        active=True
    )
    user.set_password('password123')
    session.add(user)
    session.commit()
    return user


@pytest.fixture(scope='function')
def standard_user(session):
    return _make_user(session, UserRole.STANDARD_USER.value, 'standard_user')


@pytest.fixture(scope='function')
def other_user(session):
    """Second standard user, owns nothing."""
    return _make_user(session, UserRole.STANDARD_USER.value, 'other_user')


@pytest.fixture(scope='function')
def admin_user(session):
    return _make_user(session, UserRole.ADMIN.value, 'admin')


@pytest.fixture(scope='function')
def super_admin(session):
    return _make_user(session, UserRole.SUPER_ADMIN.value, 'super_admin')


@pytest.fixture(scope='function')
def master_data(session):
    """Active vendor, entity, category, currency and payment types."""
    vendor = Vendor(name='Acme Supplies', is_active=True)
    entity = Entity(name='Head Office', is_active=True)
    category = Category(name='Office', is_active=True)
    currency = Currency(code='INR', symbol='₹', is_active=True)
    bank_transfer = PaymentType(name='Bank Transfer', requires_reference=False, is_active=True)
    cheque = PaymentType(name='Cheque', requires_reference=True, is_active=True)
    session.add_all([vendor, entity, category, currency, bank_transfer, cheque])
    session.flush()

    profile = InvoiceProfile(
        name='Monthly Rent',
        vendor_id=vendor.id,
        entity_id=entity.id,
        category_id=category.id,
        currency_id=currency.id,
        billing_frequency='monthly',
        is_active=True
    )
    session.add(profile)
    session.commit()

    return {
        'vendor_id': vendor.id,
        'entity_id': entity.id,
        'category_id': category.id,
        'currency_id': currency.id,
        'bank_transfer_id': bank_transfer.id,
        'cheque_id': cheque.id,
        'profile_id': profile.id,
    }


@pytest.fixture(scope='function')
def invoice_payload(master_data):
    """Factory for a valid standalone invoice payload."""
    def _build(**overrides):
        payload = {
            'invoice_number': f'INV-{uuid.uuid4().hex[:6]}',
            'invoice_name': 'Stationery',
            'vendor_id': master_data['vendor_id'],
            'entity_id': master_data['entity_id'],
            'category_id': master_data['category_id'],
            'currency_id': master_data['currency_id'],
            'invoice_date': date.today().isoformat(),
            'invoice_amount': '1000.00',
        }
        payload.update(overrides)
        return payload
    return _build


@pytest.fixture(scope='function')
def make_invoice(session, admin_user, invoice_payload):
    """Create an invoice through the service (as admin unless another actor is given)."""
    from payables.services.invoice_service import create_invoice

    def _make(actor=None, **overrides):
        return create_invoice(session, actor or admin_user, invoice_payload(**overrides))
    return _make


@pytest.fixture(scope='function')
def pay(session, admin_user, master_data):
    """Record a payment through the service."""
    from payables.services.payment_service import record_payment

    def _pay(invoice_id, amount, actor=None, **extra):
        candidate = {
            'amount_paid': str(Decimal(amount)),
            'payment_date': date.today().isoformat(),
            'payment_type_id': master_data['bank_transfer_id'],
        }
        candidate.update(extra)
        return record_payment(session, actor or admin_user, invoice_id, candidate)
    return _pay


class FakeStorage:
    """In-memory file store with the StorageService interface."""

    def __init__(self, fail=False):
        self.fail = fail
        self.objects = {}
        self.deleted = []

    def store(self, file_bytes, invoice_id, uploader_id, file_name, content_type=None):
        if self.fail:
            raise ConnectionError('object store unavailable')
        key = f'invoices/{invoice_id}/{file_name}'
        self.objects[key] = file_bytes
        return key

    def delete(self, object_name):
        self.deleted.append(object_name)
        self.objects.pop(object_name, None)
        return True


@pytest.fixture(scope='function')
def storage():
    return FakeStorage()


@pytest.fixture(scope='function')
def failing_storage():
    return FakeStorage(fail=True)


def login(client, user_id):
    with client.session_transaction() as sess:
        sess['user_id'] = user_id
    return client


@pytest.fixture(scope='function')
def login_as(client):
    """Put a user id in the test client session."""
    return lambda user: login(client, user.id)


@pytest.fixture(scope='function')
def standard_client(client, standard_user):
    return login(client, standard_user.id)


@pytest.fixture(scope='function')
def admin_client(client, admin_user):
    return login(client, admin_user.id)
