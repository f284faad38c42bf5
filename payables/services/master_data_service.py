"""Master data lookups used by invoice validation and payments."""
from payables.models import Vendor, Category, Entity, Currency, PaymentType, InvoiceProfile


def _get(session, model, entity_id):
    if entity_id is None:
        return None
    return session.get(model, entity_id)


def get_vendor(session, vendor_id):
    return _get(session, Vendor, vendor_id)


def get_category(session, category_id):
    return _get(session, Category, category_id)


def get_entity(session, entity_id):
    return _get(session, Entity, entity_id)


def get_currency(session, currency_id):
    return _get(session, Currency, currency_id)


def get_payment_type(session, payment_type_id):
    return _get(session, PaymentType, payment_type_id)


def get_invoice_profile(session, profile_id):
    return _get(session, InvoiceProfile, profile_id)
