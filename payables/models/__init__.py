"""Models package - exports all SQLAlchemy models."""
# Users
from payables.models.app_user import AppUser, UserRole, ADMIN_ROLES, is_admin_role

# Master data
from payables.models.vendor import Vendor
from payables.models.category import Category
from payables.models.entity import Entity
from payables.models.currency import Currency
from payables.models.payment_type import PaymentType
from payables.models.invoice_profile import InvoiceProfile

# Invoices
from payables.models.invoice import Invoice, InvoiceStatus, InvoiceLifecycle, build_scope_key
from payables.models.payment import Payment
from payables.models.credit_note import CreditNote
from payables.models.invoice_attachment import InvoiceAttachment
from payables.models.invoice_comment import InvoiceComment
from payables.models.invoice_tombstone import InvoiceTombstone

# Audit / settings
from payables.models.activity_log import ActivityLog, ActivityAction
from payables.models.system_setting import SystemSetting

__all__ = [
    'AppUser', 'UserRole', 'ADMIN_ROLES', 'is_admin_role',
    'Vendor', 'Category', 'Entity', 'Currency', 'PaymentType', 'InvoiceProfile',
    'Invoice', 'InvoiceStatus', 'InvoiceLifecycle', 'build_scope_key',
    'Payment', 'CreditNote', 'InvoiceAttachment', 'InvoiceComment', 'InvoiceTombstone',
    'ActivityLog', 'ActivityAction',
    'SystemSetting',
]
