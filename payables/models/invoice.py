"""Invoice model."""
from sqlalchemy import (
    Column, String, Text, Date, Numeric, DateTime, Boolean, Enum, ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import relationship
from payables.utils.dates import utcnow
from payables.database import Base
from payables.db_types import IdType, Money
import enum


class InvoiceStatus(enum.Enum):
    """Invoice status enum."""
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    UNPAID = "unpaid"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    ON_HOLD = "on_hold"
    REJECTED = "rejected"


class InvoiceLifecycle(enum.Enum):
    """Soft-delete lifecycle. A purged invoice has no row, only a tombstone."""
    ACTIVE = "ACTIVE"
    HIDDEN = "HIDDEN"


def build_scope_key(is_recurring, invoice_profile_id=None, invoice_name=None):
    """
    Uniqueness discriminator stored next to (invoice_number, vendor_id).

    Recurring invoices are unique per profile, standalone invoices per name.
    """
    if is_recurring:
        return f'profile:{invoice_profile_id}'
    return f'name:{(invoice_name or "").strip()}'


class Invoice(Base):
    """Vendor invoice."""

    __tablename__ = 'invoice'
    __table_args__ = (
        UniqueConstraint('invoice_number', 'vendor_id', 'scope_key', name='uq_invoice_number_scope'),
    )

    id = Column(IdType, primary_key=True, autoincrement=True)
    invoice_number = Column(String(100), nullable=False)
    invoice_name = Column(String(200), nullable=True)
    description = Column(Text, nullable=True)

    # Classification
    is_recurring = Column(Boolean, nullable=False, default=False)
    invoice_profile_id = Column(IdType, ForeignKey('invoice_profile.id'), nullable=True)
    period_start = Column(Date, nullable=True)
    period_end = Column(Date, nullable=True)
    scope_key = Column(String(220), nullable=False)

    vendor_id = Column(IdType, ForeignKey('vendor.id'), nullable=False)
    entity_id = Column(IdType, ForeignKey('entity.id'), nullable=True)
    category_id = Column(IdType, ForeignKey('category.id'), nullable=True)
    currency_id = Column(IdType, ForeignKey('currency.id'), nullable=True)

    invoice_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=True)

    # Amounts
    invoice_amount = Column(Money, nullable=False)
    tds_applicable = Column(Boolean, nullable=False, default=False)
    tds_percentage = Column(Numeric(5, 2), nullable=True)
    tds_rounded = Column(Boolean, nullable=False, default=False)

    status = Column(
        Enum(InvoiceStatus, name='invoice_status', values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=InvoiceStatus.PENDING_APPROVAL
    )

    # Approval / hold metadata
    rejection_reason = Column(Text, nullable=True)
    rejected_by = Column(IdType, ForeignKey('app_user.id'), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    hold_reason = Column(Text, nullable=True)
    hold_by = Column(IdType, ForeignKey('app_user.id'), nullable=True)
    hold_at = Column(DateTime(timezone=True), nullable=True)

    # Soft delete
    lifecycle = Column(
        Enum(InvoiceLifecycle, name='invoice_lifecycle'),
        nullable=False,
        default=InvoiceLifecycle.ACTIVE
    )
    hidden_by = Column(IdType, ForeignKey('app_user.id'), nullable=True)
    hidden_at = Column(DateTime(timezone=True), nullable=True)
    hidden_reason = Column(Text, nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    recovery_deadline = Column(DateTime(timezone=True), nullable=True, index=True)

    created_by = Column(IdType, ForeignKey('app_user.id'), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    # Optimistic concurrency token, set in Python so the value is known after flush
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    vendor = relationship('Vendor', back_populates='invoices')
    entity = relationship('Entity')
    category = relationship('Category')
    currency = relationship('Currency')
    invoice_profile = relationship('InvoiceProfile')
    creator = relationship('AppUser', foreign_keys=[created_by])
    payments = relationship('Payment', back_populates='invoice', order_by='Payment.id')
    credit_notes = relationship('CreditNote', back_populates='invoice', order_by='CreditNote.id')
    attachments = relationship('InvoiceAttachment', back_populates='invoice')

    @property
    def is_hidden(self):
        return self.lifecycle == InvoiceLifecycle.HIDDEN

    def __repr__(self):
        return f"<Invoice(id={self.id}, invoice_number='{self.invoice_number}', status={self.status.value})>"
