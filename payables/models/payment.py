"""Payment model."""
from sqlalchemy import Column, String, Date, Numeric, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from payables.database import Base
from payables.db_types import IdType, Money


class Payment(Base):
    """Payment recorded against an invoice. Never updated once written."""

    __tablename__ = 'payment'

    id = Column(IdType, primary_key=True, autoincrement=True)
    invoice_id = Column(IdType, ForeignKey('invoice.id'), nullable=False, index=True)
    amount_paid = Column(Money, nullable=False)
    payment_date = Column(Date, nullable=False)
    payment_type_id = Column(IdType, ForeignKey('payment_type.id'), nullable=False)
    payment_reference = Column(String(100), nullable=True)
    tds_amount_applied = Column(Numeric(14, 2), nullable=True)
    tds_rounded = Column(Boolean, nullable=False, default=False)  # mode snapshot
    created_by = Column(IdType, ForeignKey('app_user.id'), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    invoice = relationship('Invoice', back_populates='payments')
    payment_type = relationship('PaymentType')
    user = relationship('AppUser')

    def __repr__(self):
        return f"<Payment(id={self.id}, amount={self.amount_paid}, invoice={self.invoice_id})>"
