"""Credit Note model."""
from sqlalchemy import Column, String, Text, Date, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from payables.database import Base
from payables.db_types import IdType, Money


class CreditNote(Base):
    """
    Post-hoc reduction of the amount owed on an invoice.

    Append-only. `tds_amount` holds the withheld tax reversed by this note,
    zero when no reversal was requested.
    """

    __tablename__ = 'credit_note'

    id = Column(IdType, primary_key=True, autoincrement=True)
    invoice_id = Column(IdType, ForeignKey('invoice.id'), nullable=False, index=True)
    credit_note_number = Column(String(100), nullable=True)
    credit_note_date = Column(Date, nullable=False)
    amount = Column(Money, nullable=False)
    reason = Column(Text, nullable=False)
    notes = Column(Text, nullable=True)
    tds_applicable = Column(Boolean, nullable=False, default=False)
    tds_amount = Column(Money, nullable=False, default=0)
    attachment_ref = Column(String(500), nullable=True)
    created_by = Column(IdType, ForeignKey('app_user.id'), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    invoice = relationship('Invoice', back_populates='credit_notes')
    user = relationship('AppUser')

    def __repr__(self):
        return f"<CreditNote(id={self.id}, amount={self.amount}, invoice={self.invoice_id})>"
