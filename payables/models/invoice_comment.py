"""Invoice Comment model."""
from sqlalchemy import Column, Text, DateTime, ForeignKey
from sqlalchemy.sql import func
from payables.database import Base
from payables.db_types import IdType


class InvoiceComment(Base):
    """Free-text comment on an invoice."""

    __tablename__ = 'invoice_comment'

    id = Column(IdType, primary_key=True, autoincrement=True)
    invoice_id = Column(IdType, ForeignKey('invoice.id'), nullable=False, index=True)
    user_id = Column(IdType, ForeignKey('app_user.id'), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<InvoiceComment(id={self.id}, invoice={self.invoice_id})>"
