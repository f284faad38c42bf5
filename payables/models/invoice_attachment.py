"""Invoice Attachment model - metadata for a document kept in the file store."""
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from payables.database import Base
from payables.db_types import IdType


class InvoiceAttachment(Base):

    __tablename__ = 'invoice_attachment'

    id = Column(IdType, primary_key=True, autoincrement=True)
    invoice_id = Column(IdType, ForeignKey('invoice.id'), nullable=False, index=True)
    storage_key = Column(String(500), nullable=False)
    file_name = Column(String(255), nullable=False)
    file_size = Column(Integer, nullable=False)
    mime_type = Column(String(100), nullable=False)
    uploaded_by = Column(IdType, ForeignKey('app_user.id'), nullable=False)
    uploaded_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    invoice = relationship('Invoice', back_populates='attachments')

    def __repr__(self):
        return f"<InvoiceAttachment(id={self.id}, key='{self.storage_key}')>"
