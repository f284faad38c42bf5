"""Invoice Tombstone model - marker left behind when an invoice is purged."""
from sqlalchemy import Column, String, DateTime
from sqlalchemy.sql import func
from payables.database import Base
from payables.db_types import IdType


class InvoiceTombstone(Base):
    """
    One row per permanently deleted invoice.
    Keyed by the purged invoice id; purge rewrites it if that id is purged again.
    """

    __tablename__ = 'invoice_tombstone'

    invoice_id = Column(IdType, primary_key=True, autoincrement=False)
    invoice_number = Column(String(100), nullable=False)
    purged_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<InvoiceTombstone(invoice_id={self.invoice_id}, invoice_number='{self.invoice_number}')>"
