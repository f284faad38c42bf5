"""Invoice Profile model - template that binds a recurring invoice to its vendor and billing setup."""
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from payables.database import Base
from payables.db_types import IdType


class InvoiceProfile(Base):

    __tablename__ = 'invoice_profile'

    id = Column(IdType, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    vendor_id = Column(IdType, ForeignKey('vendor.id'), nullable=False)
    entity_id = Column(IdType, ForeignKey('entity.id'), nullable=False)
    category_id = Column(IdType, ForeignKey('category.id'), nullable=False)
    currency_id = Column(IdType, ForeignKey('currency.id'), nullable=False)
    billing_frequency = Column(String(20), nullable=False, default='monthly')
    tds_applicable = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    vendor = relationship('Vendor')
    entity = relationship('Entity')
    category = relationship('Category')
    currency = relationship('Currency')

    def __repr__(self):
        return f"<InvoiceProfile(id={self.id}, name='{self.name}')>"
