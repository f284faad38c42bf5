"""Vendor model."""
from sqlalchemy import Column, String, Text, Boolean, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from payables.database import Base
from payables.db_types import IdType


class Vendor(Base):
    """Vendor (supplier issuing invoices)."""

    __tablename__ = 'vendor'

    id = Column(IdType, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    tax_id = Column(String, nullable=True)
    email = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    invoices = relationship('Invoice', back_populates='vendor')

    def __repr__(self):
        return f"<Vendor(id={self.id}, name='{self.name}')>"
