"""Payment type model."""
from sqlalchemy import Column, String, Boolean
from payables.database import Base
from payables.db_types import IdType


class PaymentType(Base):
    """Payment type (wire transfer, cheque, cash...)."""

    __tablename__ = 'payment_type'

    id = Column(IdType, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False, unique=True)
    requires_reference = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)

    def __repr__(self):
        return f"<PaymentType(id={self.id}, name='{self.name}')>"
