"""Category model."""
from sqlalchemy import Column, String, Boolean
from payables.database import Base
from payables.db_types import IdType


class Category(Base):
    """Expense category."""

    __tablename__ = 'category'

    id = Column(IdType, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False, unique=True)
    is_active = Column(Boolean, nullable=False, default=True)

    def __repr__(self):
        return f"<Category(id={self.id}, name='{self.name}')>"
