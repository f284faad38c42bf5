"""Currency model."""
from sqlalchemy import Column, String, Boolean
from payables.database import Base
from payables.db_types import IdType


class Currency(Base):

    __tablename__ = 'currency'

    id = Column(IdType, primary_key=True, autoincrement=True)
    code = Column(String(3), nullable=False, unique=True)
    symbol = Column(String(8), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    def __repr__(self):
        return f"<Currency(id={self.id}, code='{self.code}')>"
