"""Entity model (the organization unit an invoice is billed to)."""
from sqlalchemy import Column, String, Boolean
from payables.database import Base
from payables.db_types import IdType


class Entity(Base):

    __tablename__ = 'entity'

    id = Column(IdType, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    def __repr__(self):
        return f"<Entity(id={self.id}, name='{self.name}')>"
