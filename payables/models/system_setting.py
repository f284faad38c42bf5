"""System Setting model - key/value configuration editable at runtime."""
from sqlalchemy import Column, String, Text, DateTime, ForeignKey
from sqlalchemy.sql import func
from payables.database import Base
from payables.db_types import IdType


class SystemSetting(Base):

    __tablename__ = 'system_setting'

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    updated_by = Column(IdType, ForeignKey('app_user.id'), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<SystemSetting(key='{self.key}', value='{self.value}')>"
