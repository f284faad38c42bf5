"""AppUser model - platform users with email/password authentication and a role."""
import enum
from sqlalchemy import Column, String, Boolean, DateTime
from sqlalchemy.sql import func
from werkzeug.security import generate_password_hash, check_password_hash
from payables.database import Base
from payables.db_types import IdType


class UserRole(enum.Enum):
    """Application roles."""
    STANDARD_USER = 'standard_user'
    ADMIN = 'admin'
    SUPER_ADMIN = 'super_admin'


ADMIN_ROLES = (UserRole.ADMIN.value, UserRole.SUPER_ADMIN.value)


def is_admin_role(role) -> bool:
    """Admins and super admins share every admin capability of the lifecycle."""
    if isinstance(role, UserRole):
        role = role.value
    return role in ADMIN_ROLES


class AppUser(Base):
    """AppUser model."""

    __tablename__ = 'app_user'

    id = Column(IdType, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True)
    password_hash = Column(String(255), nullable=True)
    full_name = Column(String(200), nullable=True)
    role = Column(String(20), nullable=False, default=UserRole.STANDARD_USER.value)
    active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def set_password(self, password):
        """Set password hash."""
        self.password_hash = generate_password_hash(password, method='scrypt')

    def check_password(self, password):
        """Check password against hash."""
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    def is_admin(self):
        """Check if user is admin or super admin."""
        return is_admin_role(self.role)

    def is_super_admin(self):
        return self.role == UserRole.SUPER_ADMIN.value

    def __repr__(self):
        return f"<AppUser(id={self.id}, email='{self.email}', role='{self.role}')>"
