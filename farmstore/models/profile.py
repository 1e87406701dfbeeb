"""Profile model - local mirror of identity provider users."""
import enum
from sqlalchemy import Column, String, Boolean, DateTime
from sqlalchemy.sql import func
from farmstore.database import Base, IdType


class ProfileRole(str, enum.Enum):
    """Profile roles. Only staff roles may use the POS cart."""
    CUSTOMER = 'customer'
    WORKER = 'worker'
    ADMIN = 'admin'


STAFF_ROLES = (ProfileRole.WORKER.value, ProfileRole.ADMIN.value)


class Profile(Base):
    """Profile keyed by the identity provider's user id."""

    __tablename__ = 'profile'

    id = Column(IdType, primary_key=True, autoincrement=True)
    external_id = Column(String(64), unique=True, nullable=False, index=True)
    email = Column(String(255), nullable=True)
    full_name = Column(String(255), nullable=True)
    role = Column(String(20), nullable=False, default=ProfileRole.CUSTOMER.value)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<Profile(id={self.id}, external_id='{self.external_id}', role='{self.role}')>"

    @property
    def is_staff(self):
        return self.role in STAFF_ROLES
