"""Order model."""
import enum
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from farmstore.database import Base, IdType


class OrderStatus(str, enum.Enum):
    """Order status enum."""
    PENDING = 'pending'
    PROCESSING = 'processing'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


class Order(Base):
    """Order created by one successful settlement."""

    __tablename__ = 'orders'

    id = Column(IdType, primary_key=True, autoincrement=True)
    user_id = Column(IdType, ForeignKey('profile.id'), nullable=True, index=True)
    cashier_id = Column(IdType, ForeignKey('profile.id'), nullable=True)
    total = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=OrderStatus.PENDING.value)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Idempotency key to prevent duplicate orders on retried settlements
    idempotency_key = Column(String(64), unique=True, nullable=True, index=True)

    # Relationships
    items = relationship('OrderItem', back_populates='order', cascade='all, delete-orphan')
    payments = relationship('Payment', back_populates='order', cascade='all, delete-orphan')

    def __repr__(self):
        return f"<Order(id={self.id}, total={self.total}, status={self.status})>"
