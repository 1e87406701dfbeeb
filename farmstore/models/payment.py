"""Payment model."""
import enum
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from farmstore.database import Base, IdType


class PaymentMethod(str, enum.Enum):
    CASH = 'cash'
    MPESA = 'mpesa'
    CARD = 'card'


class PaymentStatus(str, enum.Enum):
    PENDING = 'pending'
    COMPLETED = 'completed'
    FAILED = 'failed'


def normalize_payment_method(method):
    """Normalise user input ('Cash', 'M-Pesa', 'MPESA') to a PaymentMethod value."""
    if not method:
        return None
    value = str(method).strip().lower().replace('-', '').replace('_', '')
    for m in PaymentMethod:
        if m.value == value:
            return m.value
    return None


class Payment(Base):
    """Payment recorded against an order."""

    __tablename__ = 'payments'

    id = Column(IdType, primary_key=True, autoincrement=True)
    order_id = Column(IdType, ForeignKey('orders.id', ondelete='CASCADE'), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    payment_method = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)
    mpesa_reference = Column(String(100), nullable=True, index=True)

    # Only for cash payments
    change_amount = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    order = relationship('Order', back_populates='payments')

    def __repr__(self):
        return f"<Payment(id={self.id}, order_id={self.order_id}, method={self.payment_method}, amount={self.amount})>"
