"""Discount model."""
from sqlalchemy import Column, String, Numeric, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from farmstore.database import Base, IdType


class Discount(Base):
    """Percentage discount on one product, valid inside [start_date, end_date]."""

    __tablename__ = 'discount'
    __table_args__ = (
        CheckConstraint('percentage >= 0 AND percentage <= 100', name='ck_discount_percentage_range'),
    )

    id = Column(IdType, primary_key=True, autoincrement=True)
    product_id = Column(IdType, ForeignKey('product.id', ondelete='CASCADE'), nullable=False, index=True)
    name = Column(String(100), nullable=True)
    percentage = Column(Numeric(5, 2), nullable=False)
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    product = relationship('Product', back_populates='discounts')

    def __repr__(self):
        return f"<Discount(id={self.id}, product_id={self.product_id}, percentage={self.percentage})>"
