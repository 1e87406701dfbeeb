"""Product model."""
from sqlalchemy import Column, String, Boolean, Integer, DateTime, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from farmstore.database import Base, IdType


class Product(Base):
    """Product model. Prices are whole KES."""

    __tablename__ = 'product'
    __table_args__ = (
        CheckConstraint('stock >= 0', name='ck_product_stock_non_negative'),
        CheckConstraint('price >= 0', name='ck_product_price_non_negative'),
    )

    id = Column(IdType, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    category = Column(String(100), nullable=True)
    price = Column(Integer, nullable=False)
    stock = Column(Integer, nullable=False, default=0, server_default='0')
    image_url = Column(String(255), nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    variants = relationship('ProductVariant', back_populates='product', cascade='all, delete-orphan')
    discounts = relationship('Discount', back_populates='product', cascade='all, delete-orphan')

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}', price={self.price}, stock={self.stock})>"

    @property
    def in_stock(self):
        return (self.stock or 0) > 0
