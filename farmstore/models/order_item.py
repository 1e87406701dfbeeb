"""Order Item model."""
from sqlalchemy import Column, Integer, ForeignKey
from sqlalchemy.orm import relationship
from farmstore.database import Base, IdType


class OrderItem(Base):
    """Order line. `price` is the discounted unit price at settlement time."""

    __tablename__ = 'order_items'

    id = Column(IdType, primary_key=True, autoincrement=True)
    order_id = Column(IdType, ForeignKey('orders.id', ondelete='CASCADE'), nullable=False, index=True)
    product_id = Column(IdType, ForeignKey('product.id'), nullable=False)
    variant_id = Column(IdType, ForeignKey('product_variant.id'), nullable=True)
    quantity = Column(Integer, nullable=False)
    price = Column(Integer, nullable=False)
    original_price = Column(Integer, nullable=False)

    # Relationships
    order = relationship('Order', back_populates='items')
    product = relationship('Product')
    variant = relationship('ProductVariant')

    def __repr__(self):
        return f"<OrderItem(id={self.id}, product_id={self.product_id}, quantity={self.quantity}, price={self.price})>"

    @property
    def line_total(self):
        return self.price * self.quantity
