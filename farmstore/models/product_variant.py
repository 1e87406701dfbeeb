"""Product Variant model."""
from sqlalchemy import Column, String, Integer, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from farmstore.database import Base, IdType


class ProductVariant(Base):
    """
    Product Variant - e.g. a 50kg bag of a feed.

    A variant carries its own stock count; the purchasable quantity of a
    variant line is limited by both the variant and the parent product.
    """

    __tablename__ = 'product_variant'
    __table_args__ = (
        CheckConstraint('stock >= 0', name='ck_variant_stock_non_negative'),
    )

    id = Column(IdType, primary_key=True, autoincrement=True)
    product_id = Column(IdType, ForeignKey('product.id', ondelete='CASCADE'), nullable=False, index=True)
    attribute = Column(String(100), nullable=False)  # e.g. size
    stock = Column(Integer, nullable=False, default=0, server_default='0')

    # Relationships
    product = relationship('Product', back_populates='variants')

    def __repr__(self):
        return f"<ProductVariant(id={self.id}, product_id={self.product_id}, attribute='{self.attribute}')>"
