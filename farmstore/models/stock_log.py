"""Stock Log model."""
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey
from sqlalchemy.sql import func
from farmstore.database import Base, IdType


class StockLog(Base):
    """Audit row written for every stock change."""

    __tablename__ = 'stock_logs'

    id = Column(IdType, primary_key=True, autoincrement=True)
    product_id = Column(IdType, ForeignKey('product.id'), nullable=False, index=True)
    variant_id = Column(IdType, ForeignKey('product_variant.id'), nullable=True)
    previous_stock = Column(Integer, nullable=False)
    new_stock = Column(Integer, nullable=False)
    change_type = Column(String(20), nullable=False)  # sale, restock, adjustment
    reason = Column(String(255), nullable=True)
    changed_by = Column(IdType, ForeignKey('profile.id'), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<StockLog(product_id={self.product_id}, {self.previous_stock}->{self.new_stock})>"
