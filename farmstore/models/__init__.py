"""Models package - exports all SQLAlchemy models."""
from farmstore.models.profile import Profile, ProfileRole, STAFF_ROLES
from farmstore.models.product import Product
from farmstore.models.product_variant import ProductVariant
from farmstore.models.discount import Discount
from farmstore.models.order import Order, OrderStatus
from farmstore.models.order_item import OrderItem
from farmstore.models.payment import Payment, PaymentMethod, PaymentStatus, normalize_payment_method
from farmstore.models.stock_log import StockLog

__all__ = [
    'Profile', 'ProfileRole', 'STAFF_ROLES',
    'Product', 'ProductVariant', 'Discount',
    'Order', 'OrderStatus', 'OrderItem',
    'Payment', 'PaymentMethod', 'PaymentStatus', 'normalize_payment_method',
    'StockLog',
]
