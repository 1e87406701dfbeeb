"""Catalog Service - product, variant and active discount lookups."""
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from farmstore.exceptions import BusinessLogicError, NotFoundError
from farmstore.models import Product, ProductVariant, Discount
from farmstore.services.pricing_service import select_active_discount, utcnow


def get_active_discounts(session: Session, product_ids: Iterable[int],
                         at: Optional[datetime] = None) -> Dict[int, Discount]:
    """Map product id -> the single discount that applies at `at`."""
    product_ids = list(product_ids)
    if not product_ids:
        return {}
    at = at or utcnow()

    # Window filtering is repeated in select_active_discount, which also
    # normalises timezones stored without offset.
    candidates = session.query(Discount).filter(
        Discount.product_id.in_(product_ids),
        Discount.percentage > 0
    ).order_by(Discount.id).all()

    by_product: Dict[int, List[Discount]] = {}
    for discount in candidates:
        by_product.setdefault(discount.product_id, []).append(discount)

    result = {}
    for pid, discounts in by_product.items():
        chosen = select_active_discount(discounts, at)
        if chosen is not None:
            result[pid] = chosen
    return result


def get_product_for_cart(
    session: Session,
    product_id: int,
    variant_id: Optional[int] = None,
    at: Optional[datetime] = None
) -> Tuple[Product, Optional[ProductVariant], Optional[Discount]]:
    """Load a product (and variant) with its active discount for adding to the cart."""
    product = session.query(Product).filter(Product.id == product_id).first()
    if not product:
        raise NotFoundError('Product not found.')
    if not product.active:
        raise BusinessLogicError(f'The product "{product.name}" is not available.')

    variant = None
    if variant_id is not None:
        variant = session.query(ProductVariant).filter(
            ProductVariant.id == variant_id,
            ProductVariant.product_id == product_id
        ).first()
        if not variant:
            raise NotFoundError('Variant not found for this product.')

    discount = get_active_discounts(session, [product_id], at).get(product_id)
    return product, variant, discount


def list_products_in_stock(session: Session, at: Optional[datetime] = None) -> List[dict]:
    """POS product grid: active products with stock, each with its active discount."""
    products = session.query(Product).filter(
        Product.active == True,  # noqa: E712
        Product.stock > 0
    ).order_by(Product.name).all()

    discounts = get_active_discounts(session, [p.id for p in products], at)
    return [{'product': p, 'discount': discounts.get(p.id)} for p in products]
