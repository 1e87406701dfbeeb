"""Checkout Service - cart totals."""
from typing import Any, Dict, Iterable

from farmstore.services.pricing_service import price_line, field


def _line_parts(line: Any):
    """Accept CartLineItem objects or their dict form."""
    product = field(line, 'product')
    variant = field(line, 'variant')
    discount = field(line, 'discount')
    quantity = int(field(line, 'quantity', 0))
    return product, variant, discount, quantity


def compute_totals(lines: Iterable[Any]) -> Dict[str, Any]:
    """
    Calculate totals for cart lines.

    Always computed from the line snapshots passed in, never cached.
    """
    lines_details = []
    subtotal_original = 0
    subtotal_discounted = 0
    item_count = 0

    for line in lines:
        product, variant, discount, quantity = _line_parts(line)
        details = price_line(product, discount, quantity)
        details.update({
            'product_id': field(product, 'id'),
            'product_name': field(product, 'name'),
            'variant_id': field(variant, 'id'),
            'variant_attribute': field(variant, 'attribute'),
        })
        lines_details.append(details)

        subtotal_original += details['line_original']
        subtotal_discounted += details['line_total']
        item_count += quantity

    total_savings = subtotal_original - subtotal_discounted
    return {
        'subtotal_original': subtotal_original,
        'subtotal_discounted': subtotal_discounted,
        'total_savings': total_savings,
        'item_count': item_count,
        'has_discount': total_savings > 0,
        'lines': lines_details,
    }


def compute_change(total: int, tendered: int) -> int:
    """Change due for a cash payment (never negative)."""
    return max(int(tendered) - int(total), 0)
