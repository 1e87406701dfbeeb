"""Receipt Service - receipt numbers and receipt payloads."""
import random
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from farmstore.utils.formatters import money_ke, datetime_ke


def generate_receipt_number() -> str:
    """RCP-<epoch millis>-<0..999>"""
    timestamp = int(time.time() * 1000)
    return f"RCP-{timestamp}-{random.randint(0, 999)}"


def build_receipt(
    order_id: Any,
    totals: Dict[str, Any],
    payment_method: str,
    amount_tendered: Optional[int] = None,
    change: Optional[int] = None,
    mpesa_reference: Optional[str] = None,
    order_status: Optional[str] = None,
    payment_status: Optional[str] = None,
    receipt_number: Optional[str] = None,
    issued_at: Optional[datetime] = None,
    business: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Receipt data for display; totals come from the settled line snapshot."""
    items: List[Dict[str, Any]] = []
    for line in totals['lines']:
        items.append({
            'product_id': line['product_id'],
            'name': line['product_name'],
            'variant': line.get('variant_attribute'),
            'quantity': line['quantity'],
            'unit_price': line['unit_price'],
            'discounted_unit_price': line['discounted_unit_price'],
            'discount_percentage': line.get('discount_percentage', 0.0),
            'line_savings': line['line_savings'],
            'total': line['line_total'],
        })

    return {
        'receipt_number': receipt_number or generate_receipt_number(),
        'order_id': order_id,
        'issued_at': (issued_at or datetime.now(timezone.utc)).isoformat(),
        'items': items,
        'subtotal': totals['subtotal_original'],
        'savings': totals['total_savings'],
        'total': totals['subtotal_discounted'],
        'payment_method': payment_method,
        'amount_tendered': amount_tendered,
        'change': change,
        'mpesa_reference': mpesa_reference,
        'order_status': order_status,
        'payment_status': payment_status,
        'business': business or {},
    }


def totals_from_order(order) -> Dict[str, Any]:
    """Rebuild settled totals from persisted order items."""
    lines = []
    for item in order.items:
        line_original = item.original_price * item.quantity
        line_total = item.price * item.quantity
        percentage = 0.0
        if item.original_price:
            percentage = round((item.original_price - item.price) * 100.0 / item.original_price, 2)
        lines.append({
            'product_id': item.product_id,
            'product_name': item.product.name if item.product else None,
            'variant_id': item.variant_id,
            'variant_attribute': item.variant.attribute if item.variant else None,
            'quantity': item.quantity,
            'unit_price': item.original_price,
            'discounted_unit_price': item.price,
            'discount_percentage': percentage,
            'line_original': line_original,
            'line_total': line_total,
            'line_savings': line_original - line_total,
        })
    subtotal_original = sum(line['line_original'] for line in lines)
    subtotal_discounted = sum(line['line_total'] for line in lines)
    return {
        'subtotal_original': subtotal_original,
        'subtotal_discounted': subtotal_discounted,
        'total_savings': subtotal_original - subtotal_discounted,
        'item_count': sum(line['quantity'] for line in lines),
        'has_discount': subtotal_original > subtotal_discounted,
        'lines': lines,
    }


def format_receipt_text(receipt: Dict[str, Any], currency: str = 'KES') -> str:
    """Plain-text receipt for sharing."""
    business = receipt.get('business') or {}
    out = []
    if business.get('name'):
        out.append(business['name'])
    out.append(f"Receipt: {receipt['receipt_number']}")
    issued = receipt.get('issued_at')
    if issued:
        out.append(f"Date: {datetime_ke(datetime.fromisoformat(issued))}")
    out.append('')

    for item in receipt['items']:
        name = item['name'] if not item.get('variant') else f"{item['name']} ({item['variant']})"
        out.append(name)
        out.append(
            f"  {item['quantity']} x {money_ke(item['discounted_unit_price'], currency)}"
            f" = {money_ke(item['total'], currency)}"
        )

    out.append('')
    out.append(f"Subtotal: {money_ke(receipt['subtotal'], currency)}")
    if receipt.get('savings'):
        out.append(f"Discount: -{money_ke(receipt['savings'], currency)}")
    out.append(f"TOTAL: {money_ke(receipt['total'], currency)}")
    out.append(f"Payment: {receipt['payment_method'].upper()}")
    if receipt.get('amount_tendered') is not None:
        out.append(f"Cash: {money_ke(receipt['amount_tendered'], currency)}")
    if receipt.get('change'):
        out.append(f"Change: {money_ke(receipt['change'], currency)}")
    if receipt.get('mpesa_reference'):
        out.append(f"M-Pesa ref: {receipt['mpesa_reference']}")
    if receipt.get('savings'):
        out.append(f"Customer saved {money_ke(receipt['savings'], currency)} with discounts!")
    out.append('Please keep this receipt for your records.')
    return '\n'.join(out)
