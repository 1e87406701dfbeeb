"""Cart blueprint - POS cart and recently viewed products (JSON)."""
from flask import Blueprint, current_app, g, jsonify, request

from farmstore.database import get_session
from farmstore.decorators.permissions import staff_only
from farmstore.exceptions import BusinessLogicError
from farmstore.services.cart_service import CartLedger
from farmstore.services.catalog_service import get_product_for_cart, list_products_in_stock
from farmstore.services.checkout_service import compute_totals
from farmstore.services.pricing_service import discounted_unit_price
from farmstore.services.viewed_products_service import ViewedProductsLedger

cart_bp = Blueprint('cart', __name__, url_prefix='/cart')


def _namespace() -> str:
    """State key for the current user: <STATE_NAMESPACE>:<identity provider id>."""
    return f"{current_app.config['STATE_NAMESPACE']}:{g.user.external_id}"


def get_cart_ledger() -> CartLedger:
    return current_app.extensions['farmstore_carts'].get(_namespace())


def get_viewed_ledger() -> ViewedProductsLedger:
    return ViewedProductsLedger(
        current_app.extensions['farmstore_state'],
        _namespace(),
        max_items=current_app.config.get('VIEWED_PRODUCTS_LIMIT', 20)
    )


def _parse_int(data: dict, name: str, default=None, required=False):
    value = data.get(name, default)
    if value is None:
        if required:
            raise BusinessLogicError(f'{name} is required')
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise BusinessLogicError(f'{name} must be an integer')


def serialize_cart(ledger: CartLedger) -> dict:
    """Lines plus totals, recomputed on every call."""
    lines = ledger.lines()
    threshold = current_app.config.get('LOW_STOCK_THRESHOLD', 2)
    totals = compute_totals(lines)
    items = []
    for line, priced in zip(lines, totals['lines']):
        ceiling = line.stock_ceiling
        item = line.to_dict()
        item.update({
            'pricing': priced,
            'stock_ceiling': ceiling,
            'can_increment': line.quantity < ceiling,
            'can_decrement': line.quantity > 1,
            'low_stock': ceiling > 0 and line.quantity >= ceiling - threshold,
        })
        items.append(item)

    return {
        'items': items,
        'totals': {k: v for k, v in totals.items() if k != 'lines'},
    }


@cart_bp.route('/', methods=['GET'])
@staff_only
def view_cart():
    return jsonify(serialize_cart(get_cart_ledger()))


@cart_bp.route('/products', methods=['GET'])
@staff_only
def product_grid():
    """Active in-stock products with their current discounted price."""
    items = []
    for entry in list_products_in_stock(get_session()):
        product, discount = entry['product'], entry['discount']
        items.append({
            'id': product.id,
            'name': product.name,
            'image_url': product.image_url,
            'stock': product.stock,
            'price': product.price,
            'discounted_price': discounted_unit_price(product, discount),
            'discount_percentage': float(discount.percentage) if discount else 0.0,
        })
    return jsonify({'items': items})


@cart_bp.route('/items', methods=['POST'])
@staff_only
def add_item():
    """Add a product (optionally a variant) to the cart."""
    data = request.get_json(silent=True) or {}
    product_id = _parse_int(data, 'product_id', required=True)
    variant_id = _parse_int(data, 'variant_id')
    quantity = _parse_int(data, 'quantity', default=1)

    product, variant, discount = get_product_for_cart(get_session(), product_id, variant_id)
    ledger = get_cart_ledger()
    ledger.add(product, variant=variant, quantity=quantity, discount=discount)

    current_app.logger.info(f"[CART] {g.user.external_id} added {quantity} x product {product_id}")
    return jsonify(serialize_cart(ledger)), 201


@cart_bp.route('/items/<int:product_id>', methods=['PATCH'])
@staff_only
def update_item(product_id):
    """Relative (`delta`) or absolute (`quantity`) change, clamped to stock."""
    data = request.get_json(silent=True) or {}
    variant_id = _parse_int(data, 'variant_id')
    ledger = get_cart_ledger()

    if 'quantity' in data:
        ledger.set_quantity(product_id, variant_id, _parse_int(data, 'quantity', required=True))
    elif 'delta' in data:
        ledger.update_quantity(product_id, variant_id, _parse_int(data, 'delta', required=True))
    else:
        raise BusinessLogicError('Provide either quantity or delta')

    return jsonify(serialize_cart(ledger))


@cart_bp.route('/items/<int:product_id>', methods=['DELETE'])
@staff_only
def remove_item(product_id):
    variant_id = request.args.get('variant_id', type=int)
    ledger = get_cart_ledger()
    ledger.remove(product_id, variant_id)
    return jsonify(serialize_cart(ledger))


@cart_bp.route('/clear', methods=['POST'])
@staff_only
def clear_cart():
    ledger = get_cart_ledger()
    ledger.clear()
    return jsonify(serialize_cart(ledger))


@cart_bp.route('/viewed', methods=['GET'])
@staff_only
def recently_viewed():
    limit = request.args.get('limit', default=5, type=int)
    return jsonify({'items': get_viewed_ledger().recent(limit)})


@cart_bp.route('/viewed', methods=['POST'])
@staff_only
def record_view():
    data = request.get_json(silent=True) or {}
    product_id = _parse_int(data, 'product_id', required=True)
    product, _, _ = get_product_for_cart(get_session(), product_id)
    entry = get_viewed_ledger().add(product)
    return jsonify(entry), 201


@cart_bp.route('/viewed', methods=['DELETE'])
@staff_only
def clear_viewed():
    get_viewed_ledger().clear()
    return jsonify({'items': []})
