"""
Unit tests for the recently viewed list.
"""

from farmstore.services.viewed_products_service import ViewedProductsLedger
from farmstore.services.cart_service import CartLedger


def _product(product_id):
    return {'id': product_id, 'name': f'Product {product_id}', 'price': 100 * product_id, 'image_url': None}


def test_most_recent_first_and_deduplicated(store):
    viewed = ViewedProductsLedger(store, 'ns')
    viewed.add(_product(1))
    viewed.add(_product(2))
    viewed.add(_product(1))

    assert [p['id'] for p in viewed.recent(10)] == [1, 2]


def test_bounded_to_twenty(store):
    viewed = ViewedProductsLedger(store, 'ns')
    for i in range(1, 26):
        viewed.add(_product(i))

    items = viewed.recent(100)
    assert len(items) == 20
    assert items[0]['id'] == 25
    assert items[-1]['id'] == 6


def test_recent_defaults_to_five(store):
    viewed = ViewedProductsLedger(store, 'ns')
    for i in range(1, 9):
        viewed.add(_product(i))
    assert len(viewed.recent()) == 5


def test_clear(store):
    viewed = ViewedProductsLedger(store, 'ns')
    viewed.add(_product(1))
    viewed.clear()
    assert viewed.recent() == []


def test_shares_namespace_with_cart(store):
    cart = CartLedger(store, 'ns')
    cart.add({'id': 1, 'name': 'Eggs Tray', 'price': 450, 'stock': 5}, quantity=2)
    viewed = ViewedProductsLedger(store, 'ns')
    viewed.add(_product(3))

    document = store.load('ns')
    assert [p['id'] for p in document['state']['viewedProducts']] == [3]
    assert document['state']['cart'][0]['quantity'] == 2
    assert CartLedger(store, 'ns').get_line(1).quantity == 2
