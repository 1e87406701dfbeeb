"""Viewed Products Service - bounded "recently viewed" list."""
import time
from typing import Any, Dict, List

from farmstore.services.pricing_service import field

VIEWED_SECTION = 'viewedProducts'
DEFAULT_MAX_ITEMS = 20
DEFAULT_RECENT_LIMIT = 5


class ViewedProductsLedger:
    """
    Most recent first, one entry per product, at most `max_items` entries.

    Writes go through the store's atomic section update and share the
    namespace lock with the cart ledger.
    """

    def __init__(self, store, namespace: str, max_items: int = DEFAULT_MAX_ITEMS):
        self.store = store
        self.namespace = namespace
        self.max_items = max_items

    def _read(self) -> List[Dict[str, Any]]:
        return list(self.store.read_section(self.namespace, VIEWED_SECTION, []) or [])

    def add(self, product: Any) -> Dict[str, Any]:
        entry = {
            'id': field(product, 'id'),
            'name': field(product, 'name'),
            'image_url': field(product, 'image_url'),
            'price': int(field(product, 'price', 0)),
            'viewedAt': int(time.time() * 1000),
        }

        def update(items):
            others = [p for p in (items or []) if p.get('id') != entry['id']]
            return ([entry] + others)[:self.max_items]

        self.store.update_section(self.namespace, VIEWED_SECTION, update, [])
        return entry

    def recent(self, limit: int = DEFAULT_RECENT_LIMIT) -> List[Dict[str, Any]]:
        return self._read()[:max(limit, 0)]

    def clear(self) -> None:
        self.store.write_section(self.namespace, VIEWED_SECTION, [])
