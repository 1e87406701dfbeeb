"""
Cart Service - the POS cart ledger.

Lines are keyed by (product_id, variant_id). Each line carries a snapshot of
the product, variant and active discount taken when it was added, so totals
can be recomputed without a round trip to the database. The ledger state is
written to the namespaced state store after every mutation and restored on
construction.

Stock ceilings here are advisory: they keep the cashier from building an
impossible cart. The authoritative check is the conditional stock decrement
performed during settlement.
"""
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from farmstore.exceptions import BusinessLogicError, InsufficientStockError
from farmstore.services.pricing_service import field

logger = logging.getLogger(__name__)

CART_SECTION = 'cart'

LineKey = Tuple[Any, Any]


def _iso(value):
    if value is None or isinstance(value, str):
        return value
    return value.isoformat()


def snapshot_product(product: Any) -> Dict[str, Any]:
    """JSON-safe copy of the product fields the cart needs."""
    snap = dict(product) if isinstance(product, dict) else {}
    snap.update({
        'id': field(product, 'id'),
        'name': field(product, 'name'),
        'price': int(field(product, 'price', 0)),
        'stock': int(field(product, 'stock', 0) or 0),
        'image_url': field(product, 'image_url'),
    })
    return snap


def snapshot_variant(variant: Any) -> Optional[Dict[str, Any]]:
    if variant is None:
        return None
    snap = dict(variant) if isinstance(variant, dict) else {}
    snap.update({
        'id': field(variant, 'id'),
        'product_id': field(variant, 'product_id'),
        'attribute': field(variant, 'attribute'),
        'stock': int(field(variant, 'stock', 0) or 0),
    })
    return snap


def snapshot_discount(discount: Any) -> Optional[Dict[str, Any]]:
    if discount is None:
        return None
    percentage = field(discount, 'percentage', 0)
    snap = dict(discount) if isinstance(discount, dict) else {}
    snap.update({
        'id': field(discount, 'id'),
        'product_id': field(discount, 'product_id'),
        'percentage': float(percentage) if percentage is not None else 0.0,
        'start_date': _iso(field(discount, 'start_date')),
        'end_date': _iso(field(discount, 'end_date')),
    })
    return snap


class CartLineItem:
    """One cart line: product (+ variant) snapshot, discount snapshot and quantity."""

    def __init__(self, product: Dict[str, Any], quantity: int, variant: Optional[Dict[str, Any]] = None,
                 discount: Optional[Dict[str, Any]] = None, added_at: Optional[str] = None,
                 extra: Optional[Dict[str, Any]] = None):
        self.product = product
        self.variant = variant
        self.discount = discount
        self.quantity = quantity
        self.added_at = added_at or datetime.now(timezone.utc).isoformat()
        # Fields written by other builds are carried through untouched
        self.extra = extra or {}

    @property
    def product_id(self):
        return self.product['id']

    @property
    def variant_id(self):
        return self.variant['id'] if self.variant else None

    @property
    def key(self) -> LineKey:
        return (self.product_id, self.variant_id)

    @property
    def stock_ceiling(self) -> int:
        return stock_ceiling(self.product, self.variant)

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data.update({
            'product': self.product,
            'variant': self.variant,
            'discount': self.discount,
            'quantity': self.quantity,
            'added_at': self.added_at,
        })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CartLineItem':
        known = {'product', 'variant', 'discount', 'quantity', 'added_at'}
        product = data['product']
        # Older snapshots embedded the discount inside the product
        discount = data.get('discount', product.get('discount'))
        return cls(
            product=product,
            quantity=int(data.get('quantity', 1)),
            variant=data.get('variant'),
            discount=discount,
            added_at=data.get('added_at'),
            extra={k: v for k, v in data.items() if k not in known},
        )

    def copy(self) -> 'CartLineItem':
        return CartLineItem.from_dict(self.to_dict())

    def __repr__(self):
        return f"<CartLineItem(product_id={self.product_id}, variant_id={self.variant_id}, quantity={self.quantity})>"


def stock_ceiling(product: Any, variant: Any = None) -> int:
    """Max purchasable quantity: product stock, further limited by variant stock."""
    ceiling = int(field(product, 'stock', 0) or 0)
    if variant is not None:
        ceiling = min(ceiling, int(field(variant, 'stock', 0) or 0))
    return max(ceiling, 0)


def _find_line(lines: List[CartLineItem], product_id, variant_id=None) -> Optional[CartLineItem]:
    for line in lines:
        if line.product_id == product_id and line.variant_id == variant_id:
            return line
    return None


class CartLedger:
    """
    Cart with write-through persistence.

    Mutations and settlement share `lock` so a settlement never reads the
    ledger while another request is modifying or clearing it. Every mutation
    re-reads the persisted lines and writes them back through the store's
    atomic section update, so it cannot overwrite a concurrent write to the
    same namespace.
    """

    def __init__(self, store, namespace: str):
        self.store = store
        self.namespace = namespace
        self.lock = threading.RLock()
        self._lines: List[CartLineItem] = []
        self._subscribers: List[Callable[[List[CartLineItem]], None]] = []
        self._load()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def reload(self) -> None:
        """Re-read the persisted lines (another process may have written them)."""
        with self.lock:
            self._load()

    def _parse(self, raw_lines) -> List[CartLineItem]:
        lines = []
        for raw in raw_lines or []:
            try:
                lines.append(CartLineItem.from_dict(raw))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning(f"[CART] Dropping unreadable line in {self.namespace}: {e}")
        return lines

    def _load(self) -> None:
        self._lines = self._parse(self.store.read_section(self.namespace, CART_SECTION, []))

    def _mutate(self, change: Callable[[List[CartLineItem]], Tuple[Any, bool]]) -> Any:
        """
        Apply `change(lines)` to the persisted lines.

        `change` edits the list in place and returns (result, changed). It
        may run more than once when the store retries a conflicting write.
        """
        outcome: Dict[str, Any] = {}

        def update(raw_lines):
            lines = self._parse(raw_lines)
            result, changed = change(lines)
            outcome.update(lines=lines, result=result, changed=changed)
            if not changed:
                return raw_lines
            return [line.to_dict() for line in lines]

        with self.lock:
            self.store.update_section(self.namespace, CART_SECTION, update, [])
            self._lines = outcome['lines']
            if outcome['changed']:
                self._notify()
            return outcome['result']

    def _notify(self) -> None:
        snapshot = self.lines()
        for callback in list(self._subscribers):
            callback(snapshot)

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, callback: Callable[[List[CartLineItem]], None]) -> Callable[[], None]:
        """Register `callback(lines)`; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)
        return unsubscribe

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def lines(self) -> List[CartLineItem]:
        """Copies of the current lines, in insertion order."""
        with self.lock:
            return [line.copy() for line in self._lines]

    def get_line(self, product_id, variant_id=None) -> Optional[CartLineItem]:
        with self.lock:
            line = _find_line(self._lines, product_id, variant_id)
            return line.copy() if line else None

    def is_empty(self) -> bool:
        with self.lock:
            return not self._lines

    def __len__(self):
        return len(self._lines)

    def snapshot(self) -> List[Dict[str, Any]]:
        with self.lock:
            return [line.to_dict() for line in self._lines]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add(self, product: Any, variant: Any = None, quantity: int = 1, discount: Any = None) -> CartLineItem:
        """
        Add `quantity` of a product (or variant), merging with an existing line.

        Raises InsufficientStockError and leaves the cart untouched when the
        merged quantity would exceed the stock ceiling.
        """
        quantity = int(quantity)
        if quantity < 1:
            raise BusinessLogicError('Quantity must be at least 1.')

        product_snap = snapshot_product(product)
        variant_snap = snapshot_variant(variant)
        discount_snap = snapshot_discount(discount)
        ceiling = stock_ceiling(product_snap, variant_snap)
        variant_id = variant_snap['id'] if variant_snap else None

        def change(lines):
            existing = _find_line(lines, product_snap['id'], variant_id)
            new_quantity = quantity + (existing.quantity if existing else 0)

            if new_quantity > ceiling:
                logger.info(
                    f"[CART] Rejected add of {product_snap['name']}: "
                    f"requested {new_quantity}, available {ceiling}"
                )
                raise InsufficientStockError(product_snap['name'], new_quantity, ceiling)

            if existing:
                existing.quantity = new_quantity
                existing.product = product_snap
                existing.variant = variant_snap
                existing.discount = discount_snap
                line = existing
            else:
                line = CartLineItem(product_snap, new_quantity, variant=variant_snap, discount=discount_snap)
                lines.append(line)
            return line.copy(), True

        return self._mutate(change)

    def _clamp(self, line: CartLineItem, value: int) -> int:
        upper = max(line.stock_ceiling, 1)
        return max(1, min(int(value), upper))

    def _change_quantity(self, product_id, variant_id, target: Callable[[CartLineItem], int]):
        def change(lines):
            line = _find_line(lines, product_id, variant_id)
            if not line:
                return None, False
            new_quantity = self._clamp(line, target(line))
            changed = new_quantity != line.quantity
            line.quantity = new_quantity
            return line.copy(), changed

        return self._mutate(change)

    def update_quantity(self, product_id, variant_id=None, delta: int = 0) -> Optional[CartLineItem]:
        """Change a line's quantity by `delta`, clamped to [1, stock ceiling]."""
        return self._change_quantity(product_id, variant_id, lambda line: line.quantity + int(delta))

    def set_quantity(self, product_id, variant_id=None, value: int = 1) -> Optional[CartLineItem]:
        """Set a line's quantity to `value`, clamped to [1, stock ceiling]."""
        return self._change_quantity(product_id, variant_id, lambda line: int(value))

    def remove(self, product_id, variant_id=None) -> bool:
        """Remove a line. Returns False when there was nothing to remove."""
        def change(lines):
            line = _find_line(lines, product_id, variant_id)
            if not line:
                return False, False
            lines.remove(line)
            return True, True

        return self._mutate(change)

    def clear(self) -> None:
        def change(lines):
            if not lines:
                return None, False
            del lines[:]
            return None, True

        self._mutate(change)


class CartLedgerRegistry:
    """One ledger per namespace per process, so every request shares its lock."""

    def __init__(self, store):
        self.store = store
        self._ledgers: Dict[str, CartLedger] = {}
        self._lock = threading.Lock()

    def get(self, namespace: str) -> CartLedger:
        with self._lock:
            ledger = self._ledgers.get(namespace)
            if ledger is None:
                ledger = CartLedger(self.store, namespace)
                self._ledgers[namespace] = ledger
                return ledger
        ledger.reload()
        return ledger
