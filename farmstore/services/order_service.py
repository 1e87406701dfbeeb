"""
Order Service - order status lifecycle after settlement.

    pending -> processing | cancelled
    processing -> completed | cancelled
    completed, cancelled: final

Cancelling an order returns its stock and fails any payment still pending.
"""
import logging
from typing import Optional

from sqlalchemy import text
from sqlalchemy.orm import Session

from farmstore.exceptions import BusinessLogicError, NotFoundError
from farmstore.models import Order, OrderStatus, PaymentStatus, StockLog

logger = logging.getLogger(__name__)

ORDER_TRANSITIONS = {
    OrderStatus.PENDING.value: {OrderStatus.PROCESSING.value, OrderStatus.CANCELLED.value},
    OrderStatus.PROCESSING.value: {OrderStatus.COMPLETED.value, OrderStatus.CANCELLED.value},
    OrderStatus.COMPLETED.value: set(),
    OrderStatus.CANCELLED.value: set(),
}


def can_transition(current: str, new_status: str) -> bool:
    return new_status in ORDER_TRANSITIONS.get(current, set())


def check_order_transition(order: Order, new_status: str) -> None:
    """Raise BusinessLogicError unless `order` may move to `new_status`."""
    if not can_transition(order.status, new_status):
        raise BusinessLogicError(
            f'Order #{order.id} cannot move from {order.status} to {new_status}.',
            payload={'code': 'invalid_transition', 'from': order.status, 'to': new_status}
        )


def _return_stock(session: Session, table: str, row_id, qty: int) -> int:
    session.execute(
        text(f"UPDATE {table} SET stock = stock + :qty WHERE id = :id"),
        {'qty': qty, 'id': row_id}
    )
    return session.execute(text(f"SELECT stock FROM {table} WHERE id = :id"), {'id': row_id}).scalar()


def restock_order(session: Session, order: Order, reason: str, changed_by=None) -> None:
    """Put every item of `order` back on the shelf; one restock log per stock row touched."""
    for item in order.items:
        new_stock = _return_stock(session, 'product', item.product_id, item.quantity)
        session.add(StockLog(
            product_id=item.product_id,
            previous_stock=new_stock - item.quantity,
            new_stock=new_stock,
            change_type='restock',
            reason=reason,
            changed_by=changed_by,
        ))
        if item.variant_id is not None:
            new_variant_stock = _return_stock(session, 'product_variant', item.variant_id, item.quantity)
            session.add(StockLog(
                product_id=item.product_id,
                variant_id=item.variant_id,
                previous_stock=new_variant_stock - item.quantity,
                new_stock=new_variant_stock,
                change_type='restock',
                reason=reason,
                changed_by=changed_by,
            ))
    session.flush()


def cancel_order(session: Session, order: Order, reason: str, changed_by=None) -> None:
    """Cancel inside the caller's transaction: fail pending payments, return stock."""
    check_order_transition(order, OrderStatus.CANCELLED.value)
    for payment in order.payments:
        if payment.status == PaymentStatus.PENDING.value:
            payment.status = PaymentStatus.FAILED.value
    restock_order(session, order, reason, changed_by)
    order.status = OrderStatus.CANCELLED.value


def update_order_status(session: Session, order_id, new_status: str, changed_by: Optional[int] = None) -> Order:
    """
    Move an order along its lifecycle and commit.

    Raises:
        NotFoundError: unknown order
        BusinessLogicError: unknown status or a transition the table does not allow
    """
    try:
        order = session.get(Order, order_id)
        if not order:
            raise NotFoundError('Order not found.')

        status = str(new_status or '').strip().lower()
        if status not in ORDER_TRANSITIONS:
            raise BusinessLogicError(f'Invalid order status: {new_status}')

        previous = order.status
        if status == OrderStatus.CANCELLED.value:
            cancel_order(session, order, f'Order cancelled - Order #{order.id}', changed_by)
        else:
            check_order_transition(order, status)
            order.status = status

        session.commit()
        logger.info(f"[ORDER] Order {order.id}: {previous} -> {order.status}")
        return order
    except (BusinessLogicError, NotFoundError):
        session.rollback()
        raise
    except Exception:
        session.rollback()
        logger.exception(f"[ORDER] Status update failed for order {order_id}")
        raise
