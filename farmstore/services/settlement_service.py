"""
Settlement service - turns the cart into an order, items, payment and stock movement.

A settlement runs inside one database transaction: the order, its items, the
conditional stock decrements, the stock logs and the payment are committed
together or not at all. Prices are captured from the cart totals computed
before anything is written and are never recomputed afterwards.

For M-Pesa the STK push is sent after that commit, so no stock rows stay
locked during the gateway call. A failed push cancels the committed order
and returns its stock.
"""
import enum
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.orm import Session

from farmstore.exceptions import (
    BusinessLogicError, EmptyCartError, InsufficientPaymentError, InvalidPhoneError,
    NotFoundError, SettlementError, StockConflictError
)
from farmstore.models import (
    Order, OrderItem, OrderStatus, Payment, PaymentMethod, PaymentStatus,
    StockLog, normalize_payment_method
)
from farmstore.services.cart_service import CartLedger, CartLineItem
from farmstore.services.checkout_service import compute_totals, compute_change
from farmstore.services.mpesa_client import MpesaClient, validate_phone
from farmstore.services.order_service import cancel_order, check_order_transition
from farmstore.services.receipt_service import build_receipt, totals_from_order

logger = logging.getLogger(__name__)


class SettlementState(str, enum.Enum):
    IDLE = 'idle'
    AWAITING_PAYMENT_DETAILS = 'awaiting_payment_details'
    SUBMITTING = 'submitting'
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'


# Payment method -> (payment status, order status) right after settlement.
# A completed payment always moves the order to processing.
STATUS_TRANSITIONS = {
    PaymentMethod.CASH.value: (PaymentStatus.COMPLETED.value, OrderStatus.PROCESSING.value),
    PaymentMethod.CARD.value: (PaymentStatus.COMPLETED.value, OrderStatus.PROCESSING.value),
    PaymentMethod.MPESA.value: (PaymentStatus.PENDING.value, OrderStatus.PENDING.value),
}


def apply_status_transition(order: Order, payment: Payment) -> None:
    """
    Set order status from the payment's status using one rule for all methods.

    The move must also be allowed by the order lifecycle table.
    """
    if payment.status == PaymentStatus.COMPLETED.value:
        target = OrderStatus.PROCESSING.value
    elif payment.status == PaymentStatus.FAILED.value:
        target = OrderStatus.CANCELLED.value
    else:
        target = OrderStatus.PENDING.value
    if target != order.status:
        check_order_transition(order, target)
        order.status = target


class SettlementResult:
    """Outcome of a successful settlement."""

    def __init__(self, order_id, receipt: Dict[str, Any], change: Optional[int],
                 order_status: str, payment_status: str, replayed: bool = False):
        self.order_id = order_id
        self.receipt = receipt
        self.change = change
        self.order_status = order_status
        self.payment_status = payment_status
        self.replayed = replayed

    def to_dict(self) -> Dict[str, Any]:
        return {
            'order_id': self.order_id,
            'order_status': self.order_status,
            'payment_status': self.payment_status,
            'change': self.change,
            'replayed': self.replayed,
            'receipt': self.receipt,
        }


class SettlementWorkflow:
    """
    One checkout attempt over a cart ledger.

    States: IDLE -> AWAITING_PAYMENT_DETAILS -> SUBMITTING -> SUCCEEDED | FAILED.
    Validation failures (empty cart, short cash, bad phone) never touch the
    database. Store failures roll the transaction back and surface as
    SettlementError; a failed stock decrement surfaces as StockConflictError.
    A failed M-Pesa push cancels the already committed order, then raises
    SettlementError.
    """

    def __init__(
        self,
        session: Session,
        ledger: CartLedger,
        mpesa_client: Optional[MpesaClient] = None,
        timeout_seconds: Optional[float] = 30,
        business: Optional[Dict[str, str]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session = session
        self.ledger = ledger
        self.mpesa_client = mpesa_client
        self.timeout_seconds = timeout_seconds
        self.business = business or {}
        self.clock = clock
        self.state = SettlementState.IDLE
        self.last_error: Optional[Exception] = None
        self._deadline: Optional[float] = None

    def begin(self) -> SettlementState:
        """Open the payment step."""
        if self.state == SettlementState.SUBMITTING:
            raise BusinessLogicError('A settlement is already in progress.')
        self.state = SettlementState.AWAITING_PAYMENT_DETAILS
        self.last_error = None
        return self.state

    def _fail(self, error: Exception, state: SettlementState = SettlementState.FAILED) -> None:
        self.state = state
        self.last_error = error

    def submit(
        self,
        payment_method: str,
        user_id: Optional[int] = None,
        cashier_id: Optional[int] = None,
        amount_tendered: Optional[int] = None,
        phone_number: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> SettlementResult:
        """Settle the current cart. See class docstring for failure semantics."""
        with self.ledger.lock:
            if self.state == SettlementState.SUBMITTING:
                raise BusinessLogicError('A settlement is already in progress.')
            self.state = SettlementState.SUBMITTING

            # Retried settlement that already went through (the cart is
            # already cleared in that case, so this runs before validation)
            if idempotency_key:
                existing = self.session.query(Order).filter_by(idempotency_key=idempotency_key).first()
                if existing:
                    logger.info(f"[SETTLE] Replaying order {existing.id} for key {idempotency_key}")
                    self.state = SettlementState.SUCCEEDED
                    return self._replay(existing)

            # 1. Cart must have lines
            lines = self.ledger.lines()
            if not lines:
                error = EmptyCartError()
                self._fail(error)
                raise error

            # Price capture: everything written below uses these totals
            totals = compute_totals(lines)
            grand_total = totals['subtotal_discounted']

            # 2. Payment details
            method = self._validate_payment(payment_method, grand_total, amount_tendered, phone_number)
            if amount_tendered is not None:
                amount_tendered = int(amount_tendered)

            self._deadline = self.clock() + self.timeout_seconds if self.timeout_seconds else None

            try:
                # 3. Order
                order = self._create_order(grand_total, user_id, cashier_id, idempotency_key)
                self._check_deadline('order')

                # 4. Items, priced from the captured totals
                self._create_order_items(order, lines, totals)
                self._check_deadline('items')

                # Authoritative stock check; must happen before the payment row
                self._decrement_stock(order, lines, cashier_id)
                self._check_deadline('stock')

                # 5. Payment
                payment = self._create_payment(order, method, grand_total, amount_tendered)

                # 6. Status
                apply_status_transition(order, payment)
                self._check_deadline('payment')

                self.session.commit()
            except (StockConflictError, SettlementError) as e:
                self.session.rollback()
                logger.warning(f"[SETTLE] Aborted: {e.message}")
                self._fail(e)
                raise
            except Exception as e:
                self.session.rollback()
                logger.exception("[SETTLE] Settlement failed, transaction rolled back")
                error = SettlementError()
                self._fail(error)
                raise error from e

            # STK push runs with the stock rows already released
            if method == PaymentMethod.MPESA.value:
                self._request_mpesa_payment(order, payment, phone_number, grand_total)

            # 7. Receipt snapshot, clear cart
            change = compute_change(grand_total, amount_tendered) if method == PaymentMethod.CASH.value else None
            receipt = build_receipt(
                order.id,
                totals,
                method,
                amount_tendered=amount_tendered if method == PaymentMethod.CASH.value else None,
                change=change,
                mpesa_reference=payment.mpesa_reference,
                order_status=order.status,
                payment_status=payment.status,
                business=self.business,
            )
            self.state = SettlementState.SUCCEEDED
            logger.info(
                f"[SETTLE] Order {order.id} settled: {grand_total} via {method} "
                f"({order.status}/{payment.status})"
            )
            self._clear_ledger(order.id)
            return SettlementResult(order.id, receipt, change, order.status, payment.status)

    def _request_mpesa_payment(self, order: Order, payment: Payment, phone_number: str, total: int) -> None:
        """Send the STK push for a committed order; cancel the order if the gateway refuses."""
        try:
            payment.mpesa_reference = self.mpesa_client.stk_push(order.id, phone_number, total)
            self.session.commit()
        except Exception as e:
            self.session.rollback()
            logger.warning(f"[SETTLE] M-Pesa request failed for order {order.id}: {e}")
            self._cancel_unpaid(order)
            error = SettlementError('M-Pesa request failed. The order was cancelled; please try again.')
            self._fail(error)
            raise error from e

    def _cancel_unpaid(self, order: Order) -> None:
        # Releasing the key lets the cashier retry with it
        try:
            order.idempotency_key = None
            cancel_order(self.session, order, f'M-Pesa request failed - Order #{order.id}')
            self.session.commit()
            logger.info(f"[SETTLE] Order {order.id} cancelled, stock returned")
        except Exception:
            self.session.rollback()
            logger.exception(f"[SETTLE] Could not cancel order {order.id} after M-Pesa failure")

    def _clear_ledger(self, order_id) -> None:
        """The order is committed by now; a cart that fails to clear is only logged."""
        try:
            self.ledger.clear()
        except Exception:
            logger.exception(f"[SETTLE] Order {order_id} settled but the cart could not be cleared")

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate_payment(self, payment_method, grand_total, amount_tendered, phone_number) -> str:
        method = normalize_payment_method(payment_method)
        if method is None:
            error = BusinessLogicError(f'Invalid payment method: {payment_method}')
            self._fail(error, SettlementState.AWAITING_PAYMENT_DETAILS)
            raise error

        if method == PaymentMethod.CASH.value:
            if amount_tendered is None or int(amount_tendered) < grand_total:
                error = InsufficientPaymentError(grand_total, amount_tendered)
                self._fail(error, SettlementState.AWAITING_PAYMENT_DETAILS)
                raise error

        if method == PaymentMethod.MPESA.value:
            if not validate_phone(phone_number):
                error = InvalidPhoneError(phone_number)
                self._fail(error, SettlementState.AWAITING_PAYMENT_DETAILS)
                raise error
            if self.mpesa_client is None:
                error = BusinessLogicError('M-Pesa payments are not configured.')
                self._fail(error, SettlementState.AWAITING_PAYMENT_DETAILS)
                raise error

        return method

    def _check_deadline(self, step: str) -> None:
        if self._deadline is not None and self.clock() > self._deadline:
            raise SettlementError(f'Settlement timed out after {step}. Please try again.')

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _create_order(self, total: int, user_id, cashier_id, idempotency_key) -> Order:
        order = Order(
            user_id=user_id,
            cashier_id=cashier_id,
            total=total,
            status=OrderStatus.PENDING.value,
            idempotency_key=idempotency_key,
        )
        self.session.add(order)
        self.session.flush()
        return order

    def _create_order_items(self, order: Order, lines: List[CartLineItem], totals: Dict[str, Any]) -> None:
        for line, priced in zip(lines, totals['lines']):
            self.session.add(OrderItem(
                order_id=order.id,
                product_id=line.product_id,
                variant_id=line.variant_id,
                quantity=line.quantity,
                price=priced['discounted_unit_price'],
                original_price=priced['unit_price'],
            ))
        self.session.flush()

    def _decrement_stock(self, order: Order, lines: List[CartLineItem], changed_by) -> None:
        """Decrement-if-sufficient per product and per variant."""
        product_qty: Dict[Any, int] = {}
        variant_qty: Dict[Any, int] = {}
        for line in lines:
            product_qty[line.product_id] = product_qty.get(line.product_id, 0) + line.quantity
            if line.variant_id is not None:
                variant_qty[line.variant_id] = variant_qty.get(line.variant_id, 0) + line.quantity

        reason = f'POS Sale - Order #{order.id}'

        for product_id, qty in product_qty.items():
            new_stock = self._conditional_decrement('product', product_id, qty)
            if new_stock is None:
                raise StockConflictError(product_id, requested=qty)
            self.session.add(StockLog(
                product_id=product_id,
                previous_stock=new_stock + qty,
                new_stock=new_stock,
                change_type='sale',
                reason=reason,
                changed_by=changed_by,
            ))

        for line in lines:
            if line.variant_id is None or line.variant_id not in variant_qty:
                continue
            qty = variant_qty.pop(line.variant_id)
            new_stock = self._conditional_decrement('product_variant', line.variant_id, qty)
            if new_stock is None:
                raise StockConflictError(line.product_id, variant_id=line.variant_id, requested=qty)
            self.session.add(StockLog(
                product_id=line.product_id,
                variant_id=line.variant_id,
                previous_stock=new_stock + qty,
                new_stock=new_stock,
                change_type='sale',
                reason=reason,
                changed_by=changed_by,
            ))
        self.session.flush()

    def _conditional_decrement(self, table: str, row_id, qty: int) -> Optional[int]:
        """Returns the new stock, or None when stock was insufficient."""
        result = self.session.execute(
            text(f"UPDATE {table} SET stock = stock - :qty WHERE id = :id AND stock >= :qty"),
            {'qty': qty, 'id': row_id}
        )
        if result.rowcount != 1:
            return None
        return self.session.execute(
            text(f"SELECT stock FROM {table} WHERE id = :id"), {'id': row_id}
        ).scalar()

    def _create_payment(self, order: Order, method: str, total: int,
                        amount_tendered: Optional[int]) -> Payment:
        payment_status, _ = STATUS_TRANSITIONS[method]
        is_cash = method == PaymentMethod.CASH.value
        payment = Payment(
            order_id=order.id,
            amount=int(amount_tendered) if is_cash else total,
            payment_method=method,
            status=payment_status,
            change_amount=compute_change(total, amount_tendered) if is_cash else None,
        )
        self.session.add(payment)
        self.session.flush()
        return payment

    def _replay(self, order: Order) -> SettlementResult:
        payment = order.payments[0] if order.payments else None
        method = payment.payment_method if payment else None
        change = payment.change_amount if payment else None
        receipt = build_receipt(
            order.id,
            totals_from_order(order),
            method,
            amount_tendered=payment.amount if payment and method == PaymentMethod.CASH.value else None,
            change=change,
            mpesa_reference=payment.mpesa_reference if payment else None,
            order_status=order.status,
            payment_status=payment.status if payment else None,
            business=self.business,
        )
        return SettlementResult(
            order.id, receipt, change, order.status,
            payment.status if payment else None, replayed=True
        )


# =====================================================
# M-PESA CALLBACKS
# =====================================================

def _pending_mpesa_payment(session: Session, reference: str) -> Payment:
    payment = session.query(Payment).filter_by(
        mpesa_reference=reference,
        payment_method=PaymentMethod.MPESA.value
    ).first()
    if not payment:
        raise NotFoundError('M-Pesa payment not found.')
    if payment.status != PaymentStatus.PENDING.value:
        raise BusinessLogicError(f'Payment already {payment.status}.')
    return payment


def confirm_mpesa_payment(session: Session, reference: str) -> Order:
    """Gateway confirmed the STK push: payment completed, order processing."""
    try:
        payment = _pending_mpesa_payment(session, reference)
        payment.status = PaymentStatus.COMPLETED.value
        apply_status_transition(payment.order, payment)
        session.commit()
        logger.info(f"[SETTLE] M-Pesa {reference} confirmed for order {payment.order_id}")
        return payment.order
    except (BusinessLogicError, NotFoundError):
        session.rollback()
        raise
    except Exception as e:
        session.rollback()
        raise SettlementError() from e


def fail_mpesa_payment(session: Session, reference: str, changed_by=None) -> Order:
    """Gateway reported failure: payment failed, order cancelled, stock returned."""
    try:
        payment = _pending_mpesa_payment(session, reference)
        payment.status = PaymentStatus.FAILED.value
        order = payment.order
        cancel_order(session, order, f'M-Pesa failed - Order #{order.id}', changed_by)
        session.commit()
        logger.info(f"[SETTLE] M-Pesa {reference} failed; order {order.id} cancelled")
        return order
    except (BusinessLogicError, NotFoundError):
        session.rollback()
        raise
    except Exception as e:
        session.rollback()
        raise SettlementError() from e
