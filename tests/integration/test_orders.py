"""
Integration tests for the order status lifecycle.
"""

import pytest

from farmstore.exceptions import BusinessLogicError, NotFoundError
from farmstore.models import Order, Payment, Product, ProductVariant, StockLog
from farmstore.services.catalog_service import get_product_for_cart
from farmstore.services.order_service import ORDER_TRANSITIONS, can_transition, update_order_status
from farmstore.services.settlement_service import SettlementWorkflow


class FakeMpesa:

    def __init__(self, reference):
        self.reference = reference

    def stk_push(self, order_id, phone_number, amount):
        return self.reference


def settle(session, ledger, product_id, quantity, method='card', variant_id=None, reference='ws_CO_1'):
    product, variant, discount = get_product_for_cart(session, product_id, variant_id)
    ledger.add(product, variant=variant, quantity=quantity, discount=discount)
    workflow = SettlementWorkflow(session, ledger, mpesa_client=FakeMpesa(reference))
    if method == 'mpesa':
        return workflow.submit('mpesa', phone_number='0712345678').order_id
    return workflow.submit(method).order_id


def stock_of(session, product_id):
    session.expire_all()
    return session.get(Product, product_id).stock


@pytest.mark.parametrize('current, new, allowed', [
    ('pending', 'processing', True),
    ('pending', 'cancelled', True),
    ('pending', 'completed', False),
    ('processing', 'completed', True),
    ('processing', 'cancelled', True),
    ('processing', 'pending', False),
    ('completed', 'processing', False),
    ('completed', 'cancelled', False),
    ('cancelled', 'pending', False),
])
def test_transition_table(current, new, allowed):
    assert can_transition(current, new) is allowed


def test_final_states_have_no_exits():
    assert ORDER_TRANSITIONS['completed'] == set()
    assert ORDER_TRANSITIONS['cancelled'] == set()


class TestUpdateOrderStatus:

    def test_card_order_completes(self, session, ledger, eggs_tray):
        order_id = settle(session, ledger, eggs_tray.id, 1)

        order = update_order_status(session, order_id, 'completed')

        assert order.status == 'completed'
        session.expire_all()
        assert session.get(Order, order_id).status == 'completed'

    def test_pending_to_processing_to_completed(self, session, ledger, eggs_tray):
        order_id = settle(session, ledger, eggs_tray.id, 1, method='mpesa')

        assert update_order_status(session, order_id, 'processing').status == 'processing'
        assert update_order_status(session, order_id, ' Completed ').status == 'completed'

    def test_pending_cannot_skip_to_completed(self, session, ledger, eggs_tray):
        order_id = settle(session, ledger, eggs_tray.id, 1, method='mpesa')

        with pytest.raises(BusinessLogicError) as exc_info:
            update_order_status(session, order_id, 'completed')

        assert exc_info.value.to_dict()['code'] == 'invalid_transition'
        session.expire_all()
        assert session.get(Order, order_id).status == 'pending'

    def test_completed_order_is_final(self, session, ledger, eggs_tray):
        eggs_id = eggs_tray.id
        order_id = settle(session, ledger, eggs_id, 2)
        update_order_status(session, order_id, 'completed')

        for status in ('processing', 'cancelled'):
            with pytest.raises(BusinessLogicError):
                update_order_status(session, order_id, status)

        assert stock_of(session, eggs_id) == 18

    def test_cancel_pending_mpesa_order_restocks(self, session, ledger, admin, chicks):
        product_id, admin_id = chicks.id, admin.id
        variant_id = session.query(ProductVariant).filter_by(attribute='1 month').one().id
        order_id = settle(session, ledger, product_id, 4, method='mpesa', variant_id=variant_id)

        order = update_order_status(session, order_id, 'cancelled', changed_by=admin_id)

        assert order.status == 'cancelled'
        assert session.query(Payment).filter_by(order_id=order_id).one().status == 'failed'
        assert stock_of(session, product_id) == 100
        assert session.get(ProductVariant, variant_id).stock == 40
        logs = session.query(StockLog).filter_by(change_type='restock').all()
        assert sorted((log.variant_id is not None, log.previous_stock, log.new_stock) for log in logs) == \
            [(False, 96, 100), (True, 36, 40)]
        assert {log.changed_by for log in logs} == {admin_id}
        assert {log.reason for log in logs} == {f'Order cancelled - Order #{order_id}'}

    def test_cancel_paid_order_keeps_payment(self, session, ledger, eggs_tray):
        eggs_id = eggs_tray.id
        order_id = settle(session, ledger, eggs_id, 3)

        update_order_status(session, order_id, 'cancelled')

        assert session.query(Payment).filter_by(order_id=order_id).one().status == 'completed'
        assert stock_of(session, eggs_id) == 20

    def test_unknown_order(self, session):
        with pytest.raises(NotFoundError):
            update_order_status(session, 999, 'completed')

    def test_unknown_status(self, session, ledger, eggs_tray):
        order_id = settle(session, ledger, eggs_tray.id, 1)
        with pytest.raises(BusinessLogicError):
            update_order_status(session, order_id, 'shipped')


class TestOrderStatusEndpoint:

    def test_admin_completes_order(self, session, ledger, admin, eggs_tray, login):
        order_id = settle(session, ledger, eggs_tray.id, 1)
        client = login(admin)

        response = client.patch(f'/orders/{order_id}/status', json={'status': 'completed'})

        assert response.status_code == 200
        assert response.get_json() == {'order_id': order_id, 'order_status': 'completed'}

    def test_illegal_transition_is_rejected(self, session, ledger, admin, eggs_tray, login):
        order_id = settle(session, ledger, eggs_tray.id, 1)
        client = login(admin)
        client.patch(f'/orders/{order_id}/status', json={'status': 'completed'})

        response = client.patch(f'/orders/{order_id}/status', json={'status': 'processing'})

        assert response.status_code == 400
        body = response.get_json()
        assert (body['code'], body['from'], body['to']) == ('invalid_transition', 'completed', 'processing')

    def test_missing_status(self, session, admin, login):
        client = login(admin)
        assert client.patch('/orders/1/status', json={}).status_code == 400

    def test_unknown_order(self, session, admin, login):
        client = login(admin)
        assert client.patch('/orders/424242/status', json={'status': 'completed'}).status_code == 404

    def test_workers_cannot_change_status(self, session, ledger, worker, eggs_tray, login):
        order_id = settle(session, ledger, eggs_tray.id, 1)
        client = login(worker)

        response = client.patch(f'/orders/{order_id}/status', json={'status': 'completed'})

        assert response.status_code == 403
        session.expire_all()
        assert session.get(Order, order_id).status == 'processing'
