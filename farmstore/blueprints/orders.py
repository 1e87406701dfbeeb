"""Orders blueprint - order status lifecycle (JSON)."""
from flask import Blueprint, g, jsonify, request

from farmstore.database import get_session
from farmstore.decorators.permissions import admin_only
from farmstore.exceptions import BusinessLogicError
from farmstore.services.order_service import update_order_status

orders_bp = Blueprint('orders', __name__, url_prefix='/orders')


@orders_bp.route('/<int:order_id>/status', methods=['PATCH'])
@admin_only
def update_status(order_id):
    """
    Move an order along its lifecycle.

    Body: status (processing|completed|cancelled). Cancelling returns the
    order's stock and fails any pending payment.
    """
    data = request.get_json(silent=True) or {}
    status = data.get('status')
    if not status:
        raise BusinessLogicError('status is required')

    order = update_order_status(get_session(), order_id, status, changed_by=g.user_id)
    return jsonify({'order_id': order.id, 'order_status': order.status})
