"""Checkout blueprint - totals, settlement and M-Pesa confirmation (JSON)."""
from flask import Blueprint, current_app, g, jsonify, request

from farmstore.blueprints.cart import get_cart_ledger, serialize_cart
from farmstore.database import get_session
from farmstore.decorators.permissions import staff_only, admin_only
from farmstore.exceptions import BusinessLogicError
from farmstore.services.mpesa_client import get_mpesa_client
from farmstore.services.settlement_service import (
    SettlementWorkflow, confirm_mpesa_payment, fail_mpesa_payment
)

checkout_bp = Blueprint('checkout', __name__, url_prefix='/checkout')


def _business_info() -> dict:
    config = current_app.config
    return {
        'name': config.get('BUSINESS_NAME', ''),
        'address': config.get('BUSINESS_ADDRESS', ''),
        'phone': config.get('BUSINESS_PHONE', ''),
    }


@checkout_bp.route('/totals', methods=['GET'])
@staff_only
def totals():
    return jsonify(serialize_cart(get_cart_ledger())['totals'])


@checkout_bp.route('/settle', methods=['POST'])
@staff_only
def settle():
    """
    Settle the current cart.

    Body: payment_method (cash|mpesa|card), amount_tendered (cash),
    phone_number (mpesa), customer_id (optional profile id).
    The Idempotency-Key header (or idempotency_key field) makes retries safe.
    """
    data = request.get_json(silent=True) or {}

    amount_tendered = data.get('amount_tendered')
    if amount_tendered is not None:
        try:
            amount_tendered = int(amount_tendered)
        except (TypeError, ValueError):
            raise BusinessLogicError('Enter the cash amount received')

    idempotency_key = request.headers.get('Idempotency-Key') or data.get('idempotency_key')

    workflow = SettlementWorkflow(
        get_session(),
        get_cart_ledger(),
        mpesa_client=get_mpesa_client(),
        timeout_seconds=current_app.config.get('SETTLEMENT_TIMEOUT_SECONDS', 30),
        business=_business_info(),
    )
    workflow.begin()
    result = workflow.submit(
        data.get('payment_method'),
        user_id=data.get('customer_id') or g.user_id,
        cashier_id=g.user_id,
        amount_tendered=amount_tendered,
        phone_number=data.get('phone_number'),
        idempotency_key=idempotency_key,
    )

    status_code = 200 if result.replayed else 201
    return jsonify(result.to_dict()), status_code


@checkout_bp.route('/mpesa/confirm', methods=['POST'])
@staff_only
def mpesa_confirm():
    data = request.get_json(silent=True) or {}
    reference = data.get('reference')
    if not reference:
        raise BusinessLogicError('reference is required')
    order = confirm_mpesa_payment(get_session(), reference)
    return jsonify({'order_id': order.id, 'order_status': order.status})


@checkout_bp.route('/mpesa/fail', methods=['POST'])
@admin_only
def mpesa_fail():
    data = request.get_json(silent=True) or {}
    reference = data.get('reference')
    if not reference:
        raise BusinessLogicError('reference is required')
    order = fail_mpesa_payment(get_session(), reference, changed_by=g.user_id)
    return jsonify({'order_id': order.id, 'order_status': order.status})
