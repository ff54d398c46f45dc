"""
Order lifecycle webhook handlers.

orders/paid:
1. Skip guest, cancelled and voided orders
2. Read net payment and transactions from the Admin API when the payload
   lacks them
3. Split the payment into cash-equivalent, gift card and store credit parts
4. Record cashback on the cash-equivalent part (idempotent per order)
5. Debit the ledger for store credit spent on the order
6. Issue the cashback as Shopify store credit (best-effort)

refunds/create:
Store credit returned to the customer becomes a refund_credit entry.

Handlers always answer 200 so Shopify does not redeliver forever; failures
are logged and reported in the JSON body.
"""
from decimal import Decimal

from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from ..models.transaction import CashbackTransaction
from ..services.customer_service import CustomerService
from ..services.ledger_service import ledger_service
from ..services.payment_analyzer import STORE_CREDIT_GATEWAY, breakdown_from_order
from ..services.shopify_client import ShopifyClient
from ..services.transaction_recorder import TransactionRecorder
from ..utils.exceptions import PaymentDataMissingError, RewardsError, ShopifyError
from ..utils.money import ZERO, to_decimal
from . import get_shop_from_webhook_headers


order_lifecycle_bp = Blueprint('order_lifecycle', __name__)

SKIPPED_FINANCIAL_STATUSES = ('voided', 'refunded')


def _ack(status: str, **extra):
    return jsonify({'success': status != 'error', 'status': status, **extra}), 200


def _customer_id_from_payload(payload: dict):
    customer = payload.get('customer') or {}
    customer_id = customer.get('id') if isinstance(customer, dict) else None
    return customer_id or payload.get('customer_id')


def _order_from_payload(payload: dict) -> dict:
    """Webhook order payload in the engine's order shape."""
    return {
        'id': payload.get('id'),
        'total_price': payload.get('total_price'),
        'net_payment': payload.get('net_payment'),
        'payment_gateway_names': payload.get('payment_gateway_names') or [],
        'transactions': payload.get('transactions') or [],
    }


def _order_with_payment_data(shop, payload: dict) -> dict:
    """
    Webhook order, completed from the Admin API when the payload has no
    net payment figure. A failed lookup leaves it missing.
    """
    order = _order_from_payload(payload)
    if order['net_payment'] is not None or not shop.access_token:
        return order

    try:
        fetched = ShopifyClient(shop.shop_domain).fetch_order(order['id'])
    except ShopifyError as e:
        current_app.logger.warning(f"Order lookup failed for {order['id']} ({shop.shop_domain}): {e.message}")
        return order

    if fetched:
        order['net_payment'] = fetched.get('net_payment')
        order['transactions'] = fetched.get('transactions') or order['transactions']
        if order['total_price'] is None:
            order['total_price'] = fetched.get('total_price')
    return order


@order_lifecycle_bp.route('/orders/paid', methods=['POST'])
def handle_order_paid():
    """
    Handle ORDERS_PAID webhook.

    Cashback is earned on the part of the order paid with cash-equivalent
    methods; gift cards and store credit earn nothing.
    """
    shop = get_shop_from_webhook_headers()
    if not shop:
        current_app.logger.warning(
            f"orders/paid from unknown shop: {request.headers.get('X-Shopify-Shop-Domain', '')}"
        )
        return _ack('ignored', reason='unknown_shop')

    payload = request.get_json(silent=True)
    if not isinstance(payload, dict) or payload.get('id') is None:
        current_app.logger.warning(f'Malformed orders/paid payload for {shop.shop_domain}')
        return _ack('ignored', reason='malformed_payload')

    order_id = str(payload.get('id'))

    try:
        customer_ref = _customer_id_from_payload(payload)
        if not customer_ref:
            return _ack('skipped', reason='guest_order', order_id=order_id)

        if payload.get('cancelled_at') or (payload.get('financial_status') or '').lower() in SKIPPED_FINANCIAL_STATUSES:
            return _ack('skipped', reason='cancelled_or_voided', order_id=order_id)

        try:
            breakdown = breakdown_from_order(_order_with_payment_data(shop, payload))
        except PaymentDataMissingError as e:
            current_app.logger.warning(f'Skipping order {order_id} for {shop.shop_domain}: {e.message}')
            return _ack('skipped', reason='missing_payment_data', order_id=order_id)

        customer_data = payload.get('customer') or {}
        recorder = TransactionRecorder(shop.shop_domain)
        result = recorder.record(
            order_id=order_id,
            customer_ref=customer_ref,
            order_amount=breakdown.order_total,
            cashback_eligible_amount=breakdown.cashback_eligible_amount,
            email=customer_data.get('email') or payload.get('email'),
            currency=payload.get('currency') or shop.currency or 'USD',
            ordered_at=payload.get('created_at'),
            triggered_by='webhook:orders/paid',
        )
        transaction = result.transaction

        if breakdown.store_credit_amount > ZERO:
            ledger_service.record_order_payment(
                transaction.customer_id,
                breakdown.store_credit_amount,
                order_id,
            )

        if result.created and shop.access_token:
            recorder.sync_to_external(transaction, ShopifyClient(shop.shop_domain))

        return _ack(
            'recorded' if result.created else 'duplicate',
            order_id=order_id,
            transaction=transaction.to_dict(),
            payment=breakdown.to_dict(),
            tier_change=result.evaluation.change_type if result.evaluation and result.evaluation.changed else None,
        )

    except RewardsError as e:
        db.session.rollback()
        current_app.logger.error(f'orders/paid failed for order {order_id} ({shop.shop_domain}): {e.message}')
        return _ack('error', order_id=order_id, error=e.message)
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception(f'orders/paid failed for order {order_id} ({shop.shop_domain}): {e}')
        return _ack('error', order_id=order_id, error=str(e))


def _store_credit_refunded(payload: dict) -> Decimal:
    total = ZERO
    for tx in payload.get('transactions') or []:
        if (tx.get('status') or '').lower() != 'success':
            continue
        if (tx.get('kind') or '').lower() != 'refund':
            continue
        if STORE_CREDIT_GATEWAY not in (tx.get('gateway') or '').lower():
            continue
        total += to_decimal(tx.get('amount'))
    return total


@order_lifecycle_bp.route('/refunds/create', methods=['POST'])
def handle_refund_created():
    """
    Handle REFUNDS_CREATE webhook.

    Only store credit refunded back to the customer touches the ledger.
    Cashback already earned on the order is kept.
    """
    shop = get_shop_from_webhook_headers()
    if not shop:
        return _ack('ignored', reason='unknown_shop')

    payload = request.get_json(silent=True)
    if not isinstance(payload, dict) or payload.get('id') is None:
        current_app.logger.warning(f'Malformed refunds/create payload for {shop.shop_domain}')
        return _ack('ignored', reason='malformed_payload')

    refund_id = str(payload.get('id'))
    order_id = str(payload['order_id']) if payload.get('order_id') is not None else None

    try:
        amount = _store_credit_refunded(payload)
        if amount <= ZERO:
            return _ack('skipped', reason='no_store_credit_refund', refund_id=refund_id)

        customer_id = None
        if order_id:
            transaction = CashbackTransaction.query.filter_by(
                shop_domain=shop.shop_domain, order_id=order_id
            ).first()
            if transaction:
                customer_id = transaction.customer_id

        if customer_id is None:
            customer_ref = _customer_id_from_payload(payload)
            if not customer_ref:
                current_app.logger.warning(f'Refund {refund_id} has no known customer ({shop.shop_domain})')
                return _ack('skipped', reason='unknown_customer', refund_id=refund_id)
            customer, _ = CustomerService(shop.shop_domain).get_or_create(
                customer_ref, triggered_by='webhook:refunds/create'
            )
            customer_id = customer.id

        entry = ledger_service.record_refund_credit(customer_id, amount, refund_id, order_id=order_id)
        return _ack('recorded', refund_id=refund_id, entry=entry.to_dict() if entry else None)

    except RewardsError as e:
        db.session.rollback()
        current_app.logger.error(f'refunds/create failed for refund {refund_id} ({shop.shop_domain}): {e.message}')
        return _ack('error', refund_id=refund_id, error=e.message)
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception(f'refunds/create failed for refund {refund_id} ({shop.shop_domain}): {e}')
        return _ack('error', refund_id=refund_id, error=str(e))
