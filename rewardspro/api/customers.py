"""
Customer API.

Customer balances, ledger history, reconciliation, manual adjustments and
tier evaluation.
"""
from flask import Blueprint, request, jsonify

from . import get_shop, get_current_user, get_pagination
from ..models.customer import Customer
from ..models.transaction import CashbackTransaction
from ..services.customer_service import CustomerService
from ..services.ledger_service import ledger_service
from ..services.shopify_client import ShopifyClient
from ..services.tier_evaluator import TierEvaluator
from ..services.transaction_recorder import TransactionRecorder
from ..utils.errors import bad_request, not_found, ErrorCode
from ..utils.money import to_display


customers_bp = Blueprint('customers', __name__)


@customers_bp.route('', methods=['GET'])
def list_customers():
    """
    List customers, newest first.

    Query params:
        email: Filter by email (partial match)
        limit, offset: Pagination
    """
    shop = get_shop()
    limit, offset = get_pagination()

    query = Customer.query.filter_by(shop_domain=shop.shop_domain)
    email = request.args.get('email')
    if email:
        query = query.filter(Customer.email.ilike(f'%{email}%'))

    total = query.count()
    customers = query.order_by(Customer.created_at.desc(), Customer.id.desc()).offset(offset).limit(limit).all()

    return jsonify({
        'customers': [c.to_dict() for c in customers],
        'total': total,
        'limit': limit,
        'offset': offset
    })


@customers_bp.route('/<int:customer_id>', methods=['GET'])
def get_customer(customer_id):
    """Customer detail with active membership, spending and progress to the next tier."""
    shop = get_shop()
    customer = CustomerService(shop.shop_domain).get(customer_id)
    evaluator = TierEvaluator(shop.shop_domain)

    data = customer.to_dict(include_membership=True)
    data['tier_progress'] = evaluator.tier_progress(customer)
    data['spending'] = evaluator.spend_summary(customer)
    return jsonify({'customer': data})


@customers_bp.route('/<int:customer_id>/ledger', methods=['GET'])
def get_ledger(customer_id):
    """Store credit ledger, newest first."""
    shop = get_shop()
    customer = CustomerService(shop.shop_domain).get(customer_id)
    limit, offset = get_pagination()

    entries = ledger_service.entries(customer.id, limit=limit, offset=offset)
    return jsonify({
        'entries': [e.to_dict() for e in entries],
        'total': ledger_service.count_entries(customer.id),
        'limit': limit,
        'offset': offset
    })


@customers_bp.route('/<int:customer_id>/ledger/verify', methods=['GET'])
def verify_ledger(customer_id):
    """Recompute the ledger and compare with the cached balance."""
    shop = get_shop()
    customer = CustomerService(shop.shop_domain).get(customer_id)
    return jsonify(ledger_service.verify_integrity(customer.id))


@customers_bp.route('/<int:customer_id>/reconcile', methods=['POST'])
def reconcile(customer_id):
    """
    Reconcile the ledger with Shopify.

    Cashback that was never issued to Shopify is not counted against it;
    the response reports it as unissued_credit.

    Request body:
    {
        "balance": 12.50   # optional - fetched from Shopify when omitted
    }
    """
    shop = get_shop()
    customer = CustomerService(shop.shop_domain).get(customer_id)
    data = request.get_json(silent=True) or {}

    external_balance = data.get('balance')
    if external_balance is None:
        client = ShopifyClient(shop.shop_domain)
        external_balance = client.get_store_credit_balance(customer.external_customer_id)

    entry = ledger_service.reconcile(customer.id, external_balance, triggered_by=get_current_user())
    return jsonify({
        'success': True,
        'diverged': entry is not None,
        'correction': entry.to_dict() if entry else None,
        'unissued_credit': to_display(ledger_service.unissued_credit(customer.id)),
        'store_credit': Customer.query.get(customer.id).to_dict()['store_credit']
    })


@customers_bp.route('/<int:customer_id>/adjust', methods=['POST'])
def adjust(customer_id):
    """
    Manual store credit adjustment.

    Request body:
    {
        "amount": -5.00,
        "reason": "Goodwill correction"
    }
    """
    shop = get_shop()
    customer = CustomerService(shop.shop_domain).get(customer_id)
    data = request.json or {}

    if data.get('amount') is None:
        return bad_request('amount is required', ErrorCode.MISSING_FIELD)

    entry = ledger_service.adjust(
        customer.id,
        data['amount'],
        reason=data.get('reason') or '',
        created_by=get_current_user(),
    )
    return jsonify({'success': True, 'entry': entry.to_dict()})


@customers_bp.route('/<int:customer_id>/evaluate', methods=['POST'])
def evaluate(customer_id):
    """
    Re-evaluate the customer's tier.

    Request body:
    {
        "force": true   # also re-evaluate manual/promotional assignments
    }
    """
    shop = get_shop()
    data = request.get_json(silent=True) or {}

    result = TierEvaluator(shop.shop_domain).evaluate(
        customer_id,
        force=bool(data.get('force', False)),
        triggered_by=get_current_user(),
    )
    return jsonify({'success': True, **result.to_dict()})


@customers_bp.route('/<int:customer_id>/tier-history', methods=['GET'])
def tier_history(customer_id):
    """Tier change log, newest first."""
    shop = get_shop()
    customer = CustomerService(shop.shop_domain).get(customer_id)
    limit, offset = get_pagination(default_limit=20)

    logs = TierEvaluator(shop.shop_domain).history(customer.id, limit=limit, offset=offset)
    return jsonify({
        'history': [log.to_dict() for log in logs],
        'limit': limit,
        'offset': offset
    })


@customers_bp.route('/<int:customer_id>/transactions', methods=['GET'])
def list_transactions(customer_id):
    """Cashback transactions, newest order first."""
    shop = get_shop()
    customer = CustomerService(shop.shop_domain).get(customer_id)
    limit, offset = get_pagination()

    query = CashbackTransaction.query.filter_by(customer_id=customer.id)
    status = request.args.get('status')
    if status:
        query = query.filter_by(status=status)

    transactions = query.order_by(
        CashbackTransaction.ordered_at.desc(), CashbackTransaction.id.desc()
    ).offset(offset).limit(limit).all()

    return jsonify({
        'transactions': [t.to_dict() for t in transactions],
        'total': query.count(),
        'limit': limit,
        'offset': offset
    })


@customers_bp.route('/<int:customer_id>/transactions/<int:transaction_id>/sync', methods=['POST'])
def retry_sync(customer_id, transaction_id):
    """Retry issuing a transaction's cashback as Shopify store credit."""
    shop = get_shop()
    customer = CustomerService(shop.shop_domain).get(customer_id)

    transaction = CashbackTransaction.query.filter_by(id=transaction_id, customer_id=customer.id).first()
    if not transaction:
        return not_found('Transaction not found')

    transaction = TransactionRecorder(shop.shop_domain).sync_to_external(
        transaction, ShopifyClient(shop.shop_domain)
    )
    return jsonify({'success': transaction.status == 'synced', 'transaction': transaction.to_dict()})
