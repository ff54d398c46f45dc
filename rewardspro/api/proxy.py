"""
Storefront customer lookup.

Served to the theme/app proxy: tier, cashback rate, balance and progress
for one customer. Reads cached columns only; the ledger is never summed
here.
"""
from flask import Blueprint, jsonify

from . import get_shop
from ..services.customer_service import CustomerService
from ..services.tier_evaluator import TierEvaluator
from ..utils.money import to_display

proxy_bp = Blueprint('proxy', __name__)


@proxy_bp.route('/customer/<customer_ref>', methods=['GET'])
def customer_rewards(customer_ref):
    """
    Rewards summary for a storefront customer.

    A customer seen here for the first time is created and enrolled in the
    shop's floor tier.

    Query params:
        shop: Shop domain (required)
    """
    shop = get_shop()
    customer, created = CustomerService(shop.shop_domain).get_or_create(
        customer_ref, triggered_by='proxy'
    )

    evaluator = TierEvaluator(shop.shop_domain)
    membership = evaluator.active_membership(customer.id)
    tier = membership.tier if membership else None

    return jsonify({
        'customer_id': customer.external_customer_id,
        'is_new': created,
        'tier': {
            'name': tier.name,
            'level': tier.level,
            'cashback_percent': float(tier.cashback_percent),
            'benefits': tier.benefits or {},
        } if tier else None,
        'store_credit': to_display(customer.store_credit),
        'total_earned': to_display(customer.total_earned),
        'currency': shop.currency or 'USD',
        'progress': evaluator.tier_progress(customer),
    })
