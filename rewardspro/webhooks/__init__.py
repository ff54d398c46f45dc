"""
Webhook handlers for RewardsPro.
Processes Shopify order and refund webhooks into cashback and ledger entries.
"""
from typing import Optional

from flask import request

from ..models.shop import Shop


def get_shop_from_webhook_headers() -> Optional[Shop]:
    """
    Get the shop from Shopify webhook headers.

    Returns:
        Active Shop or None if the header is missing or the shop is unknown
    """
    shop_domain = request.headers.get('X-Shopify-Shop-Domain', '').strip()
    if not shop_domain:
        return None
    return Shop.query.filter_by(shop_domain=shop_domain, is_active=True).first()


from .order_lifecycle import order_lifecycle_bp  # noqa: E402

__all__ = [
    'order_lifecycle_bp',
    'get_shop_from_webhook_headers',
]
