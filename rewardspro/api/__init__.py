"""
Admin and storefront HTTP endpoints for RewardsPro.

Shared request helpers live here; each blueprint resolves the shop the same
way.
"""
from flask import request

from ..models.shop import Shop
from ..utils.exceptions import ShopNotFoundError


def get_shop() -> Shop:
    """
    Get shop from X-Shop-Domain header or shop parameter.

    Raises:
        ShopNotFoundError: No active shop matches
    """
    shop_domain = request.headers.get('X-Shop-Domain') or request.args.get('shop')
    if not shop_domain:
        raise ShopNotFoundError()

    shop = Shop.query.filter_by(shop_domain=shop_domain.strip().lower()).first()
    if not shop or not shop.is_active:
        raise ShopNotFoundError(shop_domain)
    return shop


def get_current_user() -> str:
    """Get current user email for audit purposes."""
    return request.headers.get('X-Staff-Email', 'api:unknown')


def get_pagination(default_limit: int = 50, max_limit: int = 200):
    """limit/offset query parameters, clamped."""
    limit = request.args.get('limit', default_limit, type=int)
    offset = request.args.get('offset', 0, type=int)
    return max(1, min(limit, max_limit)), max(0, offset)
