"""
Tier Management API.

Provides REST endpoints for managing a shop's cashback tiers, including:
- Tier CRUD with catalog validation
- Member distribution across tiers
- Level re-sequencing and default tier seeding
- Staff and promotional tier assignment
- Expiration processing and bulk re-evaluation
"""
from datetime import datetime
from flask import Blueprint, request, jsonify

from . import get_shop, get_current_user
from ..services.tier_catalog import TierCatalog
from ..services.tier_evaluator import TierEvaluator
from ..utils.errors import bad_request, ErrorCode


tiers_bp = Blueprint('tiers', __name__)


def _tier_payload(tier, counts=None):
    data = tier.to_dict()
    if counts is not None:
        data['member_count'] = counts.get(tier.id, 0)
    return data


# ==================== Tier CRUD ====================

@tiers_bp.route('', methods=['GET'])
def list_tiers():
    """
    List tiers ordered by level.

    Query params:
        include_inactive: true to include inactive tiers
    """
    shop = get_shop()
    catalog = TierCatalog(shop.shop_domain)
    include_inactive = request.args.get('include_inactive', 'false').lower() == 'true'

    counts = catalog.member_counts()
    tiers = catalog.list_tiers(include_inactive=include_inactive)

    return jsonify({
        'tiers': [_tier_payload(t, counts) for t in tiers],
        'total': len(tiers)
    })


@tiers_bp.route('', methods=['POST'])
def create_tier():
    """
    Create a tier at the next level.

    Request body:
    {
        "name": "Gold",
        "cashback_percent": 3,
        "min_spend": 1500,          # omit or null for the floor tier
        "evaluation_period": "annual",  # or "lifetime"
        "benefits": {"free_shipping": true}
    }
    """
    shop = get_shop()
    data = request.json or {}

    if not data.get('name'):
        return bad_request('name is required', ErrorCode.MISSING_FIELD)
    if data.get('cashback_percent') is None:
        return bad_request('cashback_percent is required', ErrorCode.MISSING_FIELD)

    tier = TierCatalog(shop.shop_domain).create_tier(
        name=data['name'],
        cashback_percent=data['cashback_percent'],
        min_spend=data.get('min_spend'),
        evaluation_period=data.get('evaluation_period', 'annual'),
        benefits=data.get('benefits'),
        is_active=data.get('is_active', True),
    )
    return jsonify({'success': True, 'tier': tier.to_dict()}), 201


@tiers_bp.route('/distribution', methods=['GET'])
def tier_distribution():
    """Members per tier, share of customers and average lifetime spend."""
    shop = get_shop()
    return jsonify({'distribution': TierCatalog(shop.shop_domain).tier_distribution()})


@tiers_bp.route('/<int:tier_id>', methods=['GET'])
def get_tier(tier_id):
    """Get a single tier with its member count."""
    shop = get_shop()
    catalog = TierCatalog(shop.shop_domain)
    tier = catalog.get_tier(tier_id)

    data = tier.to_dict()
    data['member_count'] = catalog.member_count(tier.id)
    return jsonify({'tier': data})


@tiers_bp.route('/<int:tier_id>', methods=['PUT'])
def update_tier(tier_id):
    """Update tier settings (not the level)."""
    shop = get_shop()
    data = request.json or {}
    if not data:
        return bad_request('No fields to update')

    tier = TierCatalog(shop.shop_domain).update_tier(tier_id, **data)
    return jsonify({'success': True, 'tier': tier.to_dict()})


@tiers_bp.route('/<int:tier_id>', methods=['DELETE'])
def delete_tier(tier_id):
    """
    Delete a tier.

    Query params:
        migrate_members: true to move active members to the nearest
            remaining tier first (otherwise a tier with members is rejected)
    """
    shop = get_shop()
    migrate_members = request.args.get('migrate_members', 'false').lower() == 'true'

    result = TierCatalog(shop.shop_domain).delete_tier(
        tier_id,
        migrate_members=migrate_members,
        triggered_by=get_current_user(),
    )
    return jsonify({'success': True, **result})


@tiers_bp.route('/reorder', methods=['POST'])
def reorder_tiers():
    """Re-sequence levels by minimum spend."""
    shop = get_shop()
    tiers = TierCatalog(shop.shop_domain).reorder_levels()
    return jsonify({'success': True, 'tiers': [t.to_dict() for t in tiers]})


@tiers_bp.route('/seed', methods=['POST'])
def seed_tiers():
    """Create the default Bronze/Silver/Gold/Platinum tiers for an empty shop."""
    shop = get_shop()
    created = TierCatalog(shop.shop_domain).seed_default_tiers()
    return jsonify({
        'success': True,
        'created': len(created),
        'tiers': [t.to_dict() for t in created]
    }), 201 if created else 200


# ==================== Tier Assignment ====================

@tiers_bp.route('/assign', methods=['POST'])
def assign_tier():
    """
    Assign a tier to a customer (staff action).

    Request body:
    {
        "customer_id": 123,
        "tier_id": 1,
        "reason": "VIP customer upgrade",
        "end_date": "2026-12-31T00:00:00",  # optional - null for no expiry
        "assignment_type": "manual"          # or "promotional"
    }
    """
    shop = get_shop()
    data = request.json or {}

    customer_id = data.get('customer_id')
    tier_id = data.get('tier_id')
    if not customer_id:
        return bad_request('customer_id is required', ErrorCode.MISSING_FIELD)
    if not tier_id:
        return bad_request('tier_id is required', ErrorCode.MISSING_FIELD)

    end_date = None
    if data.get('end_date'):
        try:
            end_date = datetime.fromisoformat(str(data['end_date']).replace('Z', ''))
        except ValueError:
            return bad_request('end_date must be an ISO datetime', ErrorCode.INVALID_FIELD)

    membership = TierEvaluator(shop.shop_domain).assign_manually(
        customer_id=int(customer_id),
        tier_id=int(tier_id),
        assigned_by=get_current_user(),
        reason=data.get('reason'),
        end_date=end_date,
        assignment_type=data.get('assignment_type', 'manual'),
    )
    return jsonify({'success': True, 'membership': membership.to_dict()})


@tiers_bp.route('/process-expirations', methods=['POST'])
def process_expirations():
    """Revert expired manual/promotional assignments now."""
    shop = get_shop()
    result = TierEvaluator(shop.shop_domain).process_expired_memberships()
    return jsonify({'success': True, **result})


@tiers_bp.route('/evaluate-all', methods=['POST'])
def evaluate_all():
    """Re-evaluate every customer in the shop."""
    shop = get_shop()
    batch_size = (request.get_json(silent=True) or {}).get('batch_size', 100)
    result = TierEvaluator(shop.shop_domain).evaluate_all(
        batch_size=int(batch_size),
        triggered_by=get_current_user(),
    )
    return jsonify({'success': True, **result})
