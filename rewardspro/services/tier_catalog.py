"""
Tier Catalog Service.

Owns a shop's ordered set of cashback tiers.

Catalog invariants:
- Levels are 1..n per shop, contiguous and without duplicates
- At most one floor tier (min_spend NULL) per shop
- A tier with active members is never deleted without moving them first

Every mutation runs under the shop's catalog lock and validates before it
writes anything.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func

from ..extensions import db
from ..models.customer import Customer
from ..models.tier import Tier, EvaluationPeriod
from ..models.membership import CustomerMembership
from ..models.transaction import CashbackTransaction
from ..utils.exceptions import (
    CatalogConsistencyError,
    TierNotFoundError,
    ValidationError,
)
from ..utils.locks import shop_lock
from ..utils.money import ZERO, to_decimal, to_display

logger = logging.getLogger(__name__)


# Default tiers for a fresh shop (name, min_spend, cashback_percent)
DEFAULT_TIERS = [
    ('Bronze', None, Decimal('1')),
    ('Silver', Decimal('500'), Decimal('2')),
    ('Gold', Decimal('1500'), Decimal('3')),
    ('Platinum', Decimal('5000'), Decimal('5')),
]

UPDATABLE_FIELDS = ('name', 'cashback_percent', 'min_spend', 'evaluation_period', 'benefits', 'is_active')


class TierCatalog:
    """
    Tier lookup and administration for one shop.

    Usage:
        catalog = TierCatalog('shop.myshopify.com')
        tier = catalog.find_tier_for_spend(Decimal('750'))
    """

    def __init__(self, shop_domain: str):
        self.shop_domain = shop_domain

    # ==================== Lookup ====================

    def list_tiers(self, include_inactive: bool = False) -> List[Tier]:
        """Tiers ordered by level ascending."""
        query = Tier.query.filter_by(shop_domain=self.shop_domain)
        if not include_inactive:
            query = query.filter(Tier.is_active.is_(True))
        return query.order_by(Tier.level.asc()).all()

    def get_tier(self, tier_id: int) -> Tier:
        tier = Tier.query.filter_by(id=tier_id, shop_domain=self.shop_domain).first()
        if not tier:
            raise TierNotFoundError(tier_id)
        return tier

    def floor_tier(self, exclude_ids: Optional[Iterable[int]] = None) -> Tier:
        """
        The tier every customer qualifies for: the no-minimum tier, or the
        lowest-level active tier when the shop has none.
        """
        tiers = self._active_tiers(exclude_ids)
        if not tiers:
            raise CatalogConsistencyError(f'Shop {self.shop_domain} has no active tiers')

        for tier in tiers:
            if tier.min_spend is None:
                return tier
        return tiers[0]

    def find_tier_for_spend(self, spend, exclude_ids: Optional[Iterable[int]] = None) -> Tier:
        """
        Highest active tier whose minimum is at or below spend.

        The floor always matches. Equal minimums resolve to the higher level.
        """
        spend = to_decimal(spend)
        tiers = self._active_tiers(exclude_ids)
        if not tiers:
            raise CatalogConsistencyError(f'Shop {self.shop_domain} has no active tiers')

        best = None
        best_key = None
        for tier in tiers:
            if tier.min_spend is not None and to_decimal(tier.min_spend) > spend:
                continue
            threshold = to_decimal(tier.min_spend) if tier.min_spend is not None else Decimal('-1')
            key = (threshold, tier.level)
            if best_key is None or key > best_key:
                best, best_key = tier, key

        return best or self.floor_tier(exclude_ids)

    def member_count(self, tier_id: int) -> int:
        """Number of active memberships on a tier."""
        return CustomerMembership.query.filter_by(tier_id=tier_id, is_active=True).count()

    def member_counts(self) -> Dict[int, int]:
        rows = db.session.query(
            CustomerMembership.tier_id, func.count(CustomerMembership.id)
        ).join(
            Tier, Tier.id == CustomerMembership.tier_id
        ).filter(
            Tier.shop_domain == self.shop_domain,
            CustomerMembership.is_active.is_(True),
        ).group_by(CustomerMembership.tier_id).all()
        return {tier_id: count for tier_id, count in rows}

    def tier_distribution(self) -> List[Dict[str, Any]]:
        """
        Active members per tier with their share of the shop's customers and
        average lifetime spend, lowest level first.
        """
        total_customers = Customer.query.filter_by(shop_domain=self.shop_domain).count()
        counts = self.member_counts()

        spend_rows = db.session.query(
            CustomerMembership.tier_id, func.sum(CashbackTransaction.order_amount)
        ).join(
            CashbackTransaction, CashbackTransaction.customer_id == CustomerMembership.customer_id
        ).join(
            Tier, Tier.id == CustomerMembership.tier_id
        ).filter(
            Tier.shop_domain == self.shop_domain,
            CustomerMembership.is_active.is_(True),
        ).group_by(CustomerMembership.tier_id).all()
        spend = {tier_id: to_decimal(total or ZERO) for tier_id, total in spend_rows}

        distribution = []
        for tier in self.list_tiers(include_inactive=True):
            members = counts.get(tier.id, 0)
            distribution.append({
                'tier_id': tier.id,
                'name': tier.name,
                'level': tier.level,
                'is_active': tier.is_active,
                'member_count': members,
                'percent_of_customers': round(members * 100.0 / total_customers, 1) if total_customers else 0.0,
                'average_lifetime_spend': to_display(spend.get(tier.id, ZERO) / members) if members else 0.0,
            })
        return distribution

    # ==================== Mutations ====================

    def create_tier(
        self,
        name: str,
        cashback_percent,
        min_spend=None,
        evaluation_period: str = EvaluationPeriod.ANNUAL.value,
        benefits: Optional[Dict[str, Any]] = None,
        is_active: bool = True,
    ) -> Tier:
        """
        Add a tier at the top of the catalog (level = max + 1).

        Raises:
            ValidationError: Bad name, rate, minimum or period
            CatalogConsistencyError: Duplicate name or second floor tier
        """
        with shop_lock(self.shop_domain):
            tiers = self._lock_tiers()

            name = self._validate_name(name, tiers)
            cashback_percent = self._validate_percent(cashback_percent)
            min_spend = self._validate_min_spend(min_spend, tiers)
            evaluation_period = self._validate_period(evaluation_period)

            next_level = max((t.level for t in tiers), default=0) + 1
            tier = Tier(
                shop_domain=self.shop_domain,
                name=name,
                level=next_level,
                min_spend=min_spend,
                cashback_percent=cashback_percent,
                evaluation_period=evaluation_period,
                benefits=benefits or {},
                is_active=is_active,
            )
            db.session.add(tier)
            db.session.commit()

        logger.info(f"Created tier {tier.name} (level {tier.level}) for {self.shop_domain}")
        return tier

    def update_tier(self, tier_id: int, **fields) -> Tier:
        """
        Update tier settings. Levels only change through reorder_levels and
        deletion.
        """
        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update field(s): {', '.join(sorted(unknown))}", sorted(unknown)[0])

        with shop_lock(self.shop_domain):
            tiers = self._lock_tiers()
            tier = next((t for t in tiers if t.id == tier_id), None)
            if not tier:
                raise TierNotFoundError(tier_id)
            others = [t for t in tiers if t.id != tier_id]

            changes = {}
            if 'name' in fields:
                changes['name'] = self._validate_name(fields['name'], others)
            if 'cashback_percent' in fields:
                changes['cashback_percent'] = self._validate_percent(fields['cashback_percent'])
            if 'min_spend' in fields:
                changes['min_spend'] = self._validate_min_spend(fields['min_spend'], others)
            if 'evaluation_period' in fields:
                changes['evaluation_period'] = self._validate_period(fields['evaluation_period'])
            if 'benefits' in fields:
                changes['benefits'] = fields['benefits'] or {}
            if 'is_active' in fields:
                changes['is_active'] = bool(fields['is_active'])
                if not changes['is_active'] and not any(t.is_active for t in others):
                    raise CatalogConsistencyError('Cannot deactivate the only active tier')

            for key, value in changes.items():
                setattr(tier, key, value)
            db.session.commit()

        logger.info(f"Updated tier {tier.id} for {self.shop_domain}: {sorted(changes)}")
        return tier

    def reorder_levels(self) -> List[Tier]:
        """
        Re-sequence levels 1..n by (floor first, min_spend, current level).
        """
        with shop_lock(self.shop_domain):
            tiers = self._lock_tiers()
            ordered = sorted(
                tiers,
                key=lambda t: (
                    0 if t.min_spend is None else 1,
                    to_decimal(t.min_spend) if t.min_spend is not None else ZERO,
                    t.level,
                )
            )

            # Park every tier on a negative level first so the unique
            # (shop_domain, level) constraint holds at every flush
            for index, tier in enumerate(ordered, start=1):
                tier.level = -index
            db.session.flush()

            for index, tier in enumerate(ordered, start=1):
                tier.level = index
            db.session.commit()

        logger.info(f"Reordered {len(ordered)} tiers for {self.shop_domain}")
        return ordered

    def delete_tier(
        self,
        tier_id: int,
        migrate_members: bool = False,
        triggered_by: str = 'system',
    ) -> Dict[str, Any]:
        """
        Delete a tier and close the gap in levels above it.

        Args:
            tier_id: Tier to delete
            migrate_members: Move active members to the nearest remaining
                tier at or below their spend first
            triggered_by: Staff email or 'system'

        Raises:
            CatalogConsistencyError: Tier still has members and
                migrate_members is False, or no tier would remain for them
        """
        from .tier_evaluator import TierEvaluator

        with shop_lock(self.shop_domain):
            tiers = self._lock_tiers()
            tier = next((t for t in tiers if t.id == tier_id), None)
            if not tier:
                raise TierNotFoundError(tier_id)

            members = self.member_count(tier_id)
            if members and not migrate_members:
                raise CatalogConsistencyError(
                    f"Tier '{tier.name}' has {members} active member(s); "
                    f"move them first or delete with migrate_members"
                )
            if members and not any(t.is_active for t in tiers if t.id != tier_id):
                raise CatalogConsistencyError(
                    f"Tier '{tier.name}' is the last active tier and still has members"
                )

            deleted_level = tier.level
            deleted_name = tier.name
            remaining = [t for t in tiers if t.id != tier_id]

            # Member moves, the delete and level compaction are one unit.
            # History rows keep the deleted tier's id and name as written.
            try:
                migration = {'migrated': 0}
                if members:
                    migration = TierEvaluator(self.shop_domain, catalog=self).migrate_off_tier(
                        tier_id, triggered_by=triggered_by
                    )

                db.session.delete(tier)
                db.session.flush()

                # Shift down one at a time, lowest first, so no two tiers ever
                # share a level
                above = sorted((t for t in remaining if t.level > deleted_level), key=lambda t: t.level)
                for other in above:
                    other.level -= 1
                    db.session.flush()

                db.session.commit()
            except Exception as e:
                db.session.rollback()
                logger.error(f"Deleting tier {deleted_name} for {self.shop_domain} rolled back: {e}")
                raise CatalogConsistencyError(
                    f"Could not delete tier '{deleted_name}': {e}"
                ) from e

        logger.info(
            f"Deleted tier {deleted_name} (level {deleted_level}) for {self.shop_domain}; "
            f"moved {migration['migrated']} member(s), compacted {len(above)} tier(s)"
        )
        return {
            'deleted_tier_id': tier_id,
            'deleted_tier_name': deleted_name,
            'migrated_members': migration['migrated'],
            'levels_compacted': len(above),
        }

    def seed_default_tiers(self) -> List[Tier]:
        """Create Bronze/Silver/Gold/Platinum when the shop has no tiers."""
        with shop_lock(self.shop_domain):
            if Tier.query.filter_by(shop_domain=self.shop_domain).count():
                return []

            created = []
            for name, min_spend, percent in DEFAULT_TIERS:
                created.append(self.create_tier(name=name, cashback_percent=percent, min_spend=min_spend))

        logger.info(f"Seeded {len(created)} default tiers for {self.shop_domain}")
        return created

    # ==================== Helpers ====================

    def _active_tiers(self, exclude_ids: Optional[Iterable[int]] = None) -> List[Tier]:
        excluded = set(exclude_ids or ())
        return [t for t in self.list_tiers() if t.id not in excluded]

    def _lock_tiers(self) -> List[Tier]:
        return Tier.query.filter_by(
            shop_domain=self.shop_domain
        ).order_by(Tier.level.asc()).with_for_update().all()

    def _validate_name(self, name, others: List[Tier]) -> str:
        name = (name or '').strip()
        if not name:
            raise ValidationError('Tier name is required', 'name')
        if len(name) > 50:
            raise ValidationError('Tier name must be 50 characters or fewer', 'name')
        if any(t.name.lower() == name.lower() for t in others):
            raise CatalogConsistencyError(f"A tier named '{name}' already exists")
        return name

    def _validate_percent(self, value) -> Decimal:
        try:
            percent = Decimal(str(value))
        except (ArithmeticError, ValueError, TypeError):
            raise ValidationError('Cashback percent must be a number', 'cashback_percent')
        if not percent.is_finite() or percent < 0 or percent > 100:
            raise ValidationError('Cashback percent must be between 0 and 100', 'cashback_percent')
        return percent

    def _validate_min_spend(self, value, others: List[Tier]) -> Optional[Decimal]:
        if value is None or value == '':
            if any(t.min_spend is None for t in others):
                raise CatalogConsistencyError('Shop already has a floor tier (no minimum spend)')
            return None
        try:
            min_spend = Decimal(str(value))
        except (ArithmeticError, ValueError, TypeError):
            raise ValidationError('Minimum spend must be a number', 'min_spend')
        if not min_spend.is_finite() or min_spend < 0:
            raise ValidationError('Minimum spend must not be negative', 'min_spend')
        return to_decimal(min_spend)

    def _validate_period(self, value) -> str:
        allowed = [p.value for p in EvaluationPeriod]
        value = value.value if isinstance(value, EvaluationPeriod) else value
        if value not in allowed:
            raise ValidationError(f"Evaluation period must be one of: {', '.join(allowed)}", 'evaluation_period')
        return value
