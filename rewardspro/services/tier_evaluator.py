"""
Tier Evaluator.

Moves customers between tiers based on qualifying spend and keeps an
auditable history of every move.

Per customer the state is either "no membership" or "active membership at
tier T". Each transition closes the current CustomerMembership, opens the
next one and appends a TierChangeLog row in a single commit, under the
customer's lock.

Manual and promotional assignments are left alone by automatic evaluation
until their end_date passes (expiration_revert) or a forced evaluation is
requested. Downgrades apply immediately; there is no grace period.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func

from ..extensions import db
from ..models.customer import Customer
from ..models.membership import (
    AssignmentType,
    CustomerMembership,
    TierChangeLog,
    TierChangeType,
    PINNED_ASSIGNMENT_TYPES,
)
from ..models.tier import Tier, EvaluationPeriod
from ..models.transaction import CashbackTransaction
from ..utils.exceptions import CustomerNotFoundError, ValidationError
from ..utils.locks import customer_lock
from ..utils.money import ZERO, to_decimal, to_display
from .tier_catalog import TierCatalog

logger = logging.getLogger(__name__)

ANNUAL_WINDOW = timedelta(days=365)

SPEND_WINDOWS = (
    ('yearly', ANNUAL_WINDOW),
    ('quarterly', timedelta(days=90)),
    ('monthly', timedelta(days=30)),
)


@dataclass
class EvaluationResult:
    """Outcome of evaluating one customer."""
    membership: CustomerMembership
    changed: bool = False
    change_type: Optional[str] = None
    qualifying_spend: Optional[Decimal] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'changed': self.changed,
            'change_type': self.change_type,
            'qualifying_spend': to_display(self.qualifying_spend) if self.qualifying_spend is not None else None,
            'membership': self.membership.to_dict() if self.membership else None,
        }


class TierEvaluator:
    """
    Tier transitions for one shop.

    Usage:
        evaluator = TierEvaluator(shop_domain)
        result = evaluator.evaluate(customer.id)
    """

    def __init__(self, shop_domain: str, catalog: Optional[TierCatalog] = None):
        self.shop_domain = shop_domain
        self.catalog = catalog or TierCatalog(shop_domain)

    # ==================== Spend ====================

    def qualifying_spend(self, customer: Customer, evaluation_period: str, as_of: datetime = None) -> Decimal:
        """
        Sum of order amounts over the evaluation window.

        annual counts orders placed in the 365 days before as_of; lifetime
        counts every order.
        """
        query = db.session.query(
            func.coalesce(func.sum(CashbackTransaction.order_amount), 0)
        ).filter(CashbackTransaction.customer_id == customer.id)

        if evaluation_period != EvaluationPeriod.LIFETIME.value:
            as_of = as_of or datetime.utcnow()
            query = query.filter(CashbackTransaction.ordered_at >= as_of - ANNUAL_WINDOW)

        return to_decimal(query.scalar())

    def spend_summary(self, customer: Customer, as_of: datetime = None) -> Dict[str, Any]:
        """
        Spending analytics for one customer.

        Windows end at as_of: yearly is 365 days, quarterly 90 and monthly
        30. Average order value is over lifetime spend.
        """
        as_of = as_of or datetime.utcnow()
        rows = db.session.query(
            CashbackTransaction.order_amount, CashbackTransaction.ordered_at
        ).filter(
            CashbackTransaction.customer_id == customer.id,
            CashbackTransaction.ordered_at <= as_of,
        ).all()

        lifetime = sum((to_decimal(amount) for amount, _ in rows), ZERO)
        windows = {}
        for key, window in SPEND_WINDOWS:
            since = as_of - window
            windows[key] = sum((to_decimal(amount) for amount, ordered_at in rows if ordered_at >= since), ZERO)

        order_count = len(rows)
        last_order_at = max((ordered_at for _, ordered_at in rows), default=None)

        return {
            'lifetime_spend': to_display(lifetime),
            'yearly_spend': to_display(windows['yearly']),
            'quarterly_spend': to_display(windows['quarterly']),
            'monthly_spend': to_display(windows['monthly']),
            'order_count': order_count,
            'average_order_value': to_display(lifetime / order_count) if order_count else 0.0,
            'last_order_at': last_order_at.isoformat() if last_order_at else None,
            'days_since_last_order': (as_of - last_order_at).days if last_order_at else None,
        }

    # ==================== Transitions ====================

    def assign_initial_tier(self, customer: Customer, triggered_by: str = 'system') -> CustomerMembership:
        """
        Enroll a customer with no active membership.

        Starts at the floor tier, or higher when spend in the floor tier's
        window already qualifies. No-op if a membership is already active.
        """
        with customer_lock(customer.id):
            self._lock_customer(customer.id)
            current = self.active_membership(customer.id)
            if current:
                return current

            floor = self.catalog.floor_tier()
            spend = self.qualifying_spend(customer, floor.evaluation_period)
            target = self.catalog.find_tier_for_spend(spend)

            return self._transition(
                customer,
                current=None,
                target=target,
                change_type=TierChangeType.INITIAL_ASSIGNMENT,
                triggered_by=triggered_by,
                reason='Initial tier assignment',
                extra_data=self._spend_metadata(spend, floor.evaluation_period),
            )

    def evaluate(self, customer_id: int, force: bool = False, triggered_by: str = 'system') -> EvaluationResult:
        """
        Re-evaluate one customer's tier.

        Args:
            customer_id: Customer to evaluate
            force: Re-evaluate manual/promotional assignments that have not expired
            triggered_by: Staff email, 'system', or a job name

        Returns:
            EvaluationResult with the (possibly new) active membership
        """
        customer = self._get_customer(customer_id)

        with customer_lock(customer.id):
            self._lock_customer(customer.id)
            current = self.active_membership(customer.id)

            if not current:
                membership = self.assign_initial_tier(customer, triggered_by=triggered_by)
                return EvaluationResult(membership, changed=True,
                                        change_type=TierChangeType.INITIAL_ASSIGNMENT.value)

            now = datetime.utcnow()
            period = self._period_for(current)

            if current.assignment_type in PINNED_ASSIGNMENT_TYPES:
                if current.is_expired(now):
                    spend = self.qualifying_spend(customer, period, as_of=now)
                    target = self.catalog.find_tier_for_spend(spend)
                    membership = self._transition(
                        customer,
                        current=current,
                        target=target,
                        change_type=TierChangeType.EXPIRATION_REVERT,
                        triggered_by=triggered_by,
                        reason=f'{current.assignment_type.capitalize()} assignment expired',
                        extra_data=self._spend_metadata(spend, period),
                    )
                    return EvaluationResult(membership, changed=True,
                                            change_type=TierChangeType.EXPIRATION_REVERT.value,
                                            qualifying_spend=spend)
                if not force:
                    return EvaluationResult(current)

            spend = self.qualifying_spend(customer, period, as_of=now)
            target = self.catalog.find_tier_for_spend(spend)

            if target.id == current.tier_id:
                return EvaluationResult(current, qualifying_spend=spend)

            current_level = current.tier.level if current.tier else 0
            if target.level > current_level:
                change_type = TierChangeType.AUTO_UPGRADE
            else:
                change_type = TierChangeType.AUTO_DOWNGRADE

            membership = self._transition(
                customer,
                current=current,
                target=target,
                change_type=change_type,
                triggered_by=triggered_by,
                reason=f'Qualifying spend {spend:.2f} ({period})',
                extra_data=self._spend_metadata(spend, period),
            )
            return EvaluationResult(membership, changed=True, change_type=change_type.value,
                                    qualifying_spend=spend)

    def assign_manually(
        self,
        customer_id: int,
        tier_id: int,
        assigned_by: str,
        reason: Optional[str] = None,
        end_date: Optional[datetime] = None,
        assignment_type: str = AssignmentType.MANUAL.value,
    ) -> CustomerMembership:
        """
        Staff or promotional tier assignment.

        The assignment is pinned: automatic evaluation skips it until
        end_date passes. Without end_date it holds until changed by staff
        or a forced evaluation.
        """
        if assignment_type not in PINNED_ASSIGNMENT_TYPES:
            raise ValidationError(
                f"Assignment type must be one of: {', '.join(PINNED_ASSIGNMENT_TYPES)}",
                'assignment_type'
            )
        if end_date and end_date <= datetime.utcnow():
            raise ValidationError('End date must be in the future', 'end_date')

        customer = self._get_customer(customer_id)
        target = self.catalog.get_tier(tier_id)
        if not target.is_active:
            raise ValidationError(f"Tier '{target.name}' is not active", 'tier_id')

        with customer_lock(customer.id):
            self._lock_customer(customer.id)
            current = self.active_membership(customer.id)

            return self._transition(
                customer,
                current=current,
                target=target,
                change_type=TierChangeType.MANUAL_OVERRIDE,
                triggered_by=assigned_by,
                reason=reason or f'{assignment_type.capitalize()} assignment to {target.name}',
                assignment_type=assignment_type,
                end_date=end_date,
                extra_data={'end_date': end_date.isoformat() if end_date else None},
            )

    def migrate_off_tier(self, tier_id: int, triggered_by: str = 'system') -> Dict[str, Any]:
        """
        Move every active member of a tier that is about to be deleted to
        the highest remaining tier at or below their spend.

        Nothing is committed here. The caller owns the transaction so the
        moves and the tier deletion land together or not at all; any
        failure propagates.
        """
        memberships = CustomerMembership.query.filter_by(
            tier_id=tier_id, is_active=True
        ).all()
        customer_ids = [m.customer_id for m in memberships]

        results = {'migrated': 0}
        for customer_id in customer_ids:
            with customer_lock(customer_id):
                customer = self._lock_customer(customer_id)
                current = self.active_membership(customer_id)
                if not current or current.tier_id != tier_id:
                    continue

                period = self._period_for(current)
                spend = self.qualifying_spend(customer, period)
                target = self.catalog.find_tier_for_spend(spend, exclude_ids=[tier_id])

                self._transition(
                    customer,
                    current=current,
                    target=target,
                    change_type=TierChangeType.TIER_DELETED_MIGRATION,
                    triggered_by=triggered_by,
                    reason=f"Tier '{current.tier.name}' deleted",
                    extra_data=self._spend_metadata(spend, period),
                    commit=False,
                )
                results['migrated'] += 1

        return results

    # ==================== Batch ====================

    def process_expired_memberships(self, now: datetime = None) -> Dict[str, Any]:
        """
        Revert expired manual/promotional assignments to automatic
        evaluation.

        Should be run periodically (the scheduler runs it daily).
        """
        now = now or datetime.utcnow()

        expired = CustomerMembership.query.join(
            Customer, Customer.id == CustomerMembership.customer_id
        ).filter(
            Customer.shop_domain == self.shop_domain,
            CustomerMembership.is_active.is_(True),
            CustomerMembership.assignment_type.in_(PINNED_ASSIGNMENT_TYPES),
            CustomerMembership.end_date.isnot(None),
            CustomerMembership.end_date <= now,
        ).all()
        customer_ids = [m.customer_id for m in expired]

        results = {
            'processed': 0,
            'reverted': 0,
            'errors': 0
        }

        for customer_id in customer_ids:
            try:
                results['processed'] += 1
                result = self.evaluate(customer_id, triggered_by='system:expiration')
                if result.change_type == TierChangeType.EXPIRATION_REVERT.value:
                    results['reverted'] += 1
            except Exception as e:
                db.session.rollback()
                logger.error(f'Error processing expiration for customer {customer_id}: {e}')
                results['errors'] += 1

        if results['processed']:
            logger.info(f"Expired memberships for {self.shop_domain}: {results}")
        return results

    def evaluate_all(self, batch_size: int = 100, triggered_by: str = 'system:batch') -> Dict[str, Any]:
        """
        Re-evaluate every customer in the shop. Failures are collected, not
        raised.
        """
        results = {
            'processed': 0,
            'upgraded': 0,
            'downgraded': 0,
            'enrolled': 0,
            'reverted': 0,
            'unchanged': 0,
            'errors': []
        }

        last_id = 0
        while True:
            ids = [row[0] for row in db.session.query(Customer.id).filter(
                Customer.shop_domain == self.shop_domain,
                Customer.id > last_id,
            ).order_by(Customer.id.asc()).limit(batch_size).all()]
            if not ids:
                break

            for customer_id in ids:
                results['processed'] += 1
                try:
                    result = self.evaluate(customer_id, triggered_by=triggered_by)
                except Exception as e:
                    db.session.rollback()
                    logger.error(f'Error evaluating customer {customer_id}: {e}')
                    results['errors'].append({'customer_id': customer_id, 'error': str(e)})
                    continue

                if result.change_type == TierChangeType.AUTO_UPGRADE.value:
                    results['upgraded'] += 1
                elif result.change_type == TierChangeType.AUTO_DOWNGRADE.value:
                    results['downgraded'] += 1
                elif result.change_type == TierChangeType.INITIAL_ASSIGNMENT.value:
                    results['enrolled'] += 1
                elif result.change_type == TierChangeType.EXPIRATION_REVERT.value:
                    results['reverted'] += 1
                else:
                    results['unchanged'] += 1

            last_id = ids[-1]

        logger.info(
            f"Evaluated {results['processed']} customers for {self.shop_domain}: "
            f"{results['upgraded']} up, {results['downgraded']} down, {len(results['errors'])} errors"
        )
        return results

    # ==================== Reads ====================

    def active_membership(self, customer_id: int) -> Optional[CustomerMembership]:
        return CustomerMembership.query.filter_by(
            customer_id=customer_id, is_active=True
        ).order_by(CustomerMembership.start_date.desc(), CustomerMembership.id.desc()).first()

    def tier_progress(self, customer: Customer) -> Dict[str, Any]:
        """Progress towards the next tier up, measured in that tier's window."""
        current = self.active_membership(customer.id)
        current_tier = current.tier if current else None
        current_level = current_tier.level if current_tier else 0

        next_tier = next(
            (t for t in self.catalog.list_tiers() if t.level > current_level and t.min_spend is not None),
            None
        )

        progress = {
            'current_tier': current_tier.name if current_tier else None,
            'next_tier': None,
            'is_top_tier': next_tier is None,
        }
        if next_tier is None:
            return progress

        spend = self.qualifying_spend(customer, next_tier.evaluation_period)
        required = to_decimal(next_tier.min_spend)
        remaining = max(required - spend, ZERO)
        percent = 100.0 if required <= ZERO else min(100.0, float(spend / required * 100))

        progress['next_tier'] = {
            'id': next_tier.id,
            'name': next_tier.name,
            'min_spend': to_display(required),
            'cashback_percent': float(next_tier.cashback_percent),
            'evaluation_period': next_tier.evaluation_period,
        }
        progress['current_spend'] = to_display(spend)
        progress['remaining'] = to_display(remaining)
        progress['progress_percent'] = round(percent, 1)
        return progress

    def history(self, customer_id: int, limit: int = 20, offset: int = 0) -> List[TierChangeLog]:
        """Tier change log, newest first."""
        return TierChangeLog.query.filter_by(
            customer_id=customer_id
        ).order_by(
            TierChangeLog.created_at.desc(), TierChangeLog.id.desc()
        ).offset(offset).limit(limit).all()

    # ==================== Helpers ====================

    def _transition(
        self,
        customer: Customer,
        current: Optional[CustomerMembership],
        target: Tier,
        change_type: TierChangeType,
        triggered_by: str,
        reason: str,
        assignment_type: str = AssignmentType.AUTOMATIC.value,
        end_date: Optional[datetime] = None,
        extra_data: Optional[Dict[str, Any]] = None,
        commit: bool = True,
    ) -> CustomerMembership:
        """Close current, open target, log the change. One commit, or a flush when commit=False."""
        now = datetime.utcnow()
        from_tier = current.tier if current else None

        if current:
            current.is_active = False
            current.end_date = now
            db.session.flush()

        membership = CustomerMembership(
            customer_id=customer.id,
            tier_id=target.id,
            previous_tier_id=current.tier_id if current else None,
            start_date=now,
            end_date=end_date,
            is_active=True,
            assignment_type=assignment_type,
            assigned_by=triggered_by,
            reason=reason,
        )
        db.session.add(membership)

        db.session.add(TierChangeLog(
            customer_id=customer.id,
            shop_domain=customer.shop_domain,
            from_tier_id=from_tier.id if from_tier else None,
            to_tier_id=target.id,
            from_tier_name=from_tier.name if from_tier else None,
            to_tier_name=target.name,
            change_type=change_type.value,
            reason=reason,
            triggered_by=triggered_by,
            extra_data=extra_data or {},
            created_at=now,
        ))

        if commit:
            db.session.commit()
        else:
            db.session.flush()

        logger.info(
            f"Customer {customer.id}: {change_type.value} "
            f"{from_tier.name if from_tier else '-'} -> {target.name}"
        )
        return membership

    def _period_for(self, membership: CustomerMembership) -> str:
        if membership.tier:
            return membership.tier.evaluation_period
        return self.catalog.floor_tier().evaluation_period

    def _spend_metadata(self, spend: Decimal, period: str) -> Dict[str, Any]:
        return {'qualifying_spend': str(spend), 'evaluation_period': period}

    def _get_customer(self, customer_id: int) -> Customer:
        customer = Customer.query.filter_by(id=customer_id, shop_domain=self.shop_domain).first()
        if not customer:
            raise CustomerNotFoundError(customer_id)
        return customer

    def _lock_customer(self, customer_id: int) -> Customer:
        customer = Customer.query.filter_by(id=customer_id).with_for_update().first()
        if not customer:
            raise CustomerNotFoundError(customer_id)
        return customer
