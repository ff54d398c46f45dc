"""
Tests for the Tier Evaluator.

Tests cover:
- Initial enrollment
- Automatic upgrades and downgrades with history
- Manual/promotional pinning, forced evaluation and expiry
- Batch evaluation and tier progress
- Spend summaries
"""
import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from rewardspro.extensions import db
from rewardspro.models import CashbackTransaction, CustomerMembership, TierChangeLog
from rewardspro.services.tier_catalog import TierCatalog
from rewardspro.services.tier_evaluator import TierEvaluator
from rewardspro.utils.exceptions import ValidationError


def _add_spend(customer, amount, days_ago=0, order_id=None):
    """Insert a transaction row directly so evaluation has spend to see."""
    transaction = CashbackTransaction(
        shop_domain=customer.shop_domain,
        customer_id=customer.id,
        order_id=order_id or f'spend-{customer.id}-{amount}-{days_ago}',
        order_amount=Decimal(str(amount)),
        eligible_amount=Decimal(str(amount)),
        cashback_amount=Decimal('0'),
        cashback_percent=Decimal('0'),
        ordered_at=datetime.utcnow() - timedelta(days=days_ago),
    )
    db.session.add(transaction)
    db.session.commit()
    return transaction


class TestInitialAssignment:
    """Tests for enrollment."""

    def test_new_customer_enrolled_in_floor(self, sample_shop, sample_customer):
        """First sighting places the customer in the floor tier."""
        evaluator = TierEvaluator(sample_shop.shop_domain)
        membership = evaluator.active_membership(sample_customer.id)

        assert membership.tier.name == 'Bronze'
        assert membership.assignment_type == 'automatic'

        log = TierChangeLog.query.filter_by(customer_id=sample_customer.id).one()
        assert log.change_type == 'initial_assignment'
        assert log.from_tier_name is None
        assert log.to_tier_name == 'Bronze'

    def test_assign_initial_tier_is_noop_when_enrolled(self, sample_shop, sample_customer):
        """A second enrollment returns the existing membership."""
        evaluator = TierEvaluator(sample_shop.shop_domain)
        existing = evaluator.active_membership(sample_customer.id)

        membership = evaluator.assign_initial_tier(sample_customer)

        assert membership.id == existing.id
        assert CustomerMembership.query.filter_by(customer_id=sample_customer.id).count() == 1


class TestAutomaticEvaluation:
    """Tests for upgrades and downgrades."""

    def test_no_change_below_threshold(self, sample_shop, sample_customer):
        """Spend under the next minimum changes nothing."""
        _add_spend(sample_customer, '499.99')

        result = TierEvaluator(sample_shop.shop_domain).evaluate(sample_customer.id)

        assert result.changed is False
        assert result.membership.tier.name == 'Bronze'
        assert result.qualifying_spend == Decimal('499.99')

    def test_upgrade_at_threshold(self, sample_shop, sample_customer):
        """Reaching exactly the minimum upgrades."""
        _add_spend(sample_customer, '500')

        result = TierEvaluator(sample_shop.shop_domain).evaluate(sample_customer.id, triggered_by='test')

        assert result.changed is True
        assert result.change_type == 'auto_upgrade'
        assert result.membership.tier.name == 'Silver'
        assert result.membership.previous_tier_id is not None

    def test_upgrade_skips_levels(self, sample_shop, sample_customer):
        """Enough spend goes straight to the highest qualifying tier."""
        _add_spend(sample_customer, '2000')

        result = TierEvaluator(sample_shop.shop_domain).evaluate(sample_customer.id)

        assert result.membership.tier.name == 'Gold'

    def test_exactly_one_active_membership(self, sample_shop, sample_customer):
        """Transitions close the old membership."""
        _add_spend(sample_customer, '600')
        TierEvaluator(sample_shop.shop_domain).evaluate(sample_customer.id)

        memberships = CustomerMembership.query.filter_by(customer_id=sample_customer.id).all()
        active = [m for m in memberships if m.is_active]
        closed = [m for m in memberships if not m.is_active]

        assert len(active) == 1
        assert len(closed) == 1
        assert closed[0].end_date is not None

    def test_downgrade_when_spend_ages_out(self, sample_shop, sample_customer):
        """Annual windows drop orders older than 365 days; downgrades are immediate."""
        evaluator = TierEvaluator(sample_shop.shop_domain)
        spend = _add_spend(sample_customer, '800', days_ago=10)
        evaluator.evaluate(sample_customer.id)
        assert evaluator.active_membership(sample_customer.id).tier.name == 'Silver'

        spend.ordered_at = datetime.utcnow() - timedelta(days=400)
        db.session.commit()

        result = evaluator.evaluate(sample_customer.id)

        assert result.change_type == 'auto_downgrade'
        assert result.membership.tier.name == 'Bronze'

    def test_lifetime_window_counts_everything(self, sample_shop, sample_tiers, sample_customer):
        """A lifetime tier counts orders of any age."""
        TierCatalog(sample_shop.shop_domain).update_tier(sample_tiers['bronze'].id, evaluation_period='lifetime')
        _add_spend(sample_customer, '900', days_ago=900)
        customer = sample_customer

        spend = TierEvaluator(sample_shop.shop_domain).qualifying_spend(customer, 'lifetime')
        annual = TierEvaluator(sample_shop.shop_domain).qualifying_spend(customer, 'annual')

        assert spend == Decimal('900')
        assert annual == Decimal('0')

    def test_history_newest_first(self, sample_shop, sample_customer):
        """History returns every change, most recent first."""
        evaluator = TierEvaluator(sample_shop.shop_domain)
        _add_spend(sample_customer, '600')
        evaluator.evaluate(sample_customer.id)

        history = evaluator.history(sample_customer.id)

        assert [h.change_type for h in history] == ['auto_upgrade', 'initial_assignment']
        assert history[0].extra_data['qualifying_spend'] == '600.000000'


class TestManualAssignment:
    """Tests for pinned assignments."""

    def test_manual_assignment_pins_tier(self, sample_shop, sample_tiers, sample_customer):
        """Automatic evaluation leaves a manual assignment alone."""
        evaluator = TierEvaluator(sample_shop.shop_domain)
        evaluator.assign_manually(sample_customer.id, sample_tiers['gold'].id, assigned_by='staff@test-shop.com')

        result = evaluator.evaluate(sample_customer.id)

        assert result.changed is False
        assert result.membership.tier.name == 'Gold'
        assert result.membership.assignment_type == 'manual'

    def test_forced_evaluation_overrides_pin(self, sample_shop, sample_tiers, sample_customer):
        """force=True evaluates a pinned customer on spend."""
        evaluator = TierEvaluator(sample_shop.shop_domain)
        evaluator.assign_manually(sample_customer.id, sample_tiers['gold'].id, assigned_by='staff')

        result = evaluator.evaluate(sample_customer.id, force=True)

        assert result.change_type == 'auto_downgrade'
        assert result.membership.tier.name == 'Bronze'
        assert result.membership.assignment_type == 'automatic'

    def test_expired_promotion_reverts(self, sample_shop, sample_tiers, sample_customer):
        """An expired promotional assignment reverts to the spend-based tier."""
        evaluator = TierEvaluator(sample_shop.shop_domain)
        membership = evaluator.assign_manually(
            sample_customer.id, sample_tiers['gold'].id, assigned_by='promo',
            end_date=datetime.utcnow() + timedelta(days=1), assignment_type='promotional'
        )
        membership.end_date = datetime.utcnow() - timedelta(minutes=1)
        db.session.commit()
        _add_spend(sample_customer, '600')

        result = evaluator.process_expired_memberships()

        assert result == {'processed': 1, 'reverted': 1, 'errors': 0}
        current = evaluator.active_membership(sample_customer.id)
        assert current.tier.name == 'Silver'
        assert current.assignment_type == 'automatic'

    def test_past_end_date_rejected(self, sample_shop, sample_tiers, sample_customer):
        """Assignments must end in the future."""
        with pytest.raises(ValidationError):
            TierEvaluator(sample_shop.shop_domain).assign_manually(
                sample_customer.id, sample_tiers['gold'].id, assigned_by='staff',
                end_date=datetime.utcnow() - timedelta(days=1)
            )

    def test_automatic_type_rejected(self, sample_shop, sample_tiers, sample_customer):
        """Staff cannot create an 'automatic' assignment by hand."""
        with pytest.raises(ValidationError):
            TierEvaluator(sample_shop.shop_domain).assign_manually(
                sample_customer.id, sample_tiers['gold'].id, assigned_by='staff',
                assignment_type='automatic'
            )


class TestBatchAndProgress:
    """Tests for evaluate_all and tier_progress."""

    def test_evaluate_all_counts(self, sample_shop, sample_tiers):
        """Every customer is evaluated and outcomes are tallied."""
        from rewardspro.services.customer_service import CustomerService
        service = CustomerService(sample_shop.shop_domain)
        upgraded, _ = service.get_or_create('3001')
        service.get_or_create('3002')
        _add_spend(upgraded, '1600')

        result = TierEvaluator(sample_shop.shop_domain).evaluate_all(batch_size=1)

        assert result['processed'] == 2
        assert result['upgraded'] == 1
        assert result['unchanged'] == 1
        assert result['errors'] == []

    def test_tier_progress(self, sample_shop, sample_customer):
        """Progress reports the next tier and what is left to spend."""
        _add_spend(sample_customer, '125')

        progress = TierEvaluator(sample_shop.shop_domain).tier_progress(sample_customer)

        assert progress['current_tier'] == 'Bronze'
        assert progress['next_tier']['name'] == 'Silver'
        assert progress['remaining'] == 375.0
        assert progress['progress_percent'] == 25.0
        assert progress['is_top_tier'] is False

    def test_top_tier_progress(self, sample_shop, sample_customer):
        """The top tier has nothing further to reach."""
        _add_spend(sample_customer, '5000')
        evaluator = TierEvaluator(sample_shop.shop_domain)
        evaluator.evaluate(sample_customer.id)

        progress = evaluator.tier_progress(sample_customer)

        assert progress['current_tier'] == 'Gold'
        assert progress['is_top_tier'] is True
        assert progress['next_tier'] is None


class TestSpendSummary:
    """Tests for TierEvaluator.spend_summary."""

    def test_windows_and_averages(self, sample_shop, sample_customer):
        """Each window counts only the orders inside it."""
        _add_spend(sample_customer, 100, days_ago=10)
        _add_spend(sample_customer, 200, days_ago=60)
        _add_spend(sample_customer, 300, days_ago=200)
        _add_spend(sample_customer, 400, days_ago=500)

        summary = TierEvaluator(sample_shop.shop_domain).spend_summary(sample_customer)

        assert summary['lifetime_spend'] == 1000.0
        assert summary['yearly_spend'] == 600.0
        assert summary['quarterly_spend'] == 300.0
        assert summary['monthly_spend'] == 100.0
        assert summary['order_count'] == 4
        assert summary['average_order_value'] == 250.0
        assert summary['days_since_last_order'] == 10

    def test_no_orders(self, sample_shop, sample_customer):
        """A customer without orders has zeroes and no last order."""
        summary = TierEvaluator(sample_shop.shop_domain).spend_summary(sample_customer)

        assert summary['lifetime_spend'] == 0.0
        assert summary['order_count'] == 0
        assert summary['average_order_value'] == 0.0
        assert summary['last_order_at'] is None
