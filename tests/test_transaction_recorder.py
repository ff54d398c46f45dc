"""
Tests for the Transaction Recorder.

Tests cover:
- Cashback at the customer's current tier rate
- Idempotent recording per order
- Tier changes applying to the next order only
- Validation of amounts
- Best-effort store credit issuance (mocked Shopify)
"""
import pytest
from decimal import Decimal
from unittest.mock import MagicMock

from rewardspro.models import CashbackTransaction, Customer, LedgerEntry
from rewardspro.services.shopify_client import IssuanceResult
from rewardspro.services.tier_catalog import TierCatalog
from rewardspro.services.tier_evaluator import TierEvaluator
from rewardspro.services.transaction_recorder import TransactionRecorder, parse_timestamp
from rewardspro.utils.exceptions import ShopifyError, ValidationError


class TestRecord:
    """Tests for TransactionRecorder.record."""

    def test_records_cashback_at_tier_rate(self, sample_shop, sample_tiers):
        """A Silver customer earns 2% of the eligible amount."""
        recorder = TransactionRecorder(sample_shop.shop_domain)
        recorder.record('100', '4001', Decimal('600'), Decimal('600'))

        result = recorder.record('A', '4001', Decimal('100'), Decimal('80'))

        assert result.created is True
        assert result.transaction.cashback_percent == Decimal('2')
        assert result.transaction.cashback_amount == Decimal('1.6')

    def test_same_order_recorded_once(self, sample_shop, sample_tiers):
        """Recording order A twice credits once."""
        recorder = TransactionRecorder(sample_shop.shop_domain)
        recorder.record('100', '4001', Decimal('600'), Decimal('600'))

        first = recorder.record('A', '4001', Decimal('100'), Decimal('80'))
        second = recorder.record('A', '4001', Decimal('100'), Decimal('80'))

        assert second.created is False
        assert second.transaction.id == first.transaction.id
        assert CashbackTransaction.query.filter_by(order_id='A').count() == 1
        assert LedgerEntry.query.filter_by(external_reference='A').count() == 1

        customer = Customer.query.get(first.transaction.customer_id)
        # 6.00 at Bronze 1% + 1.60 at Silver 2%
        assert customer.store_credit == Decimal('7.6')

    def test_upgrade_applies_to_next_order(self, sample_shop, sample_tiers):
        """The order that crosses a threshold earns at the old rate."""
        recorder = TransactionRecorder(sample_shop.shop_domain)

        crossing = recorder.record('1', '4002', Decimal('500'), Decimal('500'))
        following = recorder.record('2', '4002', Decimal('100'), Decimal('100'))

        assert crossing.transaction.cashback_percent == Decimal('1')
        assert crossing.transaction.cashback_amount == Decimal('5')
        assert crossing.evaluation.change_type == 'auto_upgrade'
        assert following.transaction.cashback_percent == Decimal('2')
        assert following.transaction.cashback_amount == Decimal('2')

    def test_ledger_entry_matches_transaction(self, sample_shop, sample_tiers):
        """The credit is an earned entry referencing the order."""
        result = TransactionRecorder(sample_shop.shop_domain).record(
            '77', 'gid://shopify/Customer/4003', Decimal('45.50'), Decimal('45.50'), email='a@b.com'
        )

        entry = LedgerEntry.query.filter_by(external_reference='77').one()
        assert entry.entry_type == 'earned'
        assert entry.source == 'cashback'
        assert entry.amount == Decimal('0.455')
        assert Customer.query.get(result.transaction.customer_id).external_customer_id == '4003'

    def test_zero_cashback_records_transaction_only(self, sample_shop, sample_tiers):
        """An all-gift-card order counts towards spend but earns nothing."""
        result = TransactionRecorder(sample_shop.shop_domain).record('88', '4004', Decimal('60'), Decimal('0'))

        assert result.created is True
        assert result.transaction.cashback_amount == Decimal('0')
        assert LedgerEntry.query.filter_by(external_reference='88').count() == 0

    def test_rate_override(self, sample_shop, sample_tiers):
        """An explicit rate wins over the tier rate."""
        result = TransactionRecorder(sample_shop.shop_domain).record(
            '89', '4005', Decimal('10'), Decimal('10'), rate_percent='10'
        )
        assert result.transaction.cashback_amount == Decimal('1')

    @pytest.mark.parametrize('order_amount,eligible', [('-1', '0'), ('10', '11'), ('10', '-1')])
    def test_invalid_amounts_rejected(self, sample_shop, sample_tiers, order_amount, eligible):
        """Eligible amount must sit between 0 and the order amount."""
        with pytest.raises(ValidationError):
            TransactionRecorder(sample_shop.shop_domain).record('90', '4006', order_amount, eligible)

        assert CashbackTransaction.query.count() == 0

    def test_default_rate_without_tiers(self, app, sample_shop):
        """With no tiers configured the default rate applies and the customer is not enrolled."""
        result = TransactionRecorder(sample_shop.shop_domain).record('91', '4007', Decimal('100'), Decimal('100'))

        assert result.transaction.cashback_percent == app.config['DEFAULT_CASHBACK_PERCENT']
        assert result.evaluation is None
        assert result.evaluation_error is not None

    def test_parse_timestamp_normalizes_to_utc(self):
        """Offsets are converted to naive UTC."""
        parsed = parse_timestamp('2026-01-20T12:00:00-05:00')
        assert parsed.hour == 17
        assert parsed.tzinfo is None
        assert parse_timestamp(None) is None


class TestSyncToExternal:
    """Tests for store credit issuance."""

    def _transaction(self, shop_domain, amount='123.45'):
        return TransactionRecorder(shop_domain).record('500', '4010', Decimal(amount), Decimal(amount)).transaction

    def test_successful_sync(self, sample_shop, sample_tiers):
        """Issued credit marks the transaction synced; amount rounds down to cents."""
        transaction = self._transaction(sample_shop.shop_domain)
        client = MagicMock()
        client.issue_store_credit.return_value = IssuanceResult(success=True, transaction_id='gid://shopify/X/1')

        TransactionRecorder(sample_shop.shop_domain).sync_to_external(transaction, client)

        assert transaction.status == 'synced'
        assert transaction.external_transaction_id == 'gid://shopify/X/1'
        client.issue_store_credit.assert_called_once_with('4010', Decimal('1.23'), 'USD')

    def test_user_errors_mark_failed(self, sample_shop, sample_tiers):
        """Rejected issuance is recorded on the transaction."""
        transaction = self._transaction(sample_shop.shop_domain)
        client = MagicMock()
        client.issue_store_credit.return_value = IssuanceResult(success=False, errors=['amount: too small'])

        TransactionRecorder(sample_shop.shop_domain).sync_to_external(transaction, client)

        assert transaction.status == 'sync_failed'
        assert transaction.sync_error == 'amount: too small'

    def test_transport_failure_never_touches_ledger(self, sample_shop, sample_tiers):
        """A Shopify outage leaves the ledger as recorded."""
        transaction = self._transaction(sample_shop.shop_domain)
        client = MagicMock()
        client.issue_store_credit.side_effect = ShopifyError('timeout')

        TransactionRecorder(sample_shop.shop_domain).sync_to_external(transaction, client)

        assert transaction.status == 'sync_failed'
        assert Customer.query.get(transaction.customer_id).store_credit == Decimal('1.2345')

    def test_synced_transaction_not_reissued(self, sample_shop, sample_tiers):
        """Retrying a synced transaction is a no-op."""
        transaction = self._transaction(sample_shop.shop_domain)
        client = MagicMock()
        client.issue_store_credit.return_value = IssuanceResult(success=True, transaction_id='t1')
        recorder = TransactionRecorder(sample_shop.shop_domain)

        recorder.sync_to_external(transaction, client)
        recorder.sync_to_external(transaction, client)

        assert client.issue_store_credit.call_count == 1

    def test_sub_cent_cashback_not_issued(self, sample_shop, sample_tiers):
        """Less than a cent is never sent to Shopify."""
        transaction = self._transaction(sample_shop.shop_domain, amount='0.50')
        client = MagicMock()

        TransactionRecorder(sample_shop.shop_domain).sync_to_external(transaction, client)

        client.issue_store_credit.assert_not_called()
        assert transaction.status == 'completed'
