"""
Tests for the flask CLI command groups.
"""
from decimal import Decimal
from unittest.mock import patch, MagicMock

from rewardspro.extensions import db
from rewardspro.models import Customer, Tier
from rewardspro.services.ledger_service import ledger_service
from rewardspro.services.shopify_client import OrderPage


class TestTierCommands:
    """Tests for `flask tiers ...`."""

    def test_seed(self, app, sample_shop):
        """seed creates the default tiers once."""
        runner = app.test_cli_runner()

        result = runner.invoke(args=['tiers', 'seed', '--shop', sample_shop.shop_domain])
        assert result.exit_code == 0
        assert 'Seeded 4 tiers' in result.output
        assert Tier.query.filter_by(shop_domain=sample_shop.shop_domain).count() == 4

        result = runner.invoke(args=['tiers', 'seed', '--shop', sample_shop.shop_domain])
        assert 'nothing seeded' in result.output

    def test_evaluate_all(self, app, sample_shop, sample_customer):
        """evaluate-all prints a summary."""
        result = app.test_cli_runner().invoke(
            args=['tiers', 'evaluate-all', '--shop', sample_shop.shop_domain]
        )

        assert result.exit_code == 0
        assert 'Processed: 1 customers' in result.output

    def test_process_expirations_all_shops(self, app, sample_shop, sample_tiers):
        """Without --shop every active shop is processed."""
        result = app.test_cli_runner().invoke(args=['tiers', 'process-expirations'])

        assert result.exit_code == 0
        assert sample_shop.shop_domain in result.output
        assert 'TOTAL: 0 reverted' in result.output


class TestLedgerCommands:
    """Tests for `flask ledger ...`."""

    def test_verify_consistent(self, app, sample_customer):
        """A clean ledger exits 0."""
        ledger_service.adjust(sample_customer.id, Decimal('5'), reason='Welcome bonus')

        result = app.test_cli_runner().invoke(args=['ledger', 'verify', '--customer-id', str(sample_customer.id)])

        assert result.exit_code == 0
        assert 'OK' in result.output

    def test_verify_inconsistent(self, app, sample_customer):
        """A tampered cached balance exits 1."""
        ledger_service.adjust(sample_customer.id, Decimal('5'), reason='Welcome bonus')
        customer = Customer.query.get(sample_customer.id)
        customer.store_credit = Decimal('50')
        db.session.commit()

        result = app.test_cli_runner().invoke(args=['ledger', 'verify', '--customer-id', str(sample_customer.id)])

        assert result.exit_code == 1
        assert 'INCONSISTENT' in result.output

    def test_verify_unknown_customer(self, app, sample_shop):
        """Unknown customers are a usage error."""
        result = app.test_cli_runner().invoke(args=['ledger', 'verify', '--customer-id', '999'])

        assert result.exit_code != 0
        assert 'not found' in result.output

    def test_reconcile(self, app, sample_customer):
        """reconcile appends a correction for the delta."""
        result = app.test_cli_runner().invoke(args=[
            'ledger', 'reconcile', '--customer-id', str(sample_customer.id), '--balance', '12.34'
        ])

        assert result.exit_code == 0
        assert 'Correction' in result.output
        assert Customer.query.get(sample_customer.id).store_credit == Decimal('12.34')


class TestMigrationCommands:
    """Tests for `flask migrations ...`."""

    @patch('rewardspro.services.migration_service.ShopifyClient')
    def test_run(self, mock_client_class, app, sample_shop, sample_tiers):
        """run imports in the foreground and prints the job summary."""
        feed = MagicMock()
        feed.count_orders.return_value = 1
        feed.fetch_page.return_value = OrderPage(orders=[{
            'id': '7001', 'customer_id': '88', 'total_price': '40.00', 'net_payment': '40.00',
            'currency': 'USD', 'transactions': [], 'created_at': '2026-01-05T08:00:00Z',
        }])
        mock_client_class.return_value = feed

        result = app.test_cli_runner().invoke(args=['migrations', 'run', '--shop', sample_shop.shop_domain])

        assert result.exit_code == 0
        assert 'completed' in result.output
        assert 'Processed: 1' in result.output

    def test_status_unknown_job(self, app):
        """status on a missing job fails."""
        result = app.test_cli_runner().invoke(args=['migrations', 'status', '--job-id', '42'])

        assert result.exit_code != 0
