"""
Tests for order lifecycle webhooks.

Tests cover:
- orders/paid: guest, cancelled, missing payment data, recorded, duplicate
- Net payment read from the Admin API when the payload lacks it
- Store credit spent at checkout and store credit issuance
- refunds/create: store credit returned to the customer
- Unknown shops and failures still answer 200
"""
import pytest
from unittest.mock import patch

from rewardspro.models import CashbackTransaction, Customer, LedgerEntry
from rewardspro.services.shopify_client import IssuanceResult
from rewardspro.utils.exceptions import ShopifyError


def _headers(shop_domain):
    return {
        'X-Shopify-Shop-Domain': shop_domain,
        'X-Shopify-Topic': 'orders/paid',
        'Content-Type': 'application/json',
    }


def _order_payload(order_id=820982911946154508, total='100.00', net='100.00', **overrides):
    payload = {
        'id': order_id,
        'email': 'buyer@example.com',
        'total_price': total,
        'net_payment': net,
        'currency': 'USD',
        'financial_status': 'paid',
        'cancelled_at': None,
        'created_at': '2026-03-01T10:00:00-05:00',
        'customer': {'id': 115310627314723954, 'email': 'buyer@example.com'},
        'payment_gateway_names': ['shopify_payments'],
        'transactions': [],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def mock_shopify():
    with patch('rewardspro.webhooks.order_lifecycle.ShopifyClient') as mock_client_class:
        mock_client_class.return_value.issue_store_credit.return_value = IssuanceResult(
            success=True, transaction_id='gid://shopify/StoreCreditAccountCreditTransaction/77'
        )
        yield mock_client_class


class TestOrderPaid:
    """Tests for POST /webhook/orders/paid."""

    def test_records_cashback_and_issues_credit(self, client, sample_shop, sample_tiers, mock_shopify):
        """A paid order earns cashback and is issued as store credit."""
        response = client.post(
            '/webhook/orders/paid', headers=_headers(sample_shop.shop_domain), json=_order_payload()
        )

        assert response.status_code == 200
        assert response.json['status'] == 'recorded'
        assert response.json['transaction']['cashback_amount'] == 1.0
        assert response.json['transaction']['status'] == 'synced'

        customer = Customer.query.filter_by(external_customer_id='115310627314723954').one()
        assert customer.email == 'buyer@example.com'
        assert float(customer.store_credit) == 1.0
        mock_shopify.return_value.issue_store_credit.assert_called_once()

    def test_duplicate_delivery(self, client, sample_shop, sample_tiers, mock_shopify):
        """Redelivered orders are acknowledged without a second credit."""
        headers = _headers(sample_shop.shop_domain)
        client.post('/webhook/orders/paid', headers=headers, json=_order_payload())

        response = client.post('/webhook/orders/paid', headers=headers, json=_order_payload())

        assert response.status_code == 200
        assert response.json['status'] == 'duplicate'
        assert CashbackTransaction.query.count() == 1
        assert LedgerEntry.query.count() == 1
        assert mock_shopify.return_value.issue_store_credit.call_count == 1

    def test_guest_order_skipped(self, client, sample_shop, sample_tiers):
        """Orders without a customer earn nothing."""
        response = client.post(
            '/webhook/orders/paid',
            headers=_headers(sample_shop.shop_domain),
            json=_order_payload(customer=None),
        )

        assert response.status_code == 200
        assert response.json['reason'] == 'guest_order'
        assert CashbackTransaction.query.count() == 0

    @pytest.mark.parametrize('overrides', [
        {'cancelled_at': '2026-03-01T11:00:00-05:00'},
        {'financial_status': 'voided'},
    ])
    def test_cancelled_or_voided_skipped(self, client, sample_shop, sample_tiers, overrides):
        """Cancelled and voided orders earn nothing."""
        response = client.post(
            '/webhook/orders/paid',
            headers=_headers(sample_shop.shop_domain),
            json=_order_payload(**overrides),
        )

        assert response.json['reason'] == 'cancelled_or_voided'
        assert CashbackTransaction.query.count() == 0

    def test_missing_payment_data_skipped(self, client, sample_shop, sample_tiers, mock_shopify):
        """Without net payment from the payload or the Admin API, the order is skipped."""
        mock_shopify.return_value.fetch_order.return_value = None

        response = client.post(
            '/webhook/orders/paid',
            headers=_headers(sample_shop.shop_domain),
            json=_order_payload(net=None, payment_gateway_names=['shopify_payments']),
        )

        assert response.json['status'] == 'skipped'
        assert response.json['reason'] == 'missing_payment_data'
        mock_shopify.return_value.fetch_order.assert_called_once_with(820982911946154508)
        assert CashbackTransaction.query.count() == 0

    def test_net_payment_read_from_admin_api(self, client, sample_shop, sample_tiers, mock_shopify):
        """A payload without net payment is completed from the order lookup."""
        mock_shopify.return_value.fetch_order.return_value = {
            'id': '820982911946154508',
            'total_price': '100.00',
            'net_payment': '70.00',
            'transactions': [
                {'id': '1', 'kind': 'sale', 'status': 'success', 'gateway': 'gift_card',
                 'amount': '30.00', 'parent_id': None},
                {'id': '2', 'kind': 'sale', 'status': 'success', 'gateway': 'shopify_payments',
                 'amount': '70.00', 'parent_id': None},
            ],
        }

        response = client.post(
            '/webhook/orders/paid',
            headers=_headers(sample_shop.shop_domain),
            json=_order_payload(net=None, payment_gateway_names=['gift_card', 'shopify_payments']),
        )

        assert response.json['status'] == 'recorded'
        assert response.json['payment']['cashback_eligible_amount'] == 70.0
        assert response.json['payment']['gift_card_amount'] == 30.0
        assert response.json['transaction']['cashback_amount'] == 0.7

    def test_order_lookup_failure_skips(self, client, sample_shop, sample_tiers, mock_shopify):
        """A failed order lookup is treated as missing payment data, never as the order total."""
        mock_shopify.return_value.fetch_order.side_effect = ShopifyError('Throttled')

        response = client.post(
            '/webhook/orders/paid',
            headers=_headers(sample_shop.shop_domain),
            json=_order_payload(net=None),
        )

        assert response.status_code == 200
        assert response.json['reason'] == 'missing_payment_data'
        assert CashbackTransaction.query.count() == 0

    def test_store_credit_spend_debited(self, client, sample_shop, sample_tiers, mock_shopify):
        """Store credit used at checkout is debited; only cash earns."""
        payload = _order_payload(
            total='100.00',
            net='70.00',
            payment_gateway_names=['shopify_payments', 'shopify_store_credit'],
            transactions=[
                {'id': 1, 'kind': 'sale', 'status': 'success', 'gateway': 'shopify_payments', 'amount': '70.00'},
                {'id': 2, 'kind': 'sale', 'status': 'success', 'gateway': 'shopify_store_credit', 'amount': '30.00'},
            ],
        )

        response = client.post('/webhook/orders/paid', headers=_headers(sample_shop.shop_domain), json=payload)

        assert response.json['status'] == 'recorded'
        assert response.json['payment']['cashback_eligible_amount'] == 70.0
        assert response.json['payment']['store_credit_amount'] == 30.0
        assert response.json['transaction']['cashback_amount'] == 0.7

        debit = LedgerEntry.query.filter_by(entry_type='order_payment_debit').one()
        assert float(debit.amount) == -30.0

    def test_unknown_shop_acknowledged(self, client, sample_tiers):
        """Unknown shops are ignored with a 200."""
        response = client.post(
            '/webhook/orders/paid', headers=_headers('unknown.myshopify.com'), json=_order_payload()
        )

        assert response.status_code == 200
        assert response.json['reason'] == 'unknown_shop'

    def test_malformed_payload_acknowledged(self, client, sample_shop):
        """Payloads without an order id are ignored."""
        response = client.post(
            '/webhook/orders/paid', headers=_headers(sample_shop.shop_domain), json={'total_price': '5.00'}
        )

        assert response.status_code == 200
        assert response.json['reason'] == 'malformed_payload'

    @patch('rewardspro.webhooks.order_lifecycle.TransactionRecorder.record')
    def test_failure_acknowledged(self, mock_record, client, sample_shop, sample_tiers):
        """Processing errors are reported in the body with a 200."""
        mock_record.side_effect = RuntimeError('database is locked')

        response = client.post(
            '/webhook/orders/paid', headers=_headers(sample_shop.shop_domain), json=_order_payload()
        )

        assert response.status_code == 200
        assert response.json['status'] == 'error'
        assert response.json['success'] is False


class TestRefundCreated:
    """Tests for POST /webhook/refunds/create."""

    def _refund_payload(self, refund_id=929361462, order_id=820982911946154508, amount='25.00', gateway='shopify_store_credit'):
        return {
            'id': refund_id,
            'order_id': order_id,
            'transactions': [
                {'id': 9, 'kind': 'refund', 'status': 'success', 'gateway': gateway, 'amount': amount},
            ],
        }

    def test_store_credit_refund_credited(self, client, sample_shop, sample_tiers, mock_shopify):
        """Store credit returned by a refund goes back on the ledger once."""
        headers = _headers(sample_shop.shop_domain)
        client.post('/webhook/orders/paid', headers=headers, json=_order_payload())

        response = client.post('/webhook/refunds/create', headers=headers, json=self._refund_payload())
        assert response.json['status'] == 'recorded'
        assert response.json['entry']['entry_type'] == 'refund_credit'
        assert response.json['entry']['balance'] == 26.0

        client.post('/webhook/refunds/create', headers=headers, json=self._refund_payload())
        assert LedgerEntry.query.filter_by(entry_type='refund_credit').count() == 1

    def test_cash_refund_ignored(self, client, sample_shop, sample_tiers):
        """Refunds to the card do not touch store credit."""
        response = client.post(
            '/webhook/refunds/create',
            headers=_headers(sample_shop.shop_domain),
            json=self._refund_payload(gateway='shopify_payments'),
        )

        assert response.json['reason'] == 'no_store_credit_refund'

    def test_refund_for_unrecorded_order(self, client, sample_shop, sample_tiers):
        """The payload's customer is used when the order was never recorded."""
        payload = self._refund_payload(order_id=1)
        payload['customer'] = {'id': 4242}

        response = client.post('/webhook/refunds/create', headers=_headers(sample_shop.shop_domain), json=payload)

        assert response.json['status'] == 'recorded'
        customer = Customer.query.filter_by(external_customer_id='4242').one()
        assert float(customer.store_credit) == 25.0
