"""
Tests for the Shopify Admin API client (mocked httpx).

Tests cover:
- Credential loading from the shops table
- Order feed paging, counting, date windows and normalization
- Single order lookup
- Store credit issuance, user errors and retries
- Balance lookup
"""
import pytest
import httpx
from decimal import Decimal
from unittest.mock import patch, MagicMock

from rewardspro.services.shopify_client import ShopifyClient
from rewardspro.utils.exceptions import ShopifyError, ShopNotFoundError


ORDER_NODE = {
    'id': 'gid://shopify/Order/5001',
    'name': '#1001',
    'email': 'order@example.com',
    'createdAt': '2026-01-20T12:00:00Z',
    'displayFinancialStatus': 'PAID',
    'totalPriceSet': {'shopMoney': {'amount': '100.00', 'currencyCode': 'CAD'}},
    'netPaymentSet': {'shopMoney': {'amount': '80.00', 'currencyCode': 'CAD'}},
    'customer': {'id': 'gid://shopify/Customer/42', 'email': 'customer@example.com'},
    'transactions': [
        {
            'id': 'gid://shopify/OrderTransaction/1',
            'kind': 'SALE',
            'status': 'SUCCESS',
            'gateway': 'gift_card',
            'amountSet': {'shopMoney': {'amount': '20.00'}},
            'parentTransaction': None,
        }
    ],
}


def _mock_response(payload):
    response = MagicMock()
    response.json.return_value = payload
    response.raise_for_status.return_value = None
    return response


def _patch_post(mock_client_class, *responses):
    """Wire httpx.Client() as a context manager whose post returns responses in order."""
    http = MagicMock()
    http.post.side_effect = list(responses)
    mock_client_class.return_value.__enter__.return_value = http
    return http


class TestClientInit:
    """Tests for ShopifyClient construction."""

    def test_loads_token_from_shop(self, sample_shop):
        """shop_domain alone reads credentials from the shops table."""
        client = ShopifyClient(sample_shop.shop_domain)

        assert client.access_token == 'shpat_test_token'
        assert client.graphql_url == 'https://test-shop.myshopify.com/admin/api/2025-01/graphql.json'

    def test_unknown_shop_raises(self, app):
        """An unknown shop has no credentials."""
        with pytest.raises(ShopNotFoundError):
            ShopifyClient('missing.myshopify.com')

    def test_explicit_token(self, app):
        """An explicit token skips the database."""
        client = ShopifyClient('https://other.myshopify.com/', access_token='tok', api_version='2024-10')

        assert client.shop_domain == 'other.myshopify.com'
        assert client.api_version == '2024-10'


class TestOrderFeed:
    """Tests for count_orders and fetch_page."""

    @patch('rewardspro.services.shopify_client.httpx.Client')
    def test_fetch_page_normalizes_orders(self, mock_client_class, app):
        """GraphQL nodes become the engine's flat order shape."""
        http = _patch_post(mock_client_class, _mock_response({'data': {'orders': {
            'edges': [{'cursor': 'c1', 'node': ORDER_NODE}],
            'pageInfo': {'hasNextPage': True, 'endCursor': 'c1'},
        }}}))

        page = ShopifyClient('shop.myshopify.com', access_token='tok').fetch_page(
            cursor=None, page_size=500, created_after='2025-01-01'
        )

        assert page.has_next_page is True
        assert page.end_cursor == 'c1'
        order = page.orders[0]
        assert order['id'] == '5001'
        assert order['customer_id'] == '42'
        assert order['email'] == 'customer@example.com'
        assert order['total_price'] == '100.00'
        assert order['net_payment'] == '80.00'
        assert order['currency'] == 'CAD'
        assert order['transactions'][0] == {
            'id': '1', 'kind': 'sale', 'status': 'success', 'gateway': 'gift_card',
            'amount': '20.00', 'parent_id': None,
        }

        variables = http.post.call_args.kwargs['json']['variables']
        assert variables['first'] == 250
        assert variables['query'] == "financial_status:paid created_at:>='2025-01-01'"

    @patch('rewardspro.services.shopify_client.httpx.Client')
    def test_count_orders(self, mock_client_class, app):
        """ordersCount is read from the response."""
        _patch_post(mock_client_class, _mock_response({'data': {'ordersCount': {'count': 1234}}}))

        assert ShopifyClient('shop.myshopify.com', access_token='tok').count_orders() == 1234

    @patch('rewardspro.services.shopify_client.httpx.Client')
    def test_date_window_filter(self, mock_client_class, app):
        """An end date bounds the search query from above."""
        http = _patch_post(mock_client_class, _mock_response({'data': {'ordersCount': {'count': 3}}}))

        ShopifyClient('shop.myshopify.com', access_token='tok').count_orders(
            created_after='2025-01-01', created_before='2025-06-30'
        )

        variables = http.post.call_args.kwargs['json']['variables']
        assert variables['query'] == (
            "financial_status:paid created_at:>='2025-01-01' created_at:<='2025-06-30'"
        )

    @patch('rewardspro.services.shopify_client.httpx.Client')
    def test_fetch_order(self, mock_client_class, app):
        """A single order is looked up by gid and normalized."""
        http = _patch_post(mock_client_class, _mock_response({'data': {'order': ORDER_NODE}}))

        order = ShopifyClient('shop.myshopify.com', access_token='tok').fetch_order(5001)

        assert order['id'] == '5001'
        assert order['net_payment'] == '80.00'
        assert order['transactions'][0]['gateway'] == 'gift_card'
        assert http.post.call_args.kwargs['json']['variables'] == {'id': 'gid://shopify/Order/5001'}

    @patch('rewardspro.services.shopify_client.httpx.Client')
    def test_fetch_unknown_order(self, mock_client_class, app):
        """Shopify answering with a null order gives None."""
        _patch_post(mock_client_class, _mock_response({'data': {'order': None}}))

        assert ShopifyClient('shop.myshopify.com', access_token='tok').fetch_order('404') is None

    @patch('rewardspro.services.shopify_client.httpx.Client')
    def test_graphql_errors_raise(self, mock_client_class, app):
        """Top-level GraphQL errors become ShopifyError."""
        _patch_post(mock_client_class, _mock_response({'errors': [{'message': 'Throttled'}]}))

        with pytest.raises(ShopifyError):
            ShopifyClient('shop.myshopify.com', access_token='tok').count_orders()

    @patch('rewardspro.services.shopify_client.httpx.Client')
    def test_transport_errors_raise(self, mock_client_class, app):
        """httpx failures become ShopifyError carrying the original error."""
        http = MagicMock()
        http.post.side_effect = httpx.ConnectError('connection refused')
        mock_client_class.return_value.__enter__.return_value = http

        with pytest.raises(ShopifyError) as exc_info:
            ShopifyClient('shop.myshopify.com', access_token='tok').count_orders()

        assert isinstance(exc_info.value.original_error, httpx.ConnectError)


class TestStoreCredit:
    """Tests for issue_store_credit and get_store_credit_balance."""

    @patch('rewardspro.services.shopify_client.httpx.Client')
    def test_issue_store_credit(self, mock_client_class, app):
        """Issuance sends a two-decimal amount to the customer's account."""
        http = _patch_post(mock_client_class, _mock_response({'data': {'storeCreditAccountCredit': {
            'storeCreditAccountTransaction': {'id': 'gid://shopify/StoreCreditAccountCreditTransaction/9'},
            'userErrors': [],
        }}}))

        result = ShopifyClient('shop.myshopify.com', access_token='tok').issue_store_credit(
            '42', Decimal('1.239'), 'USD'
        )

        assert result.success is True
        assert result.transaction_id == 'gid://shopify/StoreCreditAccountCreditTransaction/9'
        variables = http.post.call_args.kwargs['json']['variables']
        assert variables['id'] == 'gid://shopify/Customer/42'
        assert variables['creditInput']['creditAmount'] == {'amount': '1.23', 'currencyCode': 'USD'}

    @patch('rewardspro.services.shopify_client.httpx.Client')
    def test_user_errors_returned(self, mock_client_class, app):
        """User errors come back on the result, not as exceptions."""
        _patch_post(mock_client_class, _mock_response({'data': {'storeCreditAccountCredit': {
            'storeCreditAccountTransaction': None,
            'userErrors': [{'field': ['creditInput', 'creditAmount'], 'message': 'Amount too small'}],
        }}}))

        result = ShopifyClient('shop.myshopify.com', access_token='tok').issue_store_credit('42', '0.01')

        assert result.success is False
        assert result.errors == ['creditInput.creditAmount: Amount too small']

    @patch('rewardspro.services.shopify_client.httpx.Client')
    def test_issuance_retried_on_transient_error(self, mock_client_class, app):
        """A failed attempt is retried before giving up."""
        http = MagicMock()
        http.post.side_effect = [
            httpx.ReadTimeout('timed out'),
            _mock_response({'data': {'storeCreditAccountCredit': {
                'storeCreditAccountTransaction': {'id': 't-2'}, 'userErrors': [],
            }}}),
        ]
        mock_client_class.return_value.__enter__.return_value = http

        result = ShopifyClient('shop.myshopify.com', access_token='tok').issue_store_credit('42', '5')

        assert result.success is True
        assert http.post.call_count == 2

    @patch('rewardspro.services.shopify_client.httpx.Client')
    def test_balance_lookup(self, mock_client_class, app):
        """The first store credit account's balance is returned as a Decimal."""
        _patch_post(mock_client_class, _mock_response({'data': {'customer': {
            'id': 'gid://shopify/Customer/42',
            'storeCreditAccounts': {'edges': [{'node': {'id': 'a', 'balance': {'amount': '12.50', 'currencyCode': 'USD'}}}]},
        }}}))

        balance = ShopifyClient('shop.myshopify.com', access_token='tok').get_store_credit_balance('42')

        assert balance == Decimal('12.5')

    @patch('rewardspro.services.shopify_client.httpx.Client')
    def test_balance_without_account(self, mock_client_class, app):
        """No store credit account means a zero balance."""
        _patch_post(mock_client_class, _mock_response({'data': {'customer': {
            'id': 'gid://shopify/Customer/42', 'storeCreditAccounts': {'edges': []},
        }}}))

        assert ShopifyClient('shop.myshopify.com', access_token='tok').get_store_credit_balance('42') == Decimal('0')
