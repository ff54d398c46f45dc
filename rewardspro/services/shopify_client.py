"""
Shopify Admin API client.

Two boundaries of the cashback engine go through this client:
- The order feed (cursor-paginated paid orders, used by the import pipeline)
- Store credit issuance (best-effort sync of recorded cashback)

Orders are normalized to plain dicts so the rest of the engine never sees
GraphQL shapes:
    {id, name, customer_id, email, total_price, net_payment, currency,
     transactions: [{id, kind, status, gateway, amount, parent_id}], created_at}
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import httpx
from flask import current_app, has_app_context
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..utils.exceptions import ShopifyError, ShopNotFoundError, ValidationError
from ..utils.money import format_amount, to_decimal

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = '2025-01'
MAX_PAGE_SIZE = 250


@dataclass
class OrderPage:
    """One page of the order feed."""
    orders: List[Dict[str, Any]]
    end_cursor: Optional[str] = None
    has_next_page: bool = False


@dataclass
class IssuanceResult:
    """Outcome of a store credit issuance."""
    success: bool
    transaction_id: Optional[str] = None
    errors: List[str] = field(default_factory=list)


class OrderFeed(Protocol):
    """Anything the import pipeline can page through."""

    def count_orders(self, created_after: Optional[str] = None, created_before: Optional[str] = None) -> int:
        ...

    def fetch_page(
        self,
        cursor: Optional[str],
        page_size: int,
        created_after: Optional[str] = None,
        financial_status: str = 'paid',
        created_before: Optional[str] = None,
    ) -> OrderPage:
        ...


def _config(key: str, default):
    if has_app_context():
        return current_app.config.get(key, default)
    return default


def _gid_tail(gid) -> Optional[str]:
    if gid is None:
        return None
    return str(gid).rsplit('/', 1)[-1]


def _customer_gid(customer_id: str) -> str:
    customer_id = str(customer_id)
    if not customer_id.startswith('gid://'):
        customer_id = f'gid://shopify/Customer/{customer_id}'
    return customer_id


def _money(money_set) -> Optional[str]:
    if not money_set:
        return None
    return (money_set.get('shopMoney') or {}).get('amount')


ORDER_FIELDS = """
    id
    name
    email
    createdAt
    displayFinancialStatus
    totalPriceSet { shopMoney { amount currencyCode } }
    netPaymentSet { shopMoney { amount currencyCode } }
    customer { id email }
    transactions(first: 50) {
        id
        kind
        status
        gateway
        amountSet { shopMoney { amount } }
        parentTransaction { id }
    }
"""


class ShopifyClient:
    """
    Client for Shopify Admin GraphQL API.

    Supports:
    - Paid order paging and counting (OrderFeed)
    - Single order lookup for webhook payloads
    - Store credit issuance and balance lookup
    """

    def __init__(
        self,
        shop_domain: str,
        access_token: str = None,
        api_version: str = None,
        timeout: float = None,
    ):
        """
        Initialize Shopify client.

        Can be initialized either with:
        - shop_domain only: credentials are read from the shops table
        - shop_domain + access_token: direct initialization
        """
        self.shop_domain = shop_domain.replace('https://', '').replace('http://', '').rstrip('/')

        if access_token is None:
            from ..models.shop import Shop
            shop = Shop.query.filter_by(shop_domain=self.shop_domain).first()
            if not shop:
                raise ShopNotFoundError(self.shop_domain)
            if not shop.access_token:
                raise ValidationError(f"Shop {self.shop_domain} has no Shopify access token", 'access_token')
            access_token = shop.access_token

        self.access_token = access_token
        self.api_version = api_version or _config('SHOPIFY_API_VERSION', DEFAULT_API_VERSION)
        self.timeout = timeout if timeout is not None else float(_config('SHOPIFY_TIMEOUT_SECONDS', 30))
        self.graphql_url = f'https://{self.shop_domain}/admin/api/{self.api_version}/graphql.json'

    # ==================== Transport ====================

    def _execute_query(self, query: str, variables: Optional[Dict] = None) -> Dict[str, Any]:
        """Execute a GraphQL query (single attempt)."""
        headers = {
            'X-Shopify-Access-Token': self.access_token,
            'Content-Type': 'application/json'
        }

        payload = {'query': query}
        if variables:
            payload['variables'] = variables

        try:
            with httpx.Client() as client:
                response = client.post(
                    self.graphql_url,
                    headers=headers,
                    json=payload,
                    timeout=self.timeout
                )
                response.raise_for_status()
                result = response.json()
        except httpx.HTTPError as e:
            raise ShopifyError(f"Shopify request failed for {self.shop_domain}: {e}", e)
        except ValueError as e:
            raise ShopifyError(f"Invalid JSON from Shopify for {self.shop_domain}", e)

        if result.get('errors'):
            raise ShopifyError(f"GraphQL errors: {result['errors']}")

        return result.get('data') or {}

    def _execute_with_retry(self, query: str, variables: Optional[Dict] = None) -> Dict[str, Any]:
        """Execute with bounded, capped-exponential retries."""
        retrying = Retrying(
            stop=stop_after_attempt(int(_config('FEED_MAX_RETRIES', 3))),
            wait=wait_exponential(
                multiplier=float(_config('FEED_RETRY_WAIT_SECONDS', 1)),
                max=float(_config('FEED_RETRY_MAX_WAIT_SECONDS', 10)),
            ),
            retry=retry_if_exception_type(ShopifyError),
            reraise=True,
        )
        return retrying(self._execute_query, query, variables)

    # ==================== Order feed ====================

    def count_orders(
        self,
        created_after: Optional[str] = None,
        financial_status: str = 'paid',
        created_before: Optional[str] = None,
    ) -> int:
        """Number of orders the feed will return for the same filters."""
        query = """
        query countOrders($query: String) {
            ordersCount(query: $query, limit: null) {
                count
            }
        }
        """
        search = self._search_query(created_after, financial_status, created_before)
        data = self._execute_query(query, {'query': search})
        return int((data.get('ordersCount') or {}).get('count') or 0)

    def fetch_page(
        self,
        cursor: Optional[str] = None,
        page_size: int = MAX_PAGE_SIZE,
        created_after: Optional[str] = None,
        financial_status: str = 'paid',
        created_before: Optional[str] = None,
    ) -> OrderPage:
        """
        Fetch one page of orders, oldest first.

        Args:
            cursor: endCursor of the previous page (None for the first page)
            page_size: Orders per page (max 250)
            created_after: ISO date; only orders created on or after it
            financial_status: Shopify financial status filter
            created_before: ISO date; only orders created on or before it
        """
        query = f"""
        query getOrders($first: Int!, $after: String, $query: String) {{
            orders(first: $first, after: $after, query: $query, sortKey: CREATED_AT) {{
                edges {{
                    cursor
                    node {{ {ORDER_FIELDS} }}
                }}
                pageInfo {{
                    hasNextPage
                    endCursor
                }}
            }}
        }}
        """
        variables = {
            'first': max(1, min(int(page_size), MAX_PAGE_SIZE)),
            'after': cursor,
            'query': self._search_query(created_after, financial_status, created_before),
        }

        data = self._execute_query(query, variables)
        orders = data.get('orders') or {}
        edges = orders.get('edges') or []
        page_info = orders.get('pageInfo') or {}

        return OrderPage(
            orders=[self.normalize_order(edge.get('node') or {}) for edge in edges],
            end_cursor=page_info.get('endCursor') or (edges[-1].get('cursor') if edges else None),
            has_next_page=bool(page_info.get('hasNextPage')),
        )

    def fetch_order(self, order_id) -> Optional[Dict[str, Any]]:
        """
        Fetch a single order in the normalized shape.

        Order webhooks carry neither the net payment figure nor the
        transaction list, so the paid-order handler reads them from here.

        Returns:
            Normalized order dict, or None if Shopify has no such order

        Raises:
            ShopifyError: Transport or GraphQL failure after retries
        """
        query = f"""
        query getOrder($id: ID!) {{
            order(id: $id) {{ {ORDER_FIELDS} }}
        }}
        """
        order_gid = str(order_id)
        if not order_gid.startswith('gid://'):
            order_gid = f'gid://shopify/Order/{order_gid}'

        data = self._execute_with_retry(query, {'id': order_gid})
        node = data.get('order')
        if not node:
            return None
        return self.normalize_order(node)

    @staticmethod
    def normalize_order(node: Dict[str, Any]) -> Dict[str, Any]:
        """Flatten a GraphQL order node to the engine's order shape."""
        customer = node.get('customer') or {}
        total_set = (node.get('totalPriceSet') or {}).get('shopMoney') or {}

        transactions = []
        for tx in node.get('transactions') or []:
            transactions.append({
                'id': _gid_tail(tx.get('id')),
                'kind': (tx.get('kind') or '').lower(),
                'status': (tx.get('status') or '').lower(),
                'gateway': tx.get('gateway') or '',
                'amount': _money(tx.get('amountSet')),
                'parent_id': _gid_tail((tx.get('parentTransaction') or {}).get('id')),
            })

        return {
            'id': _gid_tail(node.get('id')),
            'name': node.get('name'),
            'customer_id': _gid_tail(customer.get('id')),
            'email': customer.get('email') or node.get('email'),
            'total_price': total_set.get('amount'),
            'net_payment': _money(node.get('netPaymentSet')),
            'currency': total_set.get('currencyCode') or 'USD',
            'transactions': transactions,
            'created_at': node.get('createdAt'),
        }

    @staticmethod
    def _search_query(
        created_after: Optional[str],
        financial_status: Optional[str],
        created_before: Optional[str] = None,
    ) -> str:
        filters = []
        if financial_status:
            filters.append(f'financial_status:{financial_status}')
        if created_after:
            filters.append(f"created_at:>='{created_after}'")
        if created_before:
            filters.append(f"created_at:<='{created_before}'")
        return ' '.join(filters)

    # ==================== Store credit ====================

    def issue_store_credit(self, customer_id: str, amount, currency: str = 'USD') -> IssuanceResult:
        """
        Credit a customer's Shopify store credit account.

        If the customer has no store credit account yet, Shopify creates one.
        The amount is rounded down to cents so Shopify never receives more
        than the ledger recorded.

        Returns:
            IssuanceResult; Shopify user errors come back in errors

        Raises:
            ShopifyError: Transport or GraphQL failure after retries
        """
        query = """
        mutation storeCreditAccountCredit($id: ID!, $creditInput: StoreCreditAccountCreditInput!) {
            storeCreditAccountCredit(id: $id, creditInput: $creditInput) {
                storeCreditAccountTransaction {
                    id
                    amount {
                        amount
                        currencyCode
                    }
                }
                userErrors {
                    field
                    message
                }
            }
        }
        """
        variables = {
            'id': _customer_gid(customer_id),
            'creditInput': {
                'creditAmount': {
                    'amount': format_amount(amount),
                    'currencyCode': currency or 'USD'
                }
            }
        }

        data = self._execute_with_retry(query, variables)
        mutation_result = data.get('storeCreditAccountCredit') or {}
        user_errors = mutation_result.get('userErrors') or []

        if user_errors:
            errors = [
                f"{'.'.join(e.get('field') or []) or 'input'}: {e.get('message')}"
                for e in user_errors
            ]
            logger.warning(f"Store credit rejected for customer {customer_id} on {self.shop_domain}: {errors}")
            return IssuanceResult(success=False, errors=errors)

        transaction = mutation_result.get('storeCreditAccountTransaction') or {}
        return IssuanceResult(success=True, transaction_id=transaction.get('id'))

    def get_store_credit_balance(self, customer_id: str):
        """Customer's Shopify store credit balance as a Decimal (0 without an account)."""
        query = """
        query getCustomerStoreCredit($customerId: ID!) {
            customer(id: $customerId) {
                id
                storeCreditAccounts(first: 1) {
                    edges {
                        node {
                            id
                            balance {
                                amount
                                currencyCode
                            }
                        }
                    }
                }
            }
        }
        """
        data = self._execute_with_retry(query, {'customerId': _customer_gid(customer_id)})
        customer = data.get('customer') or {}
        accounts = (customer.get('storeCreditAccounts') or {}).get('edges') or []

        if not accounts:
            return to_decimal(0)

        balance = (accounts[0].get('node') or {}).get('balance') or {}
        return to_decimal(balance.get('amount'))
