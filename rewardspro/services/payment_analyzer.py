"""
Order Payment Analyzer.

Works out how much of an order was paid in cash-equivalent tender and is
therefore eligible for cashback. Gift cards and store credit never earn
cashback.

The eligible amount comes from the order's net payment figure. The
transaction list is only used to explain the non-cash remainder.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from ..utils.exceptions import PaymentDataMissingError
from ..utils.money import ZERO, to_decimal, to_display

logger = logging.getLogger(__name__)

GIFT_CARD_GATEWAY = 'gift_card'
STORE_CREDIT_GATEWAY = 'store_credit'

# Transaction kinds that move money from the customer
PAYMENT_KINDS = ('sale', 'capture')


@dataclass
class PaymentBreakdown:
    """Result of analyzing an order's tender."""
    order_total: Decimal
    net_payment: Decimal
    cashback_eligible_amount: Decimal
    non_cash_amount: Decimal
    gift_card_amount: Decimal
    store_credit_amount: Decimal
    gateways: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'order_total': to_display(self.order_total),
            'net_payment': to_display(self.net_payment),
            'cashback_eligible_amount': to_display(self.cashback_eligible_amount),
            'non_cash_amount': to_display(self.non_cash_amount),
            'gift_card_amount': to_display(self.gift_card_amount),
            'store_credit_amount': to_display(self.store_credit_amount),
            'gateways': self.gateways,
        }


def _settled_payments(transactions: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Successful sale/capture transactions, each counted once.

    Authorizations are skipped; the capture that settles them is what moves
    money. A capture whose parent transaction was already counted as a
    sale settles that same money and is skipped too.
    """
    counted_ids = set()
    settled = []
    for tx in transactions or []:
        if (tx.get('status') or '').lower() != 'success':
            continue

        kind = (tx.get('kind') or '').lower()
        if kind and kind not in PAYMENT_KINDS:
            continue

        tx_id = str(tx['id']) if tx.get('id') is not None else None
        if tx_id and tx_id in counted_ids:
            continue

        parent_id = str(tx['parent_id']) if tx.get('parent_id') is not None else None
        if kind == 'capture' and parent_id and parent_id in counted_ids:
            continue

        if tx_id:
            counted_ids.add(tx_id)
        settled.append(tx)

    return settled


def analyze_payment(
    order_total,
    net_payment,
    transactions: Optional[Iterable[Dict[str, Any]]] = None,
    order_id: Optional[str] = None,
) -> PaymentBreakdown:
    """
    Compute the cashback-eligible amount of an order.

    Args:
        order_total: Order total price
        net_payment: Amount actually paid in cash-equivalent tender
        transactions: Settled payment entries ({gateway, amount, status, kind})
        order_id: Only used in error messages

    Returns:
        PaymentBreakdown with eligible amount in [0, order_total]

    Raises:
        PaymentDataMissingError: net_payment is not known yet
    """
    if net_payment is None or net_payment == '':
        raise PaymentDataMissingError(order_id)

    total = max(to_decimal(order_total), ZERO)
    net = to_decimal(net_payment)

    eligible = min(max(net, ZERO), total)
    non_cash = total - eligible

    gift_card_total = ZERO
    gateways = []
    for tx in _settled_payments(transactions):
        gateway = (tx.get('gateway') or '').lower()
        if gateway and gateway not in gateways:
            gateways.append(gateway)
        if GIFT_CARD_GATEWAY in gateway:
            gift_card_total += to_decimal(tx.get('amount'))

    gift_card_amount = min(max(gift_card_total, ZERO), non_cash)
    # Store credit is whatever the gift cards do not explain
    store_credit_amount = max(non_cash - gift_card_amount, ZERO)

    return PaymentBreakdown(
        order_total=total,
        net_payment=net,
        cashback_eligible_amount=eligible,
        non_cash_amount=non_cash,
        gift_card_amount=gift_card_amount,
        store_credit_amount=store_credit_amount,
        gateways=gateways,
    )


def breakdown_from_order(order: Dict[str, Any]) -> PaymentBreakdown:
    """
    Analyze a normalized order payload (webhook or order feed shape).

    Reads total_price, net_payment and transactions[]. An order without a
    net payment figure is never guessed at: PaymentDataMissingError.
    """
    order_id = str(order.get('id')) if order.get('id') is not None else None

    breakdown = analyze_payment(
        order_total=order.get('total_price'),
        net_payment=order.get('net_payment'),
        transactions=order.get('transactions') or [],
        order_id=order_id,
    )

    logger.debug(
        f"Order {order_id}: eligible {breakdown.cashback_eligible_amount}, "
        f"gift cards {breakdown.gift_card_amount}, store credit {breakdown.store_credit_amount}"
    )
    return breakdown
