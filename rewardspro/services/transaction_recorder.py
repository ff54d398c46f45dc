"""
Transaction Recorder.

Turns one paid order into cashback:

1. Idempotency check on (shop_domain, order_id)
2. Get or create (and enroll) the customer
3. Resolve the rate from the customer's current tier
4. Write the CashbackTransaction and its ledger entry in one commit
5. Re-evaluate the customer's tier

A tier change caused by an order applies to the next order, never to the
one just recorded. Evaluation failures are logged and returned, not raised:
the next order or `flask tiers evaluate-all` picks the customer up again.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models.customer import Customer
from ..models.ledger import LedgerEntryType, LedgerSource
from ..models.transaction import CashbackTransaction, TransactionStatus
from ..utils.exceptions import ExternalServiceError, ValidationError
from ..utils.locks import customer_lock
from ..utils.money import ZERO, round_down_cents, to_decimal
from .customer_service import CustomerService
from .ledger_service import ledger_service
from .tier_evaluator import EvaluationResult, TierEvaluator

logger = logging.getLogger(__name__)


@dataclass
class RecordResult:
    """What record() did for one order."""
    transaction: CashbackTransaction
    created: bool
    evaluation: Optional[EvaluationResult] = None
    evaluation_error: Optional[str] = None


def parse_timestamp(value) -> Optional[datetime]:
    """Naive UTC datetime from a datetime or an ISO-8601 string."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


class TransactionRecorder:
    """
    Idempotent cashback recording for one shop.

    Usage:
        recorder = TransactionRecorder(shop_domain)
        result = recorder.record('1001', '7', Decimal('100'), Decimal('80'))
    """

    def __init__(self, shop_domain: str):
        self.shop_domain = shop_domain
        self.customers = CustomerService(shop_domain)
        self.evaluator = TierEvaluator(shop_domain)

    def record(
        self,
        order_id,
        customer_ref,
        order_amount,
        cashback_eligible_amount,
        rate_percent=None,
        email: Optional[str] = None,
        currency: str = 'USD',
        ordered_at=None,
        entry_type=LedgerEntryType.EARNED,
        source=LedgerSource.CASHBACK,
        triggered_by: str = 'system',
        evaluate_tier: bool = True,
    ) -> RecordResult:
        """
        Record cashback for an order exactly once.

        Args:
            order_id: Shopify order ID
            customer_ref: Shopify customer ID or GID
            order_amount: Order total (counts towards tier spend)
            cashback_eligible_amount: Cash-equivalent part of the total
            rate_percent: Override rate; defaults to the current tier's rate
            email: Customer email, stored on first sighting
            currency: Order currency
            ordered_at: When the order was placed (defaults to now)
            entry_type: LedgerEntryType for the credit (initial_import for backfills)
            source: LedgerSource for the credit
            triggered_by: Recorded on any tier change
            evaluate_tier: Re-evaluate the customer's tier after recording

        Returns:
            RecordResult; created is False if the order was already recorded
        """
        order_id = str(order_id)

        existing = self._find(order_id)
        if existing:
            logger.debug(f"Order {order_id} already recorded (transaction {existing.id})")
            return RecordResult(existing, created=False)

        order_amount = to_decimal(order_amount)
        eligible = to_decimal(cashback_eligible_amount)
        if order_amount < ZERO:
            raise ValidationError('Order amount must not be negative', 'order_amount')
        if eligible < ZERO or eligible > order_amount:
            raise ValidationError('Eligible amount must be between 0 and the order amount', 'eligible_amount')

        customer, _ = self.customers.get_or_create(customer_ref, email=email, triggered_by=triggered_by)

        # Rate is fixed before this order can move the customer's tier
        rate = self._resolve_rate(customer, rate_percent)
        cashback = to_decimal(eligible * rate / Decimal('100'))

        with customer_lock(customer.id):
            try:
                transaction = CashbackTransaction(
                    shop_domain=self.shop_domain,
                    customer_id=customer.id,
                    order_id=order_id,
                    order_amount=order_amount,
                    eligible_amount=eligible,
                    cashback_amount=cashback,
                    cashback_percent=rate,
                    currency=currency or 'USD',
                    status=TransactionStatus.COMPLETED.value,
                    ordered_at=parse_timestamp(ordered_at) or datetime.utcnow(),
                )
                db.session.add(transaction)
                db.session.flush()

                if cashback > ZERO:
                    ledger_service.append(
                        customer.id,
                        cashback,
                        entry_type,
                        source,
                        reference=order_id,
                        description=f'{rate}% cashback on order {order_id}',
                        created_by=triggered_by,
                        commit=False,
                    )

                db.session.commit()
            except IntegrityError:
                # Concurrent delivery of the same order won the insert
                db.session.rollback()
                existing = self._find(order_id)
                if not existing:
                    raise
                return RecordResult(existing, created=False)

        logger.info(f"Recorded cashback {cashback:.2f} for order {order_id} (customer {customer.id})")

        result = RecordResult(transaction, created=True)
        if not evaluate_tier:
            return result

        try:
            result.evaluation = self.evaluator.evaluate(customer.id, triggered_by=triggered_by)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Tier evaluation failed for customer {customer.id} after order {order_id}: {e}")
            result.evaluation_error = str(e)

        return result

    def sync_to_external(self, transaction: CashbackTransaction, client) -> CashbackTransaction:
        """
        Best-effort issuance of the transaction's cashback as Shopify store
        credit. Never touches the ledger.
        """
        if transaction.status == TransactionStatus.SYNCED.value:
            return transaction

        amount = round_down_cents(transaction.cashback_amount)
        if amount <= ZERO:
            return transaction

        customer = Customer.query.get(transaction.customer_id)
        try:
            issuance = client.issue_store_credit(
                customer.external_customer_id,
                amount,
                transaction.currency or 'USD',
            )
        except ExternalServiceError as e:
            transaction.status = TransactionStatus.SYNC_FAILED.value
            transaction.sync_error = e.message
            db.session.commit()
            logger.error(f"Store credit sync failed for order {transaction.order_id}: {e.message}")
            return transaction

        if issuance.success:
            transaction.status = TransactionStatus.SYNCED.value
            transaction.external_transaction_id = issuance.transaction_id
            transaction.sync_error = None
            logger.info(f"Issued {amount} store credit for order {transaction.order_id} ({issuance.transaction_id})")
        else:
            transaction.status = TransactionStatus.SYNC_FAILED.value
            transaction.sync_error = '; '.join(issuance.errors) or 'Issuance rejected'
            logger.warning(f"Store credit rejected for order {transaction.order_id}: {transaction.sync_error}")

        db.session.commit()
        return transaction

    # ==================== Helpers ====================

    def _find(self, order_id: str) -> Optional[CashbackTransaction]:
        return CashbackTransaction.query.filter_by(
            shop_domain=self.shop_domain, order_id=order_id
        ).first()

    def _resolve_rate(self, customer: Customer, rate_percent) -> Decimal:
        if rate_percent is not None:
            rate = Decimal(str(rate_percent))
            if rate < 0 or rate > 100:
                raise ValidationError('Cashback percent must be between 0 and 100', 'rate_percent')
            return rate

        membership = self.evaluator.active_membership(customer.id)
        if membership and membership.tier:
            return Decimal(str(membership.tier.cashback_percent))

        default = Decimal('1')
        if has_app_context():
            default = Decimal(str(current_app.config.get('DEFAULT_CASHBACK_PERCENT', default)))
        logger.warning(f"Customer {customer.id} has no active tier; using default rate {default}%")
        return default
