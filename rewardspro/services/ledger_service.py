"""
Store Credit Ledger Service.

ARCHITECTURE: the ledger is the source of truth for store credit.

Every credit or debit is an immutable LedgerEntry carrying the running
balance. Customer.store_credit and Customer.total_earned are caches of the
ledger, written only here and always in the same database transaction as
the entry they reflect.

Handles:
- Appending entries (cashback, spend at checkout, refunds, adjustments)
- Point-in-time balances
- Reconciliation against the balance Shopify reports
- Integrity checks (sum and running-balance chain)
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func

from ..extensions import db
from ..models.customer import Customer
from ..models.ledger import (
    LedgerEntry,
    LedgerEntryType,
    LedgerSource,
    EARNING_ENTRY_TYPES,
)
from ..models.transaction import CashbackTransaction, TransactionStatus
from ..utils.exceptions import CustomerNotFoundError, ValidationError
from ..utils.locks import customer_lock
from ..utils.money import CENTS, ZERO, to_decimal

logger = logging.getLogger(__name__)


def _value(enum_or_str) -> str:
    return enum_or_str.value if hasattr(enum_or_str, 'value') else str(enum_or_str)


class LedgerService:
    """
    Append-only store credit ledger.

    Usage:
        entry = ledger_service.append(customer.id, Decimal('2.50'),
                                      LedgerEntryType.EARNED, LedgerSource.CASHBACK,
                                      reference='1001')
    """

    # ==================== Writes ====================

    def append(
        self,
        customer_id: int,
        amount,
        entry_type,
        source,
        reference: Optional[str] = None,
        description: Optional[str] = None,
        created_by: str = 'system',
        commit: bool = True,
    ) -> LedgerEntry:
        """
        Append a signed entry and update the customer's cached totals.

        Args:
            customer_id: Customer receiving the movement
            amount: Signed amount (+ credit, - debit)
            entry_type: LedgerEntryType
            source: LedgerSource
            reference: External reference (order ID, refund ID)
            description: Human readable note
            created_by: Staff email or 'system'
            commit: False to leave the commit to the caller's unit of work

        Returns:
            The new LedgerEntry
        """
        amount = to_decimal(amount)
        entry_type = _value(entry_type)
        source = _value(source)

        with customer_lock(customer_id):
            customer = self._lock_customer(customer_id)

            previous = self._latest_entry(customer_id)
            previous_balance = to_decimal(previous.balance) if previous else ZERO
            new_balance = previous_balance + amount

            now = datetime.utcnow()
            if previous and previous.created_at and previous.created_at > now:
                # Keep (created_at, id) ordering monotonic if the clock stepped back
                now = previous.created_at

            entry = LedgerEntry(
                customer_id=customer_id,
                shop_domain=customer.shop_domain,
                amount=amount,
                balance=new_balance,
                entry_type=entry_type,
                source=source,
                external_reference=str(reference) if reference is not None else None,
                description=description,
                created_by=created_by,
                created_at=now,
            )
            db.session.add(entry)

            customer.store_credit = new_balance
            if entry_type in EARNING_ENTRY_TYPES:
                customer.total_earned = to_decimal(customer.total_earned) + amount

            db.session.flush()
            if commit:
                db.session.commit()

        logger.info(
            f"Ledger {entry_type} {amount} for customer {customer_id} "
            f"(balance {new_balance}, ref {reference})"
        )
        return entry

    def record_order_payment(
        self,
        customer_id: int,
        amount,
        order_id: str,
        description: Optional[str] = None,
        commit: bool = True,
    ) -> Optional[LedgerEntry]:
        """
        Debit store credit that was spent on an order.

        Idempotent per order: a second call for the same order returns the
        existing entry.
        """
        amount = to_decimal(amount)
        if amount <= ZERO:
            return None

        with customer_lock(customer_id):
            existing = self.find_entry(customer_id, LedgerEntryType.ORDER_PAYMENT_DEBIT, order_id)
            if existing:
                return existing

            return self.append(
                customer_id,
                -amount,
                LedgerEntryType.ORDER_PAYMENT_DEBIT,
                LedgerSource.EXTERNAL_ORDER,
                reference=order_id,
                description=description or f'Store credit used on order {order_id}',
                commit=commit,
            )

    def record_refund_credit(
        self,
        customer_id: int,
        amount,
        refund_id: str,
        order_id: Optional[str] = None,
        commit: bool = True,
    ) -> Optional[LedgerEntry]:
        """
        Credit back store credit returned by a refund.

        Idempotent per refund.
        """
        amount = to_decimal(amount)
        if amount <= ZERO:
            return None

        with customer_lock(customer_id):
            existing = self.find_entry(customer_id, LedgerEntryType.REFUND_CREDIT, refund_id)
            if existing:
                return existing

            description = f'Store credit refunded (refund {refund_id}'
            description += f', order {order_id})' if order_id else ')'
            return self.append(
                customer_id,
                amount,
                LedgerEntryType.REFUND_CREDIT,
                LedgerSource.EXTERNAL_ORDER,
                reference=refund_id,
                description=description,
                commit=commit,
            )

    def adjust(
        self,
        customer_id: int,
        amount,
        reason: str,
        created_by: str = 'system',
    ) -> LedgerEntry:
        """
        Manual staff adjustment. A reason is required; deductions may not
        take the balance below zero.
        """
        if not reason or not reason.strip():
            raise ValidationError('A reason is required for manual adjustments', 'reason')

        amount = to_decimal(amount)
        if amount == ZERO:
            raise ValidationError('Adjustment amount must not be zero', 'amount')

        with customer_lock(customer_id):
            customer = self._get_customer(customer_id)
            if to_decimal(customer.store_credit) + amount < ZERO:
                raise ValidationError(
                    f'Insufficient store credit: balance {to_decimal(customer.store_credit):.2f}, '
                    f'adjustment {amount:.2f}',
                    'amount'
                )

            return self.append(
                customer_id,
                amount,
                LedgerEntryType.MANUAL_ADJUSTMENT,
                LedgerSource.MANUAL,
                description=reason.strip(),
                created_by=created_by,
            )

    def reconcile(
        self,
        customer_id: int,
        external_balance,
        triggered_by: str = 'system',
    ) -> Optional[LedgerEntry]:
        """
        Compare the cached balance with the balance Shopify reports.

        Cashback that is in the ledger but was never issued to Shopify
        (imported history, failed or skipped issuance) is expected to be
        missing there, so it is taken off the ledger side before comparing.
        Divergence is never overwritten: a correction entry for the exact
        delta is appended and stamped with reconciled_at.

        Returns:
            The correction entry, or None if the balances agree
        """
        external = to_decimal(external_balance)

        with customer_lock(customer_id):
            customer = self._lock_customer(customer_id)
            cached = to_decimal(customer.store_credit)
            unissued = self.unissued_credit(customer_id)
            expected = cached - unissued
            now = datetime.utcnow()

            # Shopify reports cents, so compare at cents
            if expected.quantize(CENTS) == external.quantize(CENTS):
                customer.last_synced_at = now
                db.session.commit()
                return None

            delta = external - expected
            entry = self.append(
                customer_id,
                delta,
                LedgerEntryType.EXTERNAL_SYNC_CORRECTION,
                LedgerSource.RECONCILIATION,
                description=(
                    f'Reconciled with Shopify balance {external:.2f} '
                    f'(ledger {cached:.2f}, not yet issued {unissued:.2f})'
                ),
                created_by=triggered_by,
                commit=False,
            )
            entry.reconciled_at = now
            customer.last_synced_at = now
            db.session.commit()

        logger.warning(
            f"Store credit divergence for customer {customer_id}: ledger {cached} "
            f"({unissued} not yet issued), Shopify {external}, correction {delta} (entry {entry.id})"
        )
        return entry

    def unissued_credit(self, customer_id: int) -> Decimal:
        """Cashback recorded in the ledger but not issued as Shopify store credit."""
        total = db.session.query(func.sum(CashbackTransaction.cashback_amount)).filter(
            CashbackTransaction.customer_id == customer_id,
            CashbackTransaction.status != TransactionStatus.SYNCED.value,
        ).scalar()
        return to_decimal(total or ZERO)

    # ==================== Reads ====================

    def balance_as_of(self, customer_id: int, timestamp: datetime) -> Decimal:
        """Balance of the latest entry at or before timestamp (0 if none)."""
        entry = LedgerEntry.query.filter(
            LedgerEntry.customer_id == customer_id,
            LedgerEntry.created_at <= timestamp,
        ).order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc()).first()

        return to_decimal(entry.balance) if entry else ZERO

    def entries(self, customer_id: int, limit: int = 50, offset: int = 0) -> List[LedgerEntry]:
        """Ledger entries, newest first."""
        return LedgerEntry.query.filter_by(
            customer_id=customer_id
        ).order_by(
            LedgerEntry.created_at.desc(), LedgerEntry.id.desc()
        ).offset(offset).limit(limit).all()

    def count_entries(self, customer_id: int) -> int:
        return LedgerEntry.query.filter_by(customer_id=customer_id).count()

    def find_entry(self, customer_id: int, entry_type, reference) -> Optional[LedgerEntry]:
        if reference is None:
            return None
        return LedgerEntry.query.filter_by(
            customer_id=customer_id,
            entry_type=_value(entry_type),
            external_reference=str(reference),
        ).first()

    def verify_integrity(self, customer_id: int) -> Dict[str, Any]:
        """
        Recompute the ledger for one customer and report mismatches.

        Read-only: nothing is corrected here.
        """
        customer = self._get_customer(customer_id)

        entries = LedgerEntry.query.filter_by(
            customer_id=customer_id
        ).order_by(LedgerEntry.created_at.asc(), LedgerEntry.id.asc()).all()

        running = ZERO
        earned = ZERO
        chain_breaks = []
        for entry in entries:
            amount = to_decimal(entry.amount)
            running += amount
            if entry.entry_type in EARNING_ENTRY_TYPES:
                earned += amount
            if to_decimal(entry.balance) != running:
                chain_breaks.append({
                    'entry_id': entry.id,
                    'expected_balance': str(running),
                    'recorded_balance': str(to_decimal(entry.balance)),
                })

        cached_balance = to_decimal(customer.store_credit)
        cached_earned = to_decimal(customer.total_earned)
        balance_matches = cached_balance == running
        earned_matches = cached_earned == earned

        result = {
            'customer_id': customer_id,
            'entry_count': len(entries),
            'ledger_sum': str(running),
            'cached_balance': str(cached_balance),
            'balance_matches': balance_matches,
            'earned_sum': str(earned),
            'cached_total_earned': str(cached_earned),
            'total_earned_matches': earned_matches,
            'chain_breaks': chain_breaks,
            'is_consistent': balance_matches and earned_matches and not chain_breaks,
        }

        if not result['is_consistent']:
            logger.error(f"Ledger integrity check failed for customer {customer_id}: {result}")

        return result

    # ==================== Helpers ====================

    def _get_customer(self, customer_id: int) -> Customer:
        customer = Customer.query.get(customer_id)
        if not customer:
            raise CustomerNotFoundError(customer_id)
        return customer

    def _lock_customer(self, customer_id: int) -> Customer:
        customer = Customer.query.filter_by(id=customer_id).with_for_update().first()
        if not customer:
            raise CustomerNotFoundError(customer_id)
        return customer

    def _latest_entry(self, customer_id: int) -> Optional[LedgerEntry]:
        return LedgerEntry.query.filter_by(
            customer_id=customer_id
        ).order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc()).first()


# Singleton instance
ledger_service = LedgerService()
