"""
Store credit ledger.

Every movement of store credit is one immutable row. Corrections are new
rows, never edits.
"""
from datetime import datetime
from enum import Enum
from typing import Dict, Any
from ..extensions import db
from ..utils.money import to_display


class LedgerEntryType(str, Enum):
    """What kind of store credit movement an entry records."""
    EARNED = 'earned'                                  # Cashback on a live order
    ORDER_PAYMENT_DEBIT = 'order_payment_debit'        # Credit spent at checkout (negative)
    REFUND_CREDIT = 'refund_credit'                    # Credit returned by a refund
    MANUAL_ADJUSTMENT = 'manual_adjustment'            # Staff add/deduct
    EXTERNAL_SYNC_CORRECTION = 'external_sync_correction'  # Reconciliation delta
    INITIAL_IMPORT = 'initial_import'                  # Backfilled historical cashback


class LedgerSource(str, Enum):
    """Which subsystem produced an entry."""
    CASHBACK = 'cashback'
    MANUAL = 'manual'
    EXTERNAL_ADMIN = 'external_admin'
    EXTERNAL_ORDER = 'external_order'
    RECONCILIATION = 'reconciliation'
    MIGRATION = 'migration'


# Entry types that count towards Customer.total_earned
EARNING_ENTRY_TYPES = (
    LedgerEntryType.EARNED.value,
    LedgerEntryType.INITIAL_IMPORT.value,
)


class LedgerEntry(db.Model):
    """
    One signed store credit movement.

    balance is the running total at the time of the entry:
    balance(N) == balance(N-1) + amount(N), ordered by (created_at, id).
    """
    __tablename__ = 'store_credit_ledger'

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'), nullable=False, index=True)
    shop_domain = db.Column(db.String(255), nullable=False, index=True)

    amount = db.Column(db.Numeric(18, 6), nullable=False)   # + credit, - debit
    balance = db.Column(db.Numeric(18, 6), nullable=False)
    entry_type = db.Column(db.String(40), nullable=False)  # LedgerEntryType
    source = db.Column(db.String(30), nullable=False)       # LedgerSource

    external_reference = db.Column(db.String(100), index=True)  # Order / refund ID
    description = db.Column(db.String(500))
    created_by = db.Column(db.String(100), default='system')

    # Set on reconciliation corrections so operators can review them
    reconciled_at = db.Column(db.DateTime, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

    def __repr__(self):
        return f'<LedgerEntry {self.id} {self.entry_type} {self.amount}>'

    def to_dict(self) -> Dict[str, Any]:
        """Serialize ledger entry to dictionary."""
        return {
            'id': self.id,
            'customer_id': self.customer_id,
            'amount': to_display(self.amount),
            'balance': to_display(self.balance),
            'entry_type': self.entry_type,
            'source': self.source,
            'external_reference': self.external_reference,
            'description': self.description,
            'created_by': self.created_by,
            'reconciled_at': self.reconciled_at.isoformat() if self.reconciled_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
