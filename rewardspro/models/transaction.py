"""
Cashback transaction model.
"""
from datetime import datetime
from enum import Enum
from ..extensions import db
from ..utils.money import to_display


class TransactionStatus(str, Enum):
    """Where a transaction stands with the external store credit system."""
    COMPLETED = 'completed'      # Recorded in the ledger
    SYNCED = 'synced'            # Also issued as Shopify store credit
    SYNC_FAILED = 'sync_failed'  # Issuance attempted and failed


class CashbackTransaction(db.Model):
    """
    Cashback earned on one order. At most one row per (shop, order).
    """
    __tablename__ = 'cashback_transactions'

    id = db.Column(db.Integer, primary_key=True)
    shop_domain = db.Column(db.String(255), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'), nullable=False, index=True)
    order_id = db.Column(db.String(50), nullable=False)

    order_amount = db.Column(db.Numeric(18, 6), nullable=False)
    eligible_amount = db.Column(db.Numeric(18, 6), nullable=False)
    cashback_amount = db.Column(db.Numeric(18, 6), nullable=False)
    cashback_percent = db.Column(db.Numeric(5, 2), nullable=False)
    currency = db.Column(db.String(3), default='USD')

    status = db.Column(db.String(20), nullable=False, default=TransactionStatus.COMPLETED.value)
    external_transaction_id = db.Column(db.String(100))
    sync_error = db.Column(db.Text)

    ordered_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('shop_domain', 'order_id', name='uq_shop_order_cashback'),
    )

    def __repr__(self):
        return f'<CashbackTransaction order={self.order_id} {self.cashback_amount}>'

    def to_dict(self):
        return {
            'id': self.id,
            'customer_id': self.customer_id,
            'order_id': self.order_id,
            'order_amount': to_display(self.order_amount),
            'eligible_amount': to_display(self.eligible_amount),
            'cashback_amount': to_display(self.cashback_amount),
            'cashback_percent': float(self.cashback_percent),
            'currency': self.currency,
            'status': self.status,
            'external_transaction_id': self.external_transaction_id,
            'sync_error': self.sync_error,
            'ordered_at': self.ordered_at.isoformat() if self.ordered_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
