"""
Customer model.
"""
from datetime import datetime
from decimal import Decimal
from ..extensions import db
from ..utils.money import to_display


class Customer(db.Model):
    """
    A shop's customer as seen by the cashback engine.

    store_credit and total_earned are denormalized from the ledger and are
    only ever written by LedgerService.append, in the same transaction as
    the entry they reflect.
    """
    __tablename__ = 'customers'

    id = db.Column(db.Integer, primary_key=True)
    shop_domain = db.Column(db.String(255), nullable=False, index=True)
    external_customer_id = db.Column(db.String(50), nullable=False)  # Shopify numeric ID
    email = db.Column(db.String(255))

    # Cached ledger totals
    store_credit = db.Column(db.Numeric(18, 6), nullable=False, default=Decimal('0'))
    total_earned = db.Column(db.Numeric(18, 6), nullable=False, default=Decimal('0'))

    last_synced_at = db.Column(db.DateTime)  # Last reconciliation against Shopify
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    ledger_entries = db.relationship('LedgerEntry', backref='customer', lazy='dynamic')
    memberships = db.relationship('CustomerMembership', backref='customer', lazy='dynamic')
    transactions = db.relationship('CashbackTransaction', backref='customer', lazy='dynamic')

    __table_args__ = (
        db.UniqueConstraint('shop_domain', 'external_customer_id', name='uq_shop_external_customer'),
    )

    def __repr__(self):
        return f'<Customer {self.shop_domain}:{self.external_customer_id}>'

    @property
    def active_membership(self):
        from .membership import CustomerMembership
        return self.memberships.filter(CustomerMembership.is_active.is_(True)).first()

    def to_dict(self, include_membership=False):
        data = {
            'id': self.id,
            'shop_domain': self.shop_domain,
            'external_customer_id': self.external_customer_id,
            'email': self.email,
            'store_credit': to_display(self.store_credit),
            'total_earned': to_display(self.total_earned),
            'last_synced_at': self.last_synced_at.isoformat() if self.last_synced_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

        if include_membership:
            membership = self.active_membership
            data['membership'] = membership.to_dict() if membership else None

        return data
