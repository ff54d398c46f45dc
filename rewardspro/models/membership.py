"""
Tier membership and tier change audit models.
"""
from datetime import datetime
from enum import Enum
from ..extensions import db


class AssignmentType(str, Enum):
    """How a customer came to hold a tier."""
    AUTOMATIC = 'automatic'
    MANUAL = 'manual'
    PROMOTIONAL = 'promotional'
    IMPORTED = 'imported'


# Assignments the evaluator leaves alone until they expire
PINNED_ASSIGNMENT_TYPES = (
    AssignmentType.MANUAL.value,
    AssignmentType.PROMOTIONAL.value,
)


class TierChangeType(str, Enum):
    """Why a tier change happened."""
    INITIAL_ASSIGNMENT = 'initial_assignment'
    AUTO_UPGRADE = 'auto_upgrade'
    AUTO_DOWNGRADE = 'auto_downgrade'
    MANUAL_OVERRIDE = 'manual_override'
    EXPIRATION_REVERT = 'expiration_revert'
    TIER_DELETED_MIGRATION = 'tier_deleted_migration'


class CustomerMembership(db.Model):
    """
    A customer's tenure in one tier.

    Only one row per customer is active. Superseded rows keep their dates
    as history.
    """
    __tablename__ = 'customer_memberships'

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'), nullable=False, index=True)
    # Plain tier ids: closed rows keep pointing at tiers that were later deleted
    tier_id = db.Column(db.Integer, index=True)
    previous_tier_id = db.Column(db.Integer)

    start_date = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    end_date = db.Column(db.DateTime)  # Expiry while active, supersession time once closed
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    assignment_type = db.Column(db.String(20), nullable=False, default=AssignmentType.AUTOMATIC.value)
    assigned_by = db.Column(db.String(100), default='system')
    reason = db.Column(db.String(500))

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tier = db.relationship('Tier', primaryjoin='foreign(CustomerMembership.tier_id) == Tier.id')
    previous_tier = db.relationship(
        'Tier', primaryjoin='foreign(CustomerMembership.previous_tier_id) == Tier.id', viewonly=True
    )

    def __repr__(self):
        return f'<CustomerMembership customer={self.customer_id} tier={self.tier_id} active={self.is_active}>'

    @property
    def is_pinned(self) -> bool:
        return self.assignment_type in PINNED_ASSIGNMENT_TYPES

    def is_expired(self, now: datetime = None) -> bool:
        now = now or datetime.utcnow()
        return self.end_date is not None and self.end_date <= now

    def to_dict(self):
        return {
            'id': self.id,
            'customer_id': self.customer_id,
            'tier_id': self.tier_id,
            'tier_name': self.tier.name if self.tier else None,
            'cashback_percent': float(self.tier.cashback_percent) if self.tier else None,
            'previous_tier_id': self.previous_tier_id,
            'start_date': self.start_date.isoformat() if self.start_date else None,
            'end_date': self.end_date.isoformat() if self.end_date else None,
            'is_active': self.is_active,
            'assignment_type': self.assignment_type,
            'assigned_by': self.assigned_by,
            'reason': self.reason,
        }


class TierChangeLog(db.Model):
    """
    Audit log for tier changes.
    Tracks every tier assignment and removal for compliance and debugging.
    """
    __tablename__ = 'tier_change_logs'

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey('customers.id'), nullable=False, index=True)
    shop_domain = db.Column(db.String(255), nullable=False, index=True)

    # Append-only: tier ids and names are snapshots, never rewritten when a
    # tier is deleted
    from_tier_id = db.Column(db.Integer)  # NULL on initial assignment
    to_tier_id = db.Column(db.Integer)
    from_tier_name = db.Column(db.String(50))
    to_tier_name = db.Column(db.String(50))

    change_type = db.Column(db.String(30), nullable=False)  # TierChangeType
    reason = db.Column(db.String(500))
    triggered_by = db.Column(db.String(100), default='system')

    # Additional context (qualifying spend, evaluation window, ...)
    extra_data = db.Column(db.JSON, default=dict)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    def __repr__(self):
        return f'<TierChangeLog {self.change_type} customer={self.customer_id}>'

    def to_dict(self):
        return {
            'id': self.id,
            'customer_id': self.customer_id,
            'from_tier_id': self.from_tier_id,
            'to_tier_id': self.to_tier_id,
            'from_tier_name': self.from_tier_name,
            'to_tier_name': self.to_tier_name,
            'change_type': self.change_type,
            'reason': self.reason,
            'triggered_by': self.triggered_by,
            'extra_data': self.extra_data or {},
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
