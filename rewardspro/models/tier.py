"""
Cashback tier model.
"""
from datetime import datetime
from enum import Enum
from ..extensions import db
from ..utils.money import to_display


class EvaluationPeriod(str, Enum):
    """Spend window used to qualify for a tier."""
    ANNUAL = 'annual'      # Rolling 365 days
    LIFETIME = 'lifetime'


class Tier(db.Model):
    """
    Spending tier within a shop's cashback program.

    Levels are contiguous 1..n per shop. A NULL min_spend marks the floor
    tier every customer qualifies for (at most one per shop).
    """
    __tablename__ = 'tiers'

    id = db.Column(db.Integer, primary_key=True)
    shop_domain = db.Column(db.String(255), nullable=False, index=True)

    name = db.Column(db.String(50), nullable=False)  # 'Bronze', 'Silver', 'Gold'
    level = db.Column(db.Integer, nullable=False)
    min_spend = db.Column(db.Numeric(18, 6))          # NULL = no minimum
    cashback_percent = db.Column(db.Numeric(5, 2), nullable=False)
    evaluation_period = db.Column(db.String(20), nullable=False, default=EvaluationPeriod.ANNUAL.value)

    # Other benefits (JSON for flexibility)
    benefits = db.Column(db.JSON, default=dict)
    # Example: {"free_shipping": true, "early_access": true}

    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('shop_domain', 'name', name='uq_shop_tier_name'),
        db.UniqueConstraint('shop_domain', 'level', name='uq_shop_tier_level'),
    )

    def __repr__(self):
        return f'<Tier {self.name} L{self.level}>'

    @property
    def is_floor(self) -> bool:
        return self.min_spend is None

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'level': self.level,
            'min_spend': to_display(self.min_spend) if self.min_spend is not None else None,
            'cashback_percent': float(self.cashback_percent),
            'evaluation_period': self.evaluation_period,
            'benefits': self.benefits or {},
            'is_active': self.is_active,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
