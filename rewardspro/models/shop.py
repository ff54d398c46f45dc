"""
Shop model (one row per installed Shopify store).
"""
from datetime import datetime
from ..extensions import db


class Shop(db.Model):
    """
    Merchant store using the cashback engine.
    Customers, tiers, transactions and migration jobs are keyed by shop_domain.
    """
    __tablename__ = 'shops'

    id = db.Column(db.Integer, primary_key=True)
    shop_domain = db.Column(db.String(255), unique=True, nullable=False, index=True)
    shop_name = db.Column(db.String(255))

    # Shopify Admin API credentials (order feed + store credit issuance)
    access_token = db.Column(db.Text)
    currency = db.Column(db.String(3), default='USD')

    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f'<Shop {self.shop_domain}>'

    def to_dict(self):
        return {
            'id': self.id,
            'shop_domain': self.shop_domain,
            'shop_name': self.shop_name,
            'currency': self.currency,
            'is_active': self.is_active,
            'has_credentials': bool(self.access_token),
        }
