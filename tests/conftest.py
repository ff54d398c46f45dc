"""
Shared pytest fixtures for RewardsPro tests.

The app fixture keeps one application context pushed for the whole test,
so fixtures, services and test-client requests share a single session.
"""
import pytest
from decimal import Decimal

from rewardspro import create_app
from rewardspro.extensions import db


SHOP_DOMAIN = 'test-shop.myshopify.com'


@pytest.fixture
def app():
    """Create application for testing."""
    app = create_app('testing')

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def sample_shop(app):
    """Create a sample shop with Shopify credentials."""
    from rewardspro.models import Shop

    shop = Shop(
        shop_domain=SHOP_DOMAIN,
        shop_name='Test Shop',
        access_token='shpat_test_token',
        currency='USD',
        is_active=True
    )
    db.session.add(shop)
    db.session.commit()
    return shop


@pytest.fixture
def shop_headers(sample_shop):
    """Headers for admin API requests."""
    return {
        'X-Shop-Domain': sample_shop.shop_domain,
        'X-Staff-Email': 'staff@test-shop.com',
        'Content-Type': 'application/json'
    }


@pytest.fixture
def sample_tiers(sample_shop):
    """Bronze (floor, 1%), Silver (500, 2%) and Gold (1500, 3%)."""
    from rewardspro.services.tier_catalog import TierCatalog

    catalog = TierCatalog(sample_shop.shop_domain)
    bronze = catalog.create_tier('Bronze', Decimal('1'))
    silver = catalog.create_tier('Silver', Decimal('2'), min_spend=Decimal('500'))
    gold = catalog.create_tier('Gold', Decimal('3'), min_spend=Decimal('1500'))
    return {'bronze': bronze, 'silver': silver, 'gold': gold}


@pytest.fixture
def sample_customer(sample_shop, sample_tiers):
    """A customer enrolled in Bronze with no orders."""
    from rewardspro.services.customer_service import CustomerService

    customer, _ = CustomerService(sample_shop.shop_domain).get_or_create(
        '1001', email='customer@example.com'
    )
    return customer
