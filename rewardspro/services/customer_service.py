"""
Customer Service.

Customers are created the first time the engine sees them (an order, a
proxy lookup, a migration page) and enrolled in the shop's floor tier.
They are never hard-deleted.
"""
import logging
from typing import Optional, Tuple

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models.customer import Customer
from ..utils.exceptions import CatalogConsistencyError, CustomerNotFoundError, ValidationError
from .tier_evaluator import TierEvaluator

logger = logging.getLogger(__name__)


def normalize_customer_ref(customer_ref) -> str:
    """
    Numeric Shopify customer ID from either a bare ID or a GID
    (gid://shopify/Customer/123).
    """
    if customer_ref is None:
        raise ValidationError('Customer reference is required', 'customer_id')
    ref = str(customer_ref).strip()
    if ref.startswith('gid://'):
        ref = ref.rsplit('/', 1)[-1]
    if not ref:
        raise ValidationError('Customer reference is required', 'customer_id')
    return ref


class CustomerService:
    """Customer lookup and first-sighting enrollment for one shop."""

    def __init__(self, shop_domain: str):
        self.shop_domain = shop_domain

    def get(self, customer_id: int) -> Customer:
        customer = Customer.query.filter_by(id=customer_id, shop_domain=self.shop_domain).first()
        if not customer:
            raise CustomerNotFoundError(customer_id)
        return customer

    def find_by_external_id(self, customer_ref) -> Optional[Customer]:
        return Customer.query.filter_by(
            shop_domain=self.shop_domain,
            external_customer_id=normalize_customer_ref(customer_ref),
        ).first()

    def get_or_create(
        self,
        customer_ref,
        email: Optional[str] = None,
        enroll: bool = True,
        triggered_by: str = 'system',
    ) -> Tuple[Customer, bool]:
        """
        Get or create a customer by Shopify customer ID.

        Args:
            customer_ref: Shopify customer ID or GID
            email: Stored on create, and filled in if missing on an existing row
            enroll: Assign the initial tier to a newly created customer
            triggered_by: Recorded on the initial tier assignment

        Returns:
            (customer, created)
        """
        external_id = normalize_customer_ref(customer_ref)

        customer = Customer.query.filter_by(
            shop_domain=self.shop_domain,
            external_customer_id=external_id,
        ).first()
        if customer:
            if email and not customer.email:
                customer.email = email
                db.session.commit()
            return customer, False

        customer = Customer(
            shop_domain=self.shop_domain,
            external_customer_id=external_id,
            email=email,
        )
        db.session.add(customer)
        try:
            db.session.commit()
        except IntegrityError:
            # Another request created the same customer first
            db.session.rollback()
            customer = Customer.query.filter_by(
                shop_domain=self.shop_domain,
                external_customer_id=external_id,
            ).first()
            if not customer:
                raise
            return customer, False

        logger.info(f"Created customer {customer.id} ({external_id}) for {self.shop_domain}")

        if enroll:
            try:
                TierEvaluator(self.shop_domain).assign_initial_tier(customer, triggered_by=triggered_by)
            except CatalogConsistencyError as e:
                # No active tiers yet; the next evaluation enrolls them
                db.session.rollback()
                logger.warning(f"Customer {customer.id} not enrolled: {e.message}")

        return customer, True
