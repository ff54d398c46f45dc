"""
Custom exceptions for RewardsPro business logic.

These exceptions provide more specific error handling than generic Exception,
allowing for better error messages and appropriate HTTP status codes.
"""


class RewardsError(Exception):
    """Base exception for all RewardsPro business logic errors."""

    def __init__(self, message: str, code: str = "REWARDS_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class NotFoundError(RewardsError):
    """Resource not found."""

    def __init__(self, resource: str, identifier=None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with ID {identifier} not found"
        super().__init__(message, f"{resource.upper().replace(' ', '_')}_NOT_FOUND")


class CustomerNotFoundError(NotFoundError):
    """Customer not found."""

    def __init__(self, identifier=None):
        super().__init__("Customer", identifier)


class TierNotFoundError(NotFoundError):
    """Tier not found."""

    def __init__(self, identifier=None):
        super().__init__("Tier", identifier)


class ShopNotFoundError(NotFoundError):
    """Shop not found."""

    def __init__(self, identifier=None):
        super().__init__("Shop", identifier)


class MigrationJobNotFoundError(NotFoundError):
    """Migration job not found."""

    def __init__(self, identifier=None):
        super().__init__("Migration job", identifier)


class ValidationError(RewardsError):
    """Invalid input data."""

    def __init__(self, message: str, field: str = None):
        self.field = field
        code = f"INVALID_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(message, code)


class InputRejectedError(RewardsError):
    """
    An order or event that cannot be processed yet.

    Callers skip and log the input; it never aborts a batch.
    """

    def __init__(self, message: str, code: str = "INPUT_REJECTED"):
        super().__init__(message, code)


class PaymentDataMissingError(InputRejectedError):
    """Order has no net payment figure, so its eligible amount is unknown."""

    def __init__(self, order_id=None):
        self.order_id = order_id
        message = "Order has no net payment amount"
        if order_id:
            message = f"Order {order_id} has no net payment amount"
        super().__init__(message, "PAYMENT_DATA_MISSING")


class CatalogConsistencyError(RewardsError):
    """Tier catalog mutation would break catalog invariants."""

    def __init__(self, message: str):
        super().__init__(message, "CATALOG_CONSISTENCY")


class InvalidStatusTransitionError(RewardsError):
    """Invalid status transition for a resource."""

    def __init__(self, resource: str, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        message = f"Cannot change {resource} status from '{from_status}' to '{to_status}'"
        super().__init__(message, "INVALID_STATUS_TRANSITION")


class LedgerIntegrityError(RewardsError):
    """Ledger entries and cached balance disagree."""

    def __init__(self, customer_id: int, message: str):
        self.customer_id = customer_id
        super().__init__(f"Customer {customer_id}: {message}", "LEDGER_INTEGRITY")


class ExternalServiceError(RewardsError):
    """Error communicating with an external system."""

    def __init__(self, message: str, original_error: Exception = None, code: str = "EXTERNAL_SERVICE_ERROR"):
        self.original_error = original_error
        super().__init__(message, code)


class ShopifyError(ExternalServiceError):
    """Error communicating with Shopify API."""

    def __init__(self, message: str, original_error: Exception = None):
        super().__init__(message, original_error, "SHOPIFY_ERROR")


class FeedUnavailableError(ExternalServiceError):
    """Order feed could not be read after the allowed retries."""

    def __init__(self, message: str, original_error: Exception = None):
        super().__init__(message, original_error, "FEED_UNAVAILABLE")


class DuplicateError(RewardsError):
    """Resource already exists."""

    def __init__(self, resource: str, identifier=None):
        message = f"{resource} already exists"
        if identifier:
            message = f"{resource} with {identifier} already exists"
        super().__init__(message, "DUPLICATE_ENTRY")
