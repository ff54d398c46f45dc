"""
Utility modules for RewardsPro.
"""
from .logging_config import setup_logging, get_logger
from .money import ZERO, CENTS, to_decimal, to_display, round_down_cents, format_amount
from .errors import (
    ErrorCode,
    error_response,
    bad_request,
    not_found,
    internal_error,
    rewards_error_response
)
from .exceptions import (
    RewardsError,
    NotFoundError,
    CustomerNotFoundError,
    TierNotFoundError,
    ShopNotFoundError,
    MigrationJobNotFoundError,
    ValidationError,
    InputRejectedError,
    PaymentDataMissingError,
    CatalogConsistencyError,
    InvalidStatusTransitionError,
    LedgerIntegrityError,
    ExternalServiceError,
    ShopifyError,
    FeedUnavailableError,
    DuplicateError
)
