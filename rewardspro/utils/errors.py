"""
Standardized error response utilities for the RewardsPro API.

Provides consistent error response format across all endpoints:
{
    "error": {
        "message": "User-friendly error message",
        "code": "ERROR_CODE"
    }
}

Usage:
    from rewardspro.utils.errors import error_response, ErrorCode

    return error_response("Customer not found", ErrorCode.NOT_FOUND, 404)
"""
import logging
from enum import Enum
from flask import jsonify
from typing import Optional

from .exceptions import (
    RewardsError,
    NotFoundError,
    ValidationError,
    InputRejectedError,
    CatalogConsistencyError,
    InvalidStatusTransitionError,
    ExternalServiceError,
    DuplicateError,
    LedgerIntegrityError,
)

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Standardized error codes for API responses."""

    # Validation Errors (400)
    INVALID_REQUEST = "INVALID_REQUEST"
    MISSING_FIELD = "MISSING_FIELD"
    INVALID_FIELD = "INVALID_FIELD"
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Not Found (404)
    NOT_FOUND = "NOT_FOUND"
    CUSTOMER_NOT_FOUND = "CUSTOMER_NOT_FOUND"
    TIER_NOT_FOUND = "TIER_NOT_FOUND"
    SHOP_NOT_FOUND = "SHOP_NOT_FOUND"
    JOB_NOT_FOUND = "JOB_NOT_FOUND"

    # Conflict (409)
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"
    STATE_CONFLICT = "STATE_CONFLICT"
    CATALOG_CONSISTENCY = "CATALOG_CONSISTENCY"

    # Business Logic Errors (422)
    INPUT_REJECTED = "INPUT_REJECTED"
    INVALID_STATUS = "INVALID_STATUS"
    LEDGER_INTEGRITY = "LEDGER_INTEGRITY"

    # External Service Errors (502)
    SHOPIFY_ERROR = "SHOPIFY_ERROR"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"

    # Server Errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"


def error_response(
    message: str,
    code: ErrorCode = ErrorCode.INTERNAL_ERROR,
    status_code: int = 500,
    log_error: bool = True,
    details: Optional[dict] = None
) -> tuple:
    """
    Create a standardized error response.

    Args:
        message: User-friendly error message
        code: Error code from ErrorCode enum
        status_code: HTTP status code
        log_error: Whether to log the error (default True for 500s)
        details: Optional additional details (only logged, not returned to user)

    Returns:
        Tuple of (response, status_code) for Flask
    """
    if log_error and status_code >= 500:
        logger.error(f"API Error [{code}]: {message}", extra={"details": details})
    elif log_error and status_code >= 400:
        logger.warning(f"API Error [{code}]: {message}", extra={"details": details})

    response = {
        "error": {
            "message": message,
            "code": code.value if isinstance(code, ErrorCode) else code
        }
    }

    return jsonify(response), status_code


def bad_request(message: str, code: ErrorCode = ErrorCode.INVALID_REQUEST) -> tuple:
    """400 Bad Request error."""
    return error_response(message, code, 400, log_error=False)


def not_found(message: str, code: ErrorCode = ErrorCode.NOT_FOUND) -> tuple:
    """404 Not Found error."""
    return error_response(message, code, 404, log_error=False)


def internal_error(message: str = "An unexpected error occurred", details: Optional[dict] = None) -> tuple:
    """500 Internal Server Error."""
    return error_response(message, ErrorCode.INTERNAL_ERROR, 500, log_error=True, details=details)


def status_for_exception(error: RewardsError) -> int:
    """Map a business exception to its HTTP status code."""
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, (ValidationError,)):
        return 400
    if isinstance(error, (CatalogConsistencyError, DuplicateError, InvalidStatusTransitionError)):
        return 409
    if isinstance(error, (InputRejectedError, LedgerIntegrityError)):
        return 422
    if isinstance(error, ExternalServiceError):
        return 502
    return 400


def rewards_error_response(error: RewardsError) -> tuple:
    """Render a RewardsError as a standardized error response."""
    status_code = status_for_exception(error)
    return error_response(error.message, error.code, status_code, log_error=status_code >= 500)
