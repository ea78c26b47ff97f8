"""
Broker Engine - Error Taxonomy.

============================================================
PURPOSE
============================================================
Classification of exchange failures into the engine's
exception types.

ERROR CATEGORIES:
1. Authentication - key invalid, missing permission, bad signature
2. Exchange - exchange rejected the request
3. Network / Timeout - communication failures
4. Rate limit - exchange throttled the key

Authentication failures surface as CredentialError,
everything else as UpstreamError.

============================================================
"""

from enum import Enum
from typing import Dict
from dataclasses import dataclass

from .types import BrokerEngineError, CredentialError, UpstreamError


# ============================================================
# ERROR CATEGORIES
# ============================================================

class ErrorCategory(Enum):
    """Error category classification."""

    AUTHENTICATION = "AUTHENTICATION"
    EXCHANGE = "EXCHANGE"
    NETWORK = "NETWORK"
    TIMEOUT = "TIMEOUT"
    RATE_LIMIT = "RATE_LIMIT"


@dataclass
class ErrorCodeInfo:
    """Information about an error code."""

    code: str
    category: ErrorCategory
    is_retryable: bool
    description: str


ERROR_CODES: Dict[str, ErrorCodeInfo] = {
    # ========== AUTHENTICATION ERRORS ==========
    "AUT_INVALID_KEY": ErrorCodeInfo(
        code="AUT_INVALID_KEY",
        category=ErrorCategory.AUTHENTICATION,
        is_retryable=False,
        description="API key is invalid, IP is not whitelisted, or permission is missing",
    ),
    "AUT_KEY_FORMAT": ErrorCodeInfo(
        code="AUT_KEY_FORMAT",
        category=ErrorCategory.AUTHENTICATION,
        is_retryable=False,
        description="API key format is invalid",
    ),
    "AUT_SIGNATURE_FAILED": ErrorCodeInfo(
        code="AUT_SIGNATURE_FAILED",
        category=ErrorCategory.AUTHENTICATION,
        is_retryable=False,
        description="Signature verification failed",
    ),
    "AUT_UNAUTHORIZED": ErrorCodeInfo(
        code="AUT_UNAUTHORIZED",
        category=ErrorCategory.AUTHENTICATION,
        is_retryable=False,
        description="Not authorized to execute this request",
    ),

    # ========== EXCHANGE ERRORS ==========
    "EXC_ORDER_REJECTED": ErrorCodeInfo(
        code="EXC_ORDER_REJECTED",
        category=ErrorCategory.EXCHANGE,
        is_retryable=False,
        description="Exchange rejected the new order",
    ),
    "EXC_FILTER_FAILURE": ErrorCodeInfo(
        code="EXC_FILTER_FAILURE",
        category=ErrorCategory.EXCHANGE,
        is_retryable=False,
        description="Order violates a symbol filter (price, lot size, notional)",
    ),
    "EXC_INVALID_SYMBOL": ErrorCodeInfo(
        code="EXC_INVALID_SYMBOL",
        category=ErrorCategory.EXCHANGE,
        is_retryable=False,
        description="Symbol is invalid or not tradeable",
    ),
    "EXC_WOULD_TRIGGER": ErrorCodeInfo(
        code="EXC_WOULD_TRIGGER",
        category=ErrorCategory.EXCHANGE,
        is_retryable=False,
        description="Stop order would trigger immediately",
    ),
    "EXC_INSUFFICIENT_BALANCE": ErrorCodeInfo(
        code="EXC_INSUFFICIENT_BALANCE",
        category=ErrorCategory.EXCHANGE,
        is_retryable=False,
        description="Insufficient balance or margin",
    ),
    "EXC_TIMESTAMP": ErrorCodeInfo(
        code="EXC_TIMESTAMP",
        category=ErrorCategory.EXCHANGE,
        is_retryable=True,
        description="Request timestamp outside the receive window",
    ),
    "EXC_UNKNOWN_ERROR": ErrorCodeInfo(
        code="EXC_UNKNOWN_ERROR",
        category=ErrorCategory.EXCHANGE,
        is_retryable=False,
        description="Unknown exchange error",
    ),

    # ========== NETWORK / TIMEOUT ==========
    "NET_CONNECTION_FAILED": ErrorCodeInfo(
        code="NET_CONNECTION_FAILED",
        category=ErrorCategory.NETWORK,
        is_retryable=True,
        description="Failed to connect to exchange",
    ),
    "TMO_READ": ErrorCodeInfo(
        code="TMO_READ",
        category=ErrorCategory.TIMEOUT,
        is_retryable=True,
        description="Read timeout",
    ),

    # ========== RATE LIMIT ==========
    "RTE_API_WEIGHT": ErrorCodeInfo(
        code="RTE_API_WEIGHT",
        category=ErrorCategory.RATE_LIMIT,
        is_retryable=True,
        description="API weight limit exceeded",
    ),
    "RTE_ORDER_LIMIT": ErrorCodeInfo(
        code="RTE_ORDER_LIMIT",
        category=ErrorCategory.RATE_LIMIT,
        is_retryable=True,
        description="Order rate limit exceeded",
    ),
}


# ============================================================
# EXCHANGE ERROR CODE MAPPING
# ============================================================

# Binance error code to internal error code mapping
BINANCE_ERROR_MAPPING: Dict[int, str] = {
    -1002: "AUT_UNAUTHORIZED",
    -1003: "RTE_API_WEIGHT",  # Too many requests
    -1013: "EXC_FILTER_FAILURE",
    -1015: "RTE_ORDER_LIMIT",  # Too many new orders
    -1021: "EXC_TIMESTAMP",
    -1022: "AUT_SIGNATURE_FAILED",
    -1121: "EXC_INVALID_SYMBOL",
    -2010: "EXC_ORDER_REJECTED",
    -2014: "AUT_KEY_FORMAT",
    -2015: "AUT_INVALID_KEY",  # Invalid API-key, IP, or permissions
    -2018: "EXC_INSUFFICIENT_BALANCE",
    -2019: "EXC_INSUFFICIENT_BALANCE",  # Margin insufficient
    -2021: "EXC_WOULD_TRIGGER",
    -4164: "EXC_FILTER_FAILURE",  # Notional too small
}


def get_error_info(code: str) -> ErrorCodeInfo:
    """
    Get error info for a code.

    Args:
        code: Internal error code

    Returns:
        ErrorCodeInfo or the unknown exchange error
    """
    return ERROR_CODES.get(code, ERROR_CODES["EXC_UNKNOWN_ERROR"])


def map_binance_error(binance_code: int) -> str:
    """Map Binance error code to internal error code."""
    return BINANCE_ERROR_MAPPING.get(binance_code, "EXC_UNKNOWN_ERROR")


def to_engine_error(code: str, message: str) -> BrokerEngineError:
    """
    Build the engine exception for an internal error code.

    Authentication failures become CredentialError so the boundary
    reports them as client faults rather than upstream outages.
    """
    info = get_error_info(code)
    if info.category == ErrorCategory.AUTHENTICATION:
        return CredentialError(message, code=code)
    return UpstreamError(message, code=code, is_retryable=info.is_retryable)
