"""
Custom exceptions for ResellerClub API operations

Every error carries an ErrorKind. The client decides retry vs. fail-fast from
the kind alone, so callers never have to guess.
"""

import re
from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    AUTH_ERROR = "AUTH_ERROR"
    RETRYABLE_ERROR = "RETRYABLE_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    REQUEST_TIMEOUT = "REQUEST_TIMEOUT"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    DOMAIN_NOT_AVAILABLE = "DOMAIN_NOT_AVAILABLE"
    DOMAIN_EXPIRED = "DOMAIN_EXPIRED"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    TRANSFER_NOT_ALLOWED = "TRANSFER_NOT_ALLOWED"
    INVALID_AUTH_CODE = "INVALID_AUTH_CODE"
    CUSTOMER_NOT_FOUND = "CUSTOMER_NOT_FOUND"
    CONTACT_NOT_FOUND = "CONTACT_NOT_FOUND"
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
    DOMAIN_NOT_FOUND = "DOMAIN_NOT_FOUND"
    INVALID_PARAMETER = "INVALID_PARAMETER"
    PURCHASES_DISABLED = "PURCHASES_DISABLED"
    API_ERROR = "API_ERROR"


RETRYABLE_KINDS = frozenset({ErrorKind.RETRYABLE_ERROR, ErrorKind.REQUEST_TIMEOUT})


class APIError(Exception):
    """Base exception for all API errors"""

    kind: ErrorKind = ErrorKind.API_ERROR

    def __init__(self, message: str, status_code: int = None, response_data: Any = None):
        self.message = message
        self.status_code = status_code
        self.response_data = response_data if response_data is not None else {}
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def __str__(self):
        if self.status_code:
            return f"{self.kind.value} (HTTP {self.status_code}): {self.message}"
        return f"{self.kind.value}: {self.message}"


class AuthenticationError(APIError):
    """Credentials rejected or caller IP blocked"""
    kind = ErrorKind.AUTH_ERROR


class RetryableError(APIError):
    """Transient failure worth retrying with backoff"""
    kind = ErrorKind.RETRYABLE_ERROR


class RateLimitError(RetryableError):
    """Raised when API rate limit is exceeded (HTTP 429)"""
    pass


class ServerError(RetryableError):
    """Raised when the registrar returns a 5xx error"""
    pass


class NetworkError(APIError):
    """Malformed, non-JSON or blocked response, or an unrecoverable transport failure"""
    kind = ErrorKind.NETWORK_ERROR


class RequestTimeoutError(APIError):
    """Raised when an attempt exceeds its deadline"""
    kind = ErrorKind.REQUEST_TIMEOUT

    def __init__(self, endpoint: str, timeout: Optional[float] = None):
        self.endpoint = endpoint
        self.timeout = timeout
        suffix = f" after {timeout:g}s" if timeout else ""
        super().__init__(f"Request to {endpoint} timed out{suffix}")


class ConfigurationError(APIError):
    """Raised when the client is missing credentials or settings"""
    kind = ErrorKind.CONFIGURATION_ERROR


class DomainNotAvailableError(APIError):
    """Raised when a domain is not available for purchase"""
    kind = ErrorKind.DOMAIN_NOT_AVAILABLE


class DomainExpiredError(APIError):
    """Raised when an operation needs a live domain but it has expired"""
    kind = ErrorKind.DOMAIN_EXPIRED


class InsufficientFundsError(APIError):
    """Raised when the reseller account has insufficient funds"""
    kind = ErrorKind.INSUFFICIENT_FUNDS


class TransferNotAllowedError(APIError):
    """Raised when the registry refuses a transfer"""
    kind = ErrorKind.TRANSFER_NOT_ALLOWED


class InvalidAuthCodeError(APIError):
    """Raised when a transfer auth code (EPP code) is rejected"""
    kind = ErrorKind.INVALID_AUTH_CODE


class CustomerNotFoundError(APIError):
    kind = ErrorKind.CUSTOMER_NOT_FOUND


class ContactNotFoundError(APIError):
    kind = ErrorKind.CONTACT_NOT_FOUND


class OrderNotFoundError(APIError):
    kind = ErrorKind.ORDER_NOT_FOUND


class DomainNotFoundError(APIError):
    """Raised when a domain is not found in the reseller account"""
    kind = ErrorKind.DOMAIN_NOT_FOUND


class InvalidParameterError(APIError):
    """Raised when request validation fails"""
    kind = ErrorKind.INVALID_PARAMETER


class PurchasesDisabledError(APIError):
    """Raised when a money-spending call is attempted with purchases switched off"""
    kind = ErrorKind.PURCHASES_DISABLED

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(
            f"Purchases are disabled; refusing {operation}. "
            "Set PURCHASES_ENABLED=true to allow money-spending calls."
        )


# ---------------------------------------------------------------------------
# Response-body error parsing
# ---------------------------------------------------------------------------

# Order matters: the first matching pattern wins.
_ERROR_PATTERNS = [
    (InvalidAuthCodeError, re.compile(
        r"(auth[\s-]?code|authcode|domain secret|epp code).*(invalid|incorrect|wrong|mismatch)"
        r"|(invalid|incorrect|wrong).*(auth[\s-]?code|authcode|domain secret|epp code)"
    )),
    (AuthenticationError, re.compile(
        r"access denied|not authori[sz]ed|authentication failed|invalid api[\s-]?key"
        r"|invalid (reseller|auth-?userid)|ip .*not (whitelisted|allowed)|blocked"
    )),
    (InsufficientFundsError, re.compile(
        r"insufficient (funds|balance)|not enough (funds|balance)|low balance"
    )),
    (TransferNotAllowedError, re.compile(
        r"transfer.*(not allowed|not permitted|prohibited|locked|cannot be|is not possible)"
    )),
    (CustomerNotFoundError, re.compile(
        r"customer.*(not found|does not exist|doesn't exist)|invalid customer"
    )),
    (ContactNotFoundError, re.compile(
        r"contact.*(not found|does not exist|doesn't exist)|invalid contact"
    )),
    (OrderNotFoundError, re.compile(
        r"order.*(not found|does not exist|doesn't exist)|no entity found|invalid order"
    )),
    (DomainNotFoundError, re.compile(
        r"domain.*(not found|does not exist|doesn't exist)|no such domain"
    )),
    (DomainExpiredError, re.compile(r"expired")),
    (DomainNotAvailableError, re.compile(
        r"not available|unavailable|already registered|already exists"
    )),
    (InvalidParameterError, re.compile(
        r"invalid|required|missing|must be|not a valid"
    )),
]


def is_error_payload(data: Any) -> bool:
    """
    Check a decoded body for the failure markers the registrar uses.
    HTTP 200 does not mean success: the body may still describe a failure.
    """
    if not isinstance(data, dict):
        return False

    status = data.get("status")
    if isinstance(status, str) and status.lower() in ("error", "failed"):
        return True

    if data.get("actionstatus") == "Failed":
        return True

    error = data.get("error")
    if isinstance(error, str) and error:
        return True

    return False


def extract_error_message(data: Any) -> str:
    if isinstance(data, str):
        return data.strip() or "Unknown error"
    if isinstance(data, dict):
        for key in ("message", "error", "actionstatusdesc", "description", "msg"):
            value = data.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return "Unknown error"


def parse_api_error(data: Any, status_code: Optional[int] = None) -> APIError:
    """
    Map a failure payload to the closest specific error.

    Args:
        data: Decoded response body (dict) or bare error string
        status_code: HTTP status, if known

    Returns:
        An APIError subclass instance (not raised)
    """
    message = extract_error_message(data)
    lowered = message.lower()

    for error_class, pattern in _ERROR_PATTERNS:
        if pattern.search(lowered):
            return error_class(message, status_code=status_code, response_data=data)

    return APIError(message, status_code=status_code, response_data=data)
