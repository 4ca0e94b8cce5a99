"""
API Layer - ResellerClub client and resource services
All services share one rate-limited client
"""

# Client
from resellersync.api.client import ResellerClubClient, get_client, reset_client

# Resource services
from resellersync.api.base_service import BaseResourceService
from resellersync.api.domains import DomainService
from resellersync.api.pricing import PricingService
from resellersync.api.email import EmailOrderService
from resellersync.api.customers import CustomerService

# Factory
from resellersync.api.service_factory import get_resource_service

# Exceptions
from resellersync.api.exceptions import (
    APIError,
    AuthenticationError,
    ConfigurationError,
    ContactNotFoundError,
    CustomerNotFoundError,
    DomainExpiredError,
    DomainNotAvailableError,
    DomainNotFoundError,
    ErrorKind,
    InsufficientFundsError,
    InvalidAuthCodeError,
    InvalidParameterError,
    NetworkError,
    OrderNotFoundError,
    PurchasesDisabledError,
    RateLimitError,
    RequestTimeoutError,
    RetryableError,
    ServerError,
    TransferNotAllowedError,
)

__all__ = [
    # Client
    "ResellerClubClient",
    "get_client",
    "reset_client",

    # Services
    "BaseResourceService",
    "DomainService",
    "PricingService",
    "EmailOrderService",
    "CustomerService",

    # Factory
    "get_resource_service",

    # Exceptions
    "APIError",
    "AuthenticationError",
    "ConfigurationError",
    "ContactNotFoundError",
    "CustomerNotFoundError",
    "DomainExpiredError",
    "DomainNotAvailableError",
    "DomainNotFoundError",
    "ErrorKind",
    "InsufficientFundsError",
    "InvalidAuthCodeError",
    "InvalidParameterError",
    "NetworkError",
    "OrderNotFoundError",
    "PurchasesDisabledError",
    "RateLimitError",
    "RequestTimeoutError",
    "RetryableError",
    "ServerError",
    "TransferNotAllowedError",
]
