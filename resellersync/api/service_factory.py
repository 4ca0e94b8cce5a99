"""
Resource Service Factory
Creates resource service instances that share one rate-limited client
"""

from typing import Optional

from resellersync.api.base_service import BaseResourceService
from resellersync.api.client import ResellerClubClient
from resellersync.api.customers import CustomerService
from resellersync.api.domains import DomainService
from resellersync.api.email import EmailOrderService
from resellersync.api.pricing import PricingService
from resellersync.utils.config import Settings
from resellersync.utils.logger import get_logger

logger = get_logger(__name__)

SERVICES = {
    "DOMAIN": DomainService,
    "PRICING": PricingService,
    "EMAIL": EmailOrderService,
    "CUSTOMER": CustomerService,
}


def get_resource_service(
    service_name: str,
    client: Optional[ResellerClubClient] = None,
    config: Optional[Settings] = None
) -> BaseResourceService:
    """
    Factory function to create resource service instances.

    Args:
        service_name: "DOMAIN", "PRICING", "EMAIL" or "CUSTOMER" (case-insensitive)
        client: Shared client. Uses the process-wide default if None.
        config: Optional Settings instance. Defaults to the client's settings.

    Returns:
        Resource service instance

    Raises:
        ValueError: If service_name is invalid

    Example:
        client = ResellerClubClient()
        domains = get_resource_service("DOMAIN", client)
        pricing = get_resource_service("PRICING", client)
    """
    service_name = service_name.upper()
    service_class = SERVICES.get(service_name)

    if service_class is None:
        raise ValueError(
            f"Unknown resource service: {service_name}. "
            f"Valid options are: {', '.join(SERVICES)}"
        )

    logger.debug(f"Creating resource service: {service_name}")
    return service_class(client=client, config=config)
