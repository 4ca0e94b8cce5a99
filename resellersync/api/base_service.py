"""
Base Resource Service
Common plumbing for the resource-specific request builders / response mappers
"""

from abc import ABC
from typing import Any, Dict, Optional

from resellersync.api.client import ResellerClubClient, get_client
from resellersync.api.exceptions import PurchasesDisabledError
from resellersync.utils.config import Settings, get_settings
from resellersync.utils.logger import get_logger

logger = get_logger(__name__)


class BaseResourceService(ABC):
    """
    Abstract base class for resource services.

    Each service builds the parameter set for one family of endpoints, calls
    the shared rate-limited client, and decodes the response into model types.
    """

    def __init__(
        self,
        client: Optional[ResellerClubClient] = None,
        config: Optional[Settings] = None
    ):
        """
        Initialize the service.

        Args:
            client: Rate-limited client. Falls back to the process-wide instance.
            config: Optional Settings instance. Defaults to the client's settings.
        """
        self._client = client
        self._config = config

    @property
    def client(self) -> ResellerClubClient:
        if self._client is None:
            self._client = get_client()
        return self._client

    @property
    def config(self) -> Settings:
        if self._config is None:
            self._config = self._client.config if self._client is not None else get_settings()
        return self._config

    def require_purchases(self, operation: str) -> None:
        """
        Guard for money-spending calls. Must run before any remote call.

        Raises:
            PurchasesDisabledError: If purchases are switched off
        """
        if not self.config.purchases_enabled:
            logger.warning(f"Blocked {operation}: purchases are disabled")
            raise PurchasesDisabledError(operation)

    @staticmethod
    def _first(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
        """Return the first present, non-empty value among alternative field names."""
        for key in keys:
            value = data.get(key)
            if value not in (None, ""):
                return value
        return default

    def get_service_name(self) -> str:
        """
        Get service name.
        Default implementation returns class name.
        """
        return self.__class__.__name__.replace("Service", "")
