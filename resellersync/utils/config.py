"""
Configuration management using Pydantic Settings
Loads and validates environment variables (and an optional .env file)
"""

from typing import List, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


SANDBOX_API_URL = "https://test.httpapi.com/api"
PRODUCTION_API_URL = "https://httpapi.com/api"
PRODUCTION_DOMAIN_CHECK_URL = "https://domaincheck.httpapi.com/api"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Environment-agnostic: supports both the ResellerClub sandbox and production
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # ResellerClub API Configuration
    resellerclub_reseller_id: str = Field(
        default="",
        description="ResellerClub reseller ID (sent as auth-userid)"
    )
    resellerclub_api_key: str = Field(
        default="",
        description="ResellerClub API key"
    )
    resellerclub_sandbox: bool = Field(
        default=True,
        description="Use the ResellerClub test environment"
    )
    resellerclub_api_url: Optional[str] = Field(
        default=None,
        description="Explicit API base URL (overrides the sandbox switch)"
    )
    resellerclub_domain_check_url: Optional[str] = Field(
        default=None,
        description="Explicit base URL for domain availability checks"
    )
    resellerclub_proxy_url: Optional[str] = Field(
        default=None,
        description="Outbound proxy for static-IP whitelisting"
    )

    # Rate limiting / retry
    max_requests_per_second: float = Field(
        default=5.0,
        gt=0,
        description="Aggregate request ceiling shared by every caller"
    )
    request_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Per-attempt deadline in seconds"
    )
    max_retries: int = Field(
        default=3,
        ge=0,
        description="Retries after the first attempt for transient failures"
    )
    retry_delay: float = Field(
        default=1.0,
        ge=0,
        description="Base backoff delay in seconds (doubles per retry)"
    )

    # Pricing cache / reconciliation
    pricing_max_age_hours: float = Field(
        default=24,
        gt=0,
        description="Staleness window for cached prices"
    )
    reconciliation_item_delay: float = Field(
        default=0.5,
        ge=0,
        description="Pause between reconciled resources in seconds"
    )

    # Safety switch for money-spending calls
    purchases_enabled: bool = Field(
        default=False,
        description="Allow registrations, renewals, transfers and seat/privacy purchases"
    )

    # Catalogue defaults
    default_currency: str = Field(
        default="USD",
        description="Currency stamped on price quotes"
    )
    supported_tlds: List[str] = Field(
        default=[".com", ".net", ".org", ".io", ".co", ".app", ".dev"],
        description="TLDs offered for suggestions"
    )
    email_product_key: str = Field(
        default="eeliteus",
        description="Default business email plan"
    )

    # Local state
    record_store_path: str = Field(
        default="data/records.json",
        description="JSON file used by the CLI record store"
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL"
    )

    @property
    def api_url(self) -> str:
        """
        Returns the ResellerClub API base URL based on environment
        """
        if self.resellerclub_api_url:
            return self.resellerclub_api_url.rstrip("/")
        if self.resellerclub_sandbox:
            return SANDBOX_API_URL
        return PRODUCTION_API_URL

    @property
    def domain_check_url(self) -> str:
        """
        Returns the base URL used for availability checks.
        Production has a dedicated host; the sandbox serves them from the test API.
        """
        if self.resellerclub_domain_check_url:
            return self.resellerclub_domain_check_url.rstrip("/")
        if self.resellerclub_sandbox:
            return self.api_url
        return PRODUCTION_DOMAIN_CHECK_URL

    @property
    def auth_params(self) -> dict:
        """
        Returns the authentication parameters sent with every API call
        """
        return {
            "auth-userid": self.resellerclub_reseller_id,
            "api-key": self.resellerclub_api_key,
        }

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v_upper

    @field_validator("resellerclub_reseller_id", "resellerclub_api_key")
    @classmethod
    def validate_credentials(cls, v: str) -> str:
        """Reject the placeholder values shipped in .env.example"""
        v = (v or "").strip()
        if v.startswith("your_"):
            raise ValueError(
                "ResellerClub credentials still hold placeholder values. "
                "Copy .env.example to .env and add your actual credentials."
            )
        return v

    def is_configured(self) -> bool:
        """Check if API credentials are present"""
        return bool(self.resellerclub_reseller_id and self.resellerclub_api_key)

    def is_production(self) -> bool:
        """Check if running against the production API"""
        return not self.resellerclub_sandbox


# Singleton instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get or create the settings singleton instance.
    Loads configuration from the environment (and .env if present) on first call.

    Returns:
        Settings instance

    Raises:
        ValidationError: If environment variables are invalid
    """
    global _settings

    if _settings is None:
        _settings = Settings()

    return _settings


def reset_settings():
    """
    Reset the settings singleton (useful for testing)
    """
    global _settings
    _settings = None
