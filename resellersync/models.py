"""
Data model shared by the resource services, the pricing cache and the
reconciliation engine (Pydantic v2).

Remote responses are decoded field-by-field into these types at the service
boundary, so nothing downstream handles raw registrar payloads.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class AvailabilityStatus(str, Enum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    PREMIUM = "premium"
    # No matching entry in the response. Never to be read as "unavailable".
    UNKNOWN = "unknown"


class PricingTier(str, Enum):
    CUSTOMER = "customer"
    RESELLER = "reseller"
    COST = "cost"


class DurationUnit(str, Enum):
    YEARS = "years"
    MONTHS = "months"


class ResourceType(str, Enum):
    DOMAIN = "domain"
    EMAIL = "email"


# ---------------------------------------------------------------------------
# Remote-facing types
# ---------------------------------------------------------------------------

class DomainAvailability(BaseModel):
    model_config = ConfigDict(frozen=True)

    domain: str
    status: AvailabilityStatus
    class_key: Optional[str] = None

    @property
    def is_available(self) -> bool:
        return self.status == AvailabilityStatus.AVAILABLE


class DomainDetails(BaseModel):
    order_id: str
    domain_name: str
    current_status: str = ""
    creation_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    auto_renew: bool = False
    privacy_protection: bool = False
    transfer_lock: bool = False
    registrant_contact_id: str = ""
    admin_contact_id: str = ""
    tech_contact_id: str = ""
    billing_contact_id: str = ""
    nameservers: List[str] = Field(default_factory=list)


class EmailOrderDetails(BaseModel):
    order_id: str
    domain_name: str = ""
    product_key: Optional[str] = None
    current_status: str = ""
    creation_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    number_of_accounts: int = 0


class OrderResult(BaseModel):
    order_id: str
    invoice_id: Optional[str] = None


class CustomerDetails(BaseModel):
    customer_id: str
    username: str = ""
    name: str = ""
    company: str = ""
    status: str = ""


class ContactDetails(BaseModel):
    contact_id: str
    name: str = ""
    email: str = ""
    contact_type: str = ""
    customer_id: str = ""


class PriceTable(BaseModel):
    """
    Normalized pricing for one resource key as returned by the registrar,
    still in decimal major units: {action: {duration: price}}.
    """

    resource_key: str
    resource_type: ResourceType
    duration_unit: DurationUnit
    currency: str
    prices: Dict[str, Dict[int, Decimal]]
    slab: Optional[str] = None


# ---------------------------------------------------------------------------
# Cache types
# ---------------------------------------------------------------------------

class PriceQuote(BaseModel):
    """A single price. `amount` is in minor currency units (cents)."""

    model_config = ConfigDict(frozen=True)

    resource_key: str
    action: str
    duration: int
    duration_unit: DurationUnit
    amount: int = Field(ge=0)
    currency: str

    @property
    def major_amount(self) -> Decimal:
        return Decimal(self.amount) / 100


class CachedPriceRow(BaseModel):
    """
    Every action/duration price for one (resource key, tier[, slab]).
    Always written whole.
    """

    resource_key: str
    resource_type: ResourceType
    pricing_tier: PricingTier
    slab: Optional[str] = None
    duration_unit: DurationUnit
    currency: str
    prices: Dict[str, Dict[int, int]]
    source_endpoint: str
    last_refreshed_at: datetime

    def quote(self, action: str, duration: int = 1) -> Optional[PriceQuote]:
        amount = self.prices.get(action, {}).get(duration)
        if amount is None:
            return None
        return PriceQuote(
            resource_key=self.resource_key,
            action=action,
            duration=duration,
            duration_unit=self.duration_unit,
            amount=amount,
            currency=self.currency,
        )

    def is_fresh(self, max_age_hours: float, now: datetime) -> bool:
        return now - self.last_refreshed_at <= timedelta(hours=max_age_hours)


class PricingSyncResult(BaseModel):
    success: bool
    sync_type: str
    pricing_tier: str
    entries_refreshed: int = 0
    api_calls_made: int = 0
    duration_ms: int = 0
    error: Optional[str] = None
    tier_errors: Dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Reconciliation types
# ---------------------------------------------------------------------------

class Discrepancy(BaseModel):
    resource_type: str
    resource_id: str
    resource_name: str
    field: str
    local_value: Any = None
    remote_value: Any = None


class ReconciliationFailure(BaseModel):
    resource_id: str
    resource_name: str
    error_kind: str
    message: str


class ReconciliationResult(BaseModel):
    resource_type: str
    checked: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    discrepancies: List[Discrepancy] = Field(default_factory=list)
    failures: List[ReconciliationFailure] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
