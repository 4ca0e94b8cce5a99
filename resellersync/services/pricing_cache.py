"""
Pricing Cache
Serves registrar prices from the record store within a staleness window,
falls back to one live call on a miss, and refreshes whole price lists

Amounts are stored as integer minor units (cents). Conversion from the
registrar's decimal major units happens once, when a row is built.
"""

import asyncio
import time
import uuid
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from resellersync.api.exceptions import APIError
from resellersync.api.pricing import PricingService, endpoint_for
from resellersync.models import (
    CachedPriceRow,
    PriceQuote,
    PriceTable,
    PricingSyncResult,
    PricingTier,
    ResourceType,
)
from resellersync.services.record_store import RecordStore, RecordStoreError
from resellersync.utils.config import Settings, get_settings
from resellersync.utils.logger import get_logger
from resellersync.utils.validators import normalize_tld, utcnow

logger = get_logger(__name__)

DOMAIN_COLLECTION = "domain_pricing_cache"
EMAIL_COLLECTION = "email_pricing_cache"
SYNC_LOG_COLLECTION = "pricing_sync_log"

CONFLICT_KEYS = {
    ResourceType.DOMAIN: ("resource_key", "pricing_tier"),
    ResourceType.EMAIL: ("resource_key", "pricing_tier", "slab"),
}

COLLECTIONS = {
    ResourceType.DOMAIN: DOMAIN_COLLECTION,
    ResourceType.EMAIL: EMAIL_COLLECTION,
}

DEFAULT_TIERS = (PricingTier.CUSTOMER, PricingTier.COST)

CENT = Decimal("0.01")


def to_minor_units(amount: Any) -> int:
    """
    Convert a decimal major-unit price to integer minor units.

    10.20 -> 1020. Rounds half-up at the cent.

    Raises:
        ValueError: If the amount is negative or not a number
    """
    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    if not value.is_finite():
        raise ValueError(f"Price is not a finite number: {amount}")
    if value < 0:
        raise ValueError(f"Negative price: {amount}")
    return int(value.quantize(CENT, rounding=ROUND_HALF_UP) * 100)


def from_minor_units(amount: int) -> Decimal:
    """1020 -> Decimal('10.20')"""
    return (Decimal(amount) / 100).quantize(CENT)


class PricingCache:
    """
    Read-through price cache over a RecordStore.

    Example:
        cache = PricingCache(PricingService(client), InMemoryRecordStore())
        await cache.refresh_all()
        quote = await cache.get_domain_quote("com", "register", 1)
    """

    def __init__(
        self,
        pricing_service: PricingService,
        store: RecordStore,
        config: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.pricing_service = pricing_service
        self.store = store
        self.config = config or get_settings()
        self.clock = clock
        self._refresh_tasks: Dict[Tuple[ResourceType, PricingTier], asyncio.Task] = {}

    # ============================================================================
    # Read path
    # ============================================================================

    async def get_domain_price(
        self,
        tld: str,
        tier: PricingTier = PricingTier.CUSTOMER,
        max_age_hours: Optional[float] = None,
        customer_id: Optional[str] = None
    ) -> Optional[CachedPriceRow]:
        """
        Get every cached price for one TLD and tier.

        A fresh row is returned without any remote call. A stale or missing
        row costs one live call for this TLD; a full refresh of the tier then
        runs in the background. If the live call fails a stale row is served.

        Returns:
            CachedPriceRow, or None when the registrar does not price the TLD

        Raises:
            APIError: If the live call fails and nothing is cached
        """
        tld = normalize_tld(tld)
        tier = PricingTier(tier)
        max_age = max_age_hours if max_age_hours is not None else self.config.pricing_max_age_hours

        cached = await self._load_row(DOMAIN_COLLECTION, {
            "resource_key": tld,
            "pricing_tier": tier.value,
        })
        if cached is not None and cached.is_fresh(max_age, self.clock()):
            logger.debug(f"Cache hit: .{tld} {tier.value}")
            return cached

        logger.info(f"Cache {'stale' if cached else 'miss'}: .{tld} {tier.value}, fetching live")

        try:
            tables = await self.pricing_service.get_domain_pricing(tier, [tld], customer_id)
        except APIError as e:
            if cached is not None:
                logger.error(
                    f"Live pricing for .{tld} failed, serving row from "
                    f"{cached.last_refreshed_at.isoformat()}: {e}"
                )
                return cached
            raise

        self._schedule_refresh(ResourceType.DOMAIN, tier, customer_id)

        rows = await self._store_tables(ResourceType.DOMAIN, tier, tables)
        if not rows:
            logger.warning(f"No live {tier.value} price for .{tld}")
            return None
        return rows[0]

    async def get_domain_quote(
        self,
        tld: str,
        action: str = "register",
        years: int = 1,
        tier: PricingTier = PricingTier.CUSTOMER
    ) -> Optional[PriceQuote]:
        row = await self.get_domain_price(tld, tier)
        if row is None:
            return None
        return row.quote(action, years)

    async def get_email_price(
        self,
        product_key: str,
        tier: PricingTier = PricingTier.CUSTOMER,
        slab: Optional[str] = None,
        max_age_hours: Optional[float] = None,
        customer_id: Optional[str] = None
    ) -> List[CachedPriceRow]:
        """
        Get cached email plan prices, one row per account slab.

        Args:
            product_key: Plan key, e.g. "eeliteus" or "titanmailglobal_1762"
            tier: Pricing tier
            slab: Restrict to one account slab ("1-5"). None returns all slabs.

        Raises:
            APIError: If the live call fails and nothing is cached
        """
        tier = PricingTier(tier)
        max_age = max_age_hours if max_age_hours is not None else self.config.pricing_max_age_hours

        filters = {"resource_key": product_key, "pricing_tier": tier.value}
        if slab is not None:
            filters["slab"] = slab
        cached = await self._load_rows(EMAIL_COLLECTION, filters)

        now = self.clock()
        if cached and all(row.is_fresh(max_age, now) for row in cached):
            logger.debug(f"Cache hit: {product_key} {tier.value}")
            return cached

        logger.info(f"Cache {'stale' if cached else 'miss'}: {product_key} {tier.value}, fetching live")

        try:
            tables = await self.pricing_service.get_email_pricing(tier, [product_key], customer_id)
        except APIError as e:
            if cached:
                logger.error(f"Live pricing for {product_key} failed, serving cached rows: {e}")
                return cached
            raise

        self._schedule_refresh(ResourceType.EMAIL, tier, customer_id)

        rows = await self._store_tables(ResourceType.EMAIL, tier, tables)
        if slab is not None:
            rows = [row for row in rows if row.slab == slab]
        return rows

    async def get_all_cached_email_plans(
        self,
        tier: PricingTier = PricingTier.CUSTOMER
    ) -> Dict[str, Dict[str, Any]]:
        """
        Every cached email plan for a tier, in the registrar's response shape:

            {"eeliteus": {"email_account_ranges": {"1-5": {"add": {"1": Decimal("0.86")}}}}}

        Reads the cache only, never the registrar.
        """
        tier = PricingTier(tier)
        rows = await self._load_rows(EMAIL_COLLECTION, {"pricing_tier": tier.value})

        plans: Dict[str, Dict[str, Any]] = {}
        for row in rows:
            ranges = plans.setdefault(row.resource_key, {"email_account_ranges": {}})["email_account_ranges"]
            ranges[row.slab or ""] = {
                action: {str(months): from_minor_units(amount) for months, amount in sorted(durations.items())}
                for action, durations in row.prices.items()
            }
        return plans

    async def is_cache_stale(
        self,
        resource_type: ResourceType = ResourceType.DOMAIN,
        tier: PricingTier = PricingTier.CUSTOMER,
        max_age_hours: Optional[float] = None
    ) -> bool:
        """True when nothing is cached for the tier or any row is older than the window."""
        resource_type = ResourceType(resource_type)
        tier = PricingTier(tier)
        max_age = max_age_hours if max_age_hours is not None else self.config.pricing_max_age_hours

        rows = await self._load_rows(COLLECTIONS[resource_type], {"pricing_tier": tier.value})
        if not rows:
            return True
        now = self.clock()
        return any(not row.is_fresh(max_age, now) for row in rows)

    # ============================================================================
    # Refresh path
    # ============================================================================

    async def refresh_domain_pricing(
        self,
        tiers: Optional[Iterable[PricingTier]] = None,
        tlds: Optional[Iterable[str]] = None,
        customer_id: Optional[str] = None
    ) -> PricingSyncResult:
        """
        Refresh domain prices, one remote call per tier.

        Args:
            tiers: Tiers to refresh (default: customer and cost)
            tlds: TLDs to cache. None caches every TLD in the response.
            customer_id: Optional customer for customer-tier prices
        """
        keys = [normalize_tld(tld) for tld in tlds] if tlds is not None else None
        return await self._refresh(ResourceType.DOMAIN, tiers, keys, customer_id)

    async def refresh_email_pricing(
        self,
        tiers: Optional[Iterable[PricingTier]] = None,
        product_keys: Optional[Iterable[str]] = None,
        customer_id: Optional[str] = None
    ) -> PricingSyncResult:
        """Refresh email plan prices. None for product_keys caches every plan found."""
        keys = list(product_keys) if product_keys is not None else None
        return await self._refresh(ResourceType.EMAIL, tiers, keys, customer_id)

    async def refresh_all(
        self,
        tiers: Optional[Iterable[PricingTier]] = None,
        tlds: Optional[Iterable[str]] = None,
        product_keys: Optional[Iterable[str]] = None,
        customer_id: Optional[str] = None
    ) -> PricingSyncResult:
        tiers = self._tiers(tiers)
        domain = await self.refresh_domain_pricing(tiers, tlds, customer_id)
        email = await self.refresh_email_pricing(tiers, product_keys, customer_id)

        tier_errors = {f"domain:{k}": v for k, v in domain.tier_errors.items()}
        tier_errors.update({f"email:{k}": v for k, v in email.tier_errors.items()})

        return PricingSyncResult(
            success=domain.success and email.success,
            sync_type="full",
            pricing_tier=domain.pricing_tier,
            entries_refreshed=domain.entries_refreshed + email.entries_refreshed,
            api_calls_made=domain.api_calls_made + email.api_calls_made,
            duration_ms=domain.duration_ms + email.duration_ms,
            error=email.error or domain.error,
            tier_errors=tier_errors,
        )

    async def _refresh(
        self,
        resource_type: ResourceType,
        tiers: Optional[Iterable[PricingTier]],
        keys: Optional[List[str]],
        customer_id: Optional[str]
    ) -> PricingSyncResult:
        tiers = self._tiers(tiers)
        started = time.monotonic()
        refreshed = 0
        api_calls = 0
        last_error: Optional[str] = None
        tier_errors: Dict[str, str] = {}

        for tier in tiers:
            api_calls += 1
            try:
                if resource_type == ResourceType.DOMAIN:
                    tables = await self.pricing_service.get_domain_pricing(tier, keys, customer_id)
                else:
                    tables = await self.pricing_service.get_email_pricing(tier, keys, customer_id)
            except APIError as e:
                logger.error(f"Failed to fetch {tier.value} {resource_type.value} pricing: {e}")
                last_error = tier_errors[tier.value] = str(e)
                continue

            try:
                rows = await self._store_tables(resource_type, tier, tables, tier_errors)
            except RecordStoreError as e:
                logger.error(f"Failed to cache {tier.value} {resource_type.value} pricing: {e}")
                last_error = tier_errors[tier.value] = str(e)
                continue

            refreshed += len(rows)
            if tier.value in tier_errors:
                last_error = tier_errors[tier.value]

        duration_ms = int((time.monotonic() - started) * 1000)
        pricing_tier = tiers[0].value if len(tiers) == 1 else "all"

        if last_error is None:
            status = "success"
        elif refreshed:
            status = "partial"
        else:
            status = "failed"

        logger.info(
            f"{resource_type.value.capitalize()} pricing refresh {status}: "
            f"{refreshed} entries, {api_calls} API call(s), {duration_ms}ms"
        )

        result = PricingSyncResult(
            success=last_error is None,
            sync_type=resource_type.value,
            pricing_tier=pricing_tier,
            entries_refreshed=refreshed,
            api_calls_made=api_calls,
            duration_ms=duration_ms,
            error=last_error,
            tier_errors=tier_errors,
        )
        await self._log_sync(result, status)
        return result

    async def _log_sync(self, result: PricingSyncResult, status: str) -> None:
        entry = result.model_dump(mode="json")
        entry.update({
            "id": str(uuid.uuid4()),
            "status": status,
            "completed_at": self.clock().isoformat(),
        })
        try:
            await self.store.upsert(SYNC_LOG_COLLECTION, entry, "id")
        except RecordStoreError as e:
            logger.error(f"Could not write pricing sync log: {e}")

    # ============================================================================
    # Background refresh
    # ============================================================================

    def _schedule_refresh(
        self,
        resource_type: ResourceType,
        tier: PricingTier,
        customer_id: Optional[str]
    ) -> None:
        """Start a detached full refresh unless one is already running for this type and tier."""
        key = (resource_type, tier)
        running = self._refresh_tasks.get(key)
        if running is not None and not running.done():
            logger.debug(f"Background {tier.value} {resource_type.value} refresh already running")
            return

        task = asyncio.get_running_loop().create_task(
            self._background_refresh(resource_type, tier, customer_id)
        )
        self._refresh_tasks[key] = task
        task.add_done_callback(lambda t: self._forget_task(key, t))

    def _forget_task(self, key: Tuple[ResourceType, PricingTier], task: asyncio.Task) -> None:
        if self._refresh_tasks.get(key) is task:
            del self._refresh_tasks[key]

    async def _background_refresh(
        self,
        resource_type: ResourceType,
        tier: PricingTier,
        customer_id: Optional[str]
    ) -> None:
        logger.info(f"Background {tier.value} {resource_type.value} pricing refresh started")
        try:
            result = await self._refresh(resource_type, [tier], None, customer_id)
        except Exception as e:
            # Detached task: nobody is awaiting it
            logger.error(f"Background {tier.value} {resource_type.value} pricing refresh crashed: {e}")
            return
        if not result.success:
            logger.error(f"Background {tier.value} {resource_type.value} pricing refresh failed: {result.error}")

    async def drain(self) -> None:
        """Wait for every outstanding background refresh."""
        while self._refresh_tasks:
            await asyncio.gather(*list(self._refresh_tasks.values()), return_exceptions=True)

    # ============================================================================
    # Row conversion / storage
    # ============================================================================

    def build_row(self, table: PriceTable, tier: PricingTier) -> CachedPriceRow:
        """
        Convert a decimal price table into a cache row.

        Raises:
            ValueError: If any price is negative
        """
        prices = {
            action: {duration: to_minor_units(amount) for duration, amount in durations.items()}
            for action, durations in table.prices.items()
        }
        return CachedPriceRow(
            resource_key=table.resource_key,
            resource_type=table.resource_type,
            pricing_tier=tier,
            slab=table.slab,
            duration_unit=table.duration_unit,
            currency=table.currency,
            prices=prices,
            source_endpoint=endpoint_for(tier),
            last_refreshed_at=self.clock(),
        )

    async def _store_tables(
        self,
        resource_type: ResourceType,
        tier: PricingTier,
        tables: List[PriceTable],
        errors: Optional[Dict[str, str]] = None
    ) -> List[CachedPriceRow]:
        """Upsert one whole row per table. Tables with invalid prices are skipped and reported."""
        rows = []
        for table in tables:
            try:
                row = self.build_row(table, tier)
            except ValueError as e:
                logger.error(f"Skipping {tier.value} price for {table.resource_key}: {e}")
                if errors is not None:
                    errors[tier.value] = f"{table.resource_key}: {e}"
                continue

            await self.store.upsert(
                COLLECTIONS[resource_type],
                row.model_dump(mode="json"),
                CONFLICT_KEYS[resource_type],
            )
            rows.append(row)
        return rows

    async def _load_row(self, collection: str, filters: Dict[str, Any]) -> Optional[CachedPriceRow]:
        record = await self.store.get(collection, filters)
        if record is None:
            return None
        return CachedPriceRow.model_validate(record)

    async def _load_rows(self, collection: str, filters: Dict[str, Any]) -> List[CachedPriceRow]:
        records = await self.store.list(collection, filters)
        return [CachedPriceRow.model_validate(record) for record in records]

    @staticmethod
    def _tiers(tiers: Optional[Iterable[PricingTier]]) -> List[PricingTier]:
        if tiers is None:
            return list(DEFAULT_TIERS)
        return [PricingTier(tier) for tier in tiers]
