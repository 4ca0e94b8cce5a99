"""
Tests for the pricing cache: minor-unit conversion, staleness, live fallback,
background refresh and partial tier failures.
The pricing service is mocked; the store is the in-memory implementation.

Run:
    python -m pytest tests/test_pricing_cache.py -v
"""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from resellersync.api.exceptions import ServerError
from resellersync.models import DurationUnit, PriceTable, PricingTier, ResourceType
from resellersync.services.pricing_cache import (
    DOMAIN_COLLECTION,
    EMAIL_COLLECTION,
    SYNC_LOG_COLLECTION,
    PricingCache,
    from_minor_units,
    to_minor_units,
)
from resellersync.services.record_store import InMemoryRecordStore
from resellersync.utils.config import Settings


T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _settings(**overrides) -> Settings:
    values = {
        "resellerclub_reseller_id": "12345",
        "resellerclub_api_key": "test-key",
        "pricing_max_age_hours": 24,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def _domain_table(tld="com", register="10.20", renew="11.00"):
    return PriceTable(
        resource_key=tld,
        resource_type=ResourceType.DOMAIN,
        duration_unit=DurationUnit.YEARS,
        currency="USD",
        prices={"register": {1: Decimal(register)}, "renew": {1: Decimal(renew)}},
    )


def _email_table(product="eeliteus", slab="1-5", add="0.86"):
    return PriceTable(
        resource_key=product,
        resource_type=ResourceType.EMAIL,
        duration_unit=DurationUnit.MONTHS,
        currency="USD",
        prices={"add": {1: Decimal(add), 12: Decimal("10.20")}},
        slab=slab,
    )


class Clock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, hours):
        self.now = self.now + timedelta(hours=hours)


def _cache(domain_tables=None, email_tables=None, **overrides):
    service = MagicMock()
    service.get_domain_pricing = AsyncMock(return_value=domain_tables if domain_tables is not None else [_domain_table()])
    service.get_email_pricing = AsyncMock(return_value=email_tables if email_tables is not None else [_email_table()])
    store = InMemoryRecordStore()
    clock = Clock()
    cache = PricingCache(service, store, _settings(**overrides), clock=clock)
    return cache, service, store, clock


# ===========================================================================
# 1. Minor units
# ===========================================================================

class TestMinorUnits:

    @pytest.mark.parametrize("amount, expected", [
        (Decimal("10.20"), 1020),
        (10.2, 1020),
        ("0.86", 86),
        (Decimal("0.615"), 62),
        (Decimal("0.614"), 61),
        (0, 0),
    ])
    def test_to_minor_units(self, amount, expected):
        assert to_minor_units(amount) == expected

    def test_negative_is_rejected(self):
        with pytest.raises(ValueError):
            to_minor_units(Decimal("-1.00"))

    def test_from_minor_units(self):
        assert from_minor_units(1020) == Decimal("10.20")


# ===========================================================================
# 2. Refresh
# ===========================================================================

class TestRefresh:

    def test_round_trip_without_drift(self):
        cache, service, store, _ = _cache()

        async def scenario():
            await cache.refresh_domain_pricing([PricingTier.CUSTOMER])
            await cache.refresh_domain_pricing([PricingTier.CUSTOMER])
            await cache.refresh_domain_pricing([PricingTier.CUSTOMER])
            return await cache.get_domain_quote("com", "register", 1)

        quote = asyncio.run(scenario())

        assert quote.amount == 1020
        assert quote.major_amount == Decimal("10.20")
        rows = asyncio.run(store.list(DOMAIN_COLLECTION))
        assert len(rows) == 1
        assert service.get_domain_pricing.await_count == 3

    def test_one_call_per_tier_with_default_tiers(self):
        cache, service, _, _ = _cache(domain_tables=[_domain_table("com"), _domain_table("net")])

        result = asyncio.run(cache.refresh_domain_pricing())

        assert result.success
        assert result.sync_type == "domain"
        assert result.pricing_tier == "all"
        assert result.api_calls_made == 2
        assert result.entries_refreshed == 4
        tiers = [c.args[0] for c in service.get_domain_pricing.await_args_list]
        assert tiers == [PricingTier.CUSTOMER, PricingTier.COST]

    def test_auto_discovery_passes_no_tld_filter(self):
        cache, service, store, _ = _cache(domain_tables=[_domain_table("com"), _domain_table("xyz")])

        asyncio.run(cache.refresh_domain_pricing([PricingTier.COST]))

        assert service.get_domain_pricing.await_args.args[1] is None
        keys = sorted(r["resource_key"] for r in asyncio.run(store.list(DOMAIN_COLLECTION)))
        assert keys == ["com", "xyz"]

    def test_partial_tier_failure(self):
        cache, service, store, _ = _cache()

        async def fetch(tier, tlds, customer_id):
            if tier == PricingTier.CUSTOMER:
                raise ServerError("upstream down", 503)
            return [_domain_table()]

        service.get_domain_pricing.side_effect = fetch

        result = asyncio.run(cache.refresh_domain_pricing())

        assert not result.success
        assert result.entries_refreshed == 1
        assert result.api_calls_made == 2
        assert set(result.tier_errors) == {"customer"}
        assert "upstream down" in result.error
        logs = asyncio.run(store.list(SYNC_LOG_COLLECTION))
        assert [log["status"] for log in logs] == ["partial"]

    def test_every_tier_failing_is_logged_as_failed(self):
        cache, service, store, _ = _cache()
        service.get_domain_pricing.side_effect = ServerError("down", 500)

        result = asyncio.run(cache.refresh_domain_pricing())

        assert not result.success
        assert result.entries_refreshed == 0
        assert result.api_calls_made == 2
        assert asyncio.run(store.list(SYNC_LOG_COLLECTION))[0]["status"] == "failed"

    def test_negative_price_row_is_skipped_and_reported(self):
        cache, _, store, _ = _cache(domain_tables=[_domain_table("com"), _domain_table("bad", register="-5")])

        result = asyncio.run(cache.refresh_domain_pricing([PricingTier.COST]))

        assert not result.success
        assert result.entries_refreshed == 1
        assert "bad" in result.tier_errors["cost"]
        keys = [r["resource_key"] for r in asyncio.run(store.list(DOMAIN_COLLECTION))]
        assert keys == ["com"]

    def test_refresh_all(self):
        cache, _, _, _ = _cache()

        result = asyncio.run(cache.refresh_all([PricingTier.CUSTOMER]))

        assert result.success
        assert result.sync_type == "full"
        assert result.api_calls_made == 2
        assert result.entries_refreshed == 2


# ===========================================================================
# 3. Read path
# ===========================================================================

class TestReadPath:

    def test_fresh_row_makes_zero_calls(self):
        cache, service, _, clock = _cache()

        async def scenario():
            await cache.refresh_domain_pricing([PricingTier.CUSTOMER])
            service.get_domain_pricing.reset_mock()
            clock.advance(23)
            return await cache.get_domain_price("com")

        row = asyncio.run(scenario())

        assert row.prices["register"][1] == 1020
        service.get_domain_pricing.assert_not_awaited()

    def test_stale_row_makes_one_live_call_then_refreshes_in_background(self):
        cache, service, _, clock = _cache()

        async def scenario():
            await cache.refresh_domain_pricing([PricingTier.CUSTOMER])
            service.get_domain_pricing.reset_mock()
            service.get_domain_pricing.return_value = [_domain_table(register="12.00")]
            clock.advance(25)

            row = await cache.get_domain_price("com")
            calls_during_read = service.get_domain_pricing.await_count
            await cache.drain()
            return row, calls_during_read

        row, calls_during_read = asyncio.run(scenario())

        assert calls_during_read == 1
        assert row.prices["register"][1] == 1200
        assert row.last_refreshed_at == clock.now
        # live call for the one TLD, then the background refresh of the whole tier
        calls = service.get_domain_pricing.await_args_list
        assert len(calls) == 2
        assert calls[0].args[:2] == (PricingTier.CUSTOMER, ["com"])
        assert calls[1].args[:2] == (PricingTier.CUSTOMER, None)

    def test_missing_row_triggers_live_call(self):
        cache, service, store, _ = _cache()

        async def scenario():
            row = await cache.get_domain_price(".COM", PricingTier.COST)
            await cache.drain()
            return row

        row = asyncio.run(scenario())

        assert row.resource_key == "com"
        assert row.pricing_tier == PricingTier.COST
        assert row.source_endpoint == "products/reseller-cost-price.json"
        assert len(asyncio.run(store.list(DOMAIN_COLLECTION))) == 1

    def test_concurrent_misses_schedule_one_background_refresh(self):
        cache, service, _, _ = _cache()

        async def scenario():
            await cache.get_domain_price("com")
            await cache.get_domain_price("net")
            await cache.drain()

        asyncio.run(scenario())

        # two live reads plus a single background refresh
        assert service.get_domain_pricing.await_count == 3

    def test_stale_row_served_when_live_call_fails(self):
        cache, service, _, clock = _cache()

        async def scenario():
            await cache.refresh_domain_pricing([PricingTier.CUSTOMER])
            service.get_domain_pricing.reset_mock()
            service.get_domain_pricing.side_effect = ServerError("down", 503)
            clock.advance(48)
            row = await cache.get_domain_price("com")
            await cache.drain()
            return row

        row = asyncio.run(scenario())

        assert row.prices["register"][1] == 1020
        assert row.last_refreshed_at == T0
        # no background refresh after a failed live call
        assert service.get_domain_pricing.await_count == 1

    def test_miss_with_failing_live_call_raises(self):
        cache, service, _, _ = _cache()
        service.get_domain_pricing.side_effect = ServerError("down", 503)

        with pytest.raises(ServerError):
            asyncio.run(cache.get_domain_price("com"))

    def test_background_refresh_failure_is_not_raised(self):
        cache, service, _, _ = _cache()
        calls = []

        async def fetch(tier, tlds, customer_id):
            calls.append(tlds)
            if tlds is None:
                raise RuntimeError("background boom")
            return [_domain_table()]

        service.get_domain_pricing.side_effect = fetch

        async def scenario():
            row = await cache.get_domain_price("com")
            await cache.drain()
            return row

        row = asyncio.run(scenario())

        assert row is not None
        assert calls == [["com"], None]

    def test_unpriced_tld_returns_none(self):
        cache, _, _, _ = _cache(domain_tables=[])

        async def scenario():
            row = await cache.get_domain_price("zz")
            await cache.drain()
            return row

        assert asyncio.run(scenario()) is None

    def test_quote_for_missing_duration_is_none(self):
        cache, _, _, _ = _cache()

        async def scenario():
            await cache.refresh_domain_pricing([PricingTier.CUSTOMER])
            return await cache.get_domain_quote("com", "register", 10)

        assert asyncio.run(scenario()) is None


# ===========================================================================
# 4. Email plans and staleness
# ===========================================================================

class TestEmailCache:

    def test_slabs_are_separate_rows(self):
        cache, _, store, _ = _cache(email_tables=[
            _email_table(slab="1-5", add="0.86"),
            _email_table(slab="6-25", add="0.80"),
        ])

        async def scenario():
            await cache.refresh_email_pricing([PricingTier.CUSTOMER])
            return await cache.get_email_price("eeliteus", slab="6-25")

        rows = asyncio.run(scenario())

        assert len(rows) == 1
        assert rows[0].prices["add"][1] == 80
        assert len(asyncio.run(store.list(EMAIL_COLLECTION))) == 2

    def test_all_cached_plans_in_response_shape(self):
        cache, service, _, _ = _cache(email_tables=[
            _email_table(product="eeliteus", slab="1-5"),
            _email_table(product="titanmailglobal_1762", slab="1-200000", add="0.60"),
        ])

        async def scenario():
            await cache.refresh_email_pricing([PricingTier.CUSTOMER])
            service.get_email_pricing.reset_mock()
            return await cache.get_all_cached_email_plans(PricingTier.CUSTOMER)

        plans = asyncio.run(scenario())

        assert plans["eeliteus"]["email_account_ranges"]["1-5"]["add"] == {
            "1": Decimal("0.86"),
            "12": Decimal("10.20"),
        }
        assert "titanmailglobal_1762" in plans
        service.get_email_pricing.assert_not_awaited()

    def test_is_cache_stale(self):
        cache, _, _, clock = _cache()

        async def scenario():
            empty = await cache.is_cache_stale(ResourceType.DOMAIN, PricingTier.CUSTOMER)
            await cache.refresh_domain_pricing([PricingTier.CUSTOMER])
            fresh = await cache.is_cache_stale(ResourceType.DOMAIN, PricingTier.CUSTOMER)
            clock.advance(30)
            stale = await cache.is_cache_stale(ResourceType.DOMAIN, PricingTier.CUSTOMER)
            return empty, fresh, stale

        assert asyncio.run(scenario()) == (True, False, True)
