"""
Pricing Service
Fetches price lists for the three pricing tiers and normalizes every response
shape into {action: {duration: Decimal}}
"""

import re
from typing import Any, Dict, Iterable, List, Optional

from resellersync.api.base_service import BaseResourceService
from resellersync.api.exceptions import InvalidParameterError
from resellersync.models import DurationUnit, PriceTable, PricingTier, ResourceType
from resellersync.utils.logger import get_logger
from resellersync.utils.validators import normalize_tld, to_decimal

logger = get_logger(__name__)

TIER_ENDPOINTS = {
    PricingTier.CUSTOMER: "products/customer-price.json",
    PricingTier.RESELLER: "products/reseller-price.json",
    PricingTier.COST: "products/reseller-cost-price.json",
}

# Registrar action names -> canonical action names
ACTION_ALIASES = {
    "addnewdomain": "register",
    "renewdomain": "renew",
    "addtransferdomain": "transfer",
    "transferdomain": "transfer",
    "restoredomain": "restore",
}

DOMAIN_ACTIONS = {"register", "renew", "transfer", "restore"}

# Registry product keys that do not follow the dot<tld> convention
TLD_PRODUCT_ALIASES = {
    "com": "domcno",
}

TITAN_DEFAULT_SLAB = "1-200000"

_FLAT_PRICE_KEY = re.compile(r"^([a-z_]+?)(\d+)$")
_SLAB_KEY = re.compile(r"^\d+-\d+$")


def endpoint_for(tier: PricingTier) -> str:
    try:
        return TIER_ENDPOINTS[PricingTier(tier)]
    except (KeyError, ValueError):
        raise InvalidParameterError(f"Unknown pricing tier: {tier}")


def unwrap_slab(block: Any) -> Any:
    """
    Remove a numbered slab wrapper: {"0": {"pricing": {...}}} or {"1": {...}}.

    The lowest-numbered slab is used. Blocks without a wrapper pass through.
    """
    if not isinstance(block, dict) or not block:
        return block

    if all(str(key).isdigit() and isinstance(value, dict) for key, value in block.items()):
        inner = block[min(block, key=lambda k: int(k))]
        if isinstance(inner.get("pricing"), dict):
            return inner["pricing"]
        return inner

    return block


def normalize_price_block(block: Any) -> Dict[str, Dict[int, Any]]:
    """
    Normalize one product's pricing to {action: {duration: Decimal}}.

    Accepted shapes:
        flat    {"addnewdomain1": 10.5, "addnewdomain2": 21}
        nested  {"addnewdomain": {"1": 10.5, "2": 21}}
        slab    {"0": {"pricing": <flat or nested>}}
    A scalar under a key without a trailing number is taken as duration 1.
    Values that are not numbers are dropped.
    """
    block = unwrap_slab(block)
    if not isinstance(block, dict):
        return {}

    prices: Dict[str, Dict[int, Any]] = {}

    for raw_key, value in block.items():
        key = str(raw_key).strip().lower()

        if isinstance(value, dict):
            action = ACTION_ALIASES.get(key, key)
            for duration, price in value.items():
                amount = to_decimal(price)
                if amount is None or not str(duration).strip().isdigit():
                    continue
                prices.setdefault(action, {})[int(duration)] = amount
            continue

        amount = to_decimal(value)
        if amount is None:
            continue

        match = _FLAT_PRICE_KEY.match(key)
        if match:
            action, duration = match.group(1), int(match.group(2))
        else:
            action, duration = key, 1
        prices.setdefault(ACTION_ALIASES.get(action, action), {})[duration] = amount

    return {action: durations for action, durations in prices.items() if durations}


def flatten_titan_mail(pricing: Dict[str, Any]) -> Dict[str, Any]:
    """
    Rewrite plan-structured email pricing into the slab shape.

        {"titanmailglobal": {"plans": {"1762": {"add": {...}, "renew": {...}}}}}
    becomes
        {"titanmailglobal_1762": {"email_account_ranges": {"1-200000": {"add": ..., "renew": ...}}}}
    """
    result = dict(pricing)

    for parent_key, parent_value in pricing.items():
        if not isinstance(parent_value, dict) or "email_account_ranges" in parent_value:
            continue
        plans = parent_value.get("plans")
        if not isinstance(plans, dict):
            continue

        found_any = False
        for plan_id, plan_data in plans.items():
            if not isinstance(plan_data, dict):
                continue
            synthetic_key = f"{parent_key}_{plan_id}"

            if isinstance(plan_data.get("email_account_ranges"), dict):
                result[synthetic_key] = plan_data
                found_any = True
            elif "add" in plan_data or "renew" in plan_data:
                result[synthetic_key] = {"email_account_ranges": {TITAN_DEFAULT_SLAB: plan_data}}
                found_any = True
            elif any(_SLAB_KEY.match(str(k)) for k in plan_data):
                result[synthetic_key] = {"email_account_ranges": plan_data}
                found_any = True

        if found_any:
            del result[parent_key]

    return result


def tld_product_keys(tld: str) -> List[str]:
    """Candidate product keys for a TLD: 'com', 'dotcom', 'domcno'."""
    tld = normalize_tld(tld)
    candidates = [tld, f"dot{tld.replace('.', '')}"]
    if tld in TLD_PRODUCT_ALIASES:
        candidates.append(TLD_PRODUCT_ALIASES[tld])
    return candidates


def tld_from_product_key(product_key: str) -> str:
    """Reverse of tld_product_keys for auto-discovered keys."""
    key = product_key.strip().lower()
    for tld, alias in TLD_PRODUCT_ALIASES.items():
        if key == alias:
            return tld
    if key.startswith("dot") and len(key) > 3:
        return key[3:]
    return key


class PricingService(BaseResourceService):
    """
    Price list retrieval for domains and business email.

    The registrar returns an entire price list per call, so each method makes
    exactly one remote call per tier.
    """

    def _tier_params(self, tier: PricingTier, customer_id: Optional[str]) -> Dict[str, Any]:
        # customer-price.json works without a customer-id (default selling prices)
        if tier == PricingTier.CUSTOMER and customer_id:
            return {"customer-id": customer_id}
        return {}

    async def _fetch(self, tier: PricingTier, customer_id: Optional[str]) -> Dict[str, Any]:
        tier = PricingTier(tier)
        response = await self.client.get(endpoint_for(tier), self._tier_params(tier, customer_id))
        if not isinstance(response, dict):
            logger.warning(f"Unexpected {tier.value} pricing response type: {type(response).__name__}")
            return {}
        return response

    async def get_domain_pricing(
        self,
        tier: PricingTier,
        tlds: Optional[Iterable[str]] = None,
        customer_id: Optional[str] = None
    ) -> List[PriceTable]:
        """
        Get domain pricing for one tier.

        Args:
            tier: customer, reseller or cost
            tlds: TLDs to extract. None means every TLD found in the response.
            customer_id: Optional customer for customer-tier prices

        Returns:
            One PriceTable per TLD, keyed by the bare TLD ("com", "co.uk")
        """
        response = await self._fetch(tier, customer_id)
        currency = self.config.default_currency
        tables = []

        if tlds is None:
            for product_key, block in response.items():
                prices = normalize_price_block(block)
                if not DOMAIN_ACTIONS.intersection(prices):
                    continue
                tables.append(self._domain_table(tld_from_product_key(product_key), prices, currency))
            logger.info(f"Discovered {len(tables)} TLD(s) in {tier} pricing")
            return tables

        lowered = {str(key).lower(): value for key, value in response.items()}
        for tld in tlds:
            tld = normalize_tld(tld)
            block = next(
                (lowered[key] for key in tld_product_keys(tld) if key in lowered),
                None
            )
            if block is None:
                logger.warning(f"No {tier} pricing for .{tld}")
                continue
            prices = normalize_price_block(block)
            if not prices:
                logger.warning(f"Unparseable {tier} pricing for .{tld}")
                continue
            tables.append(self._domain_table(tld, prices, currency))

        return tables

    async def get_email_pricing(
        self,
        tier: PricingTier,
        product_keys: Optional[Iterable[str]] = None,
        customer_id: Optional[str] = None
    ) -> List[PriceTable]:
        """
        Get business email pricing for one tier.

        Returns:
            One PriceTable per (product key, account slab), durations in months
        """
        response = flatten_titan_mail(await self._fetch(tier, customer_id))
        currency = self.config.default_currency

        if product_keys is None:
            keys = [
                key for key, value in response.items()
                if isinstance(value, dict) and isinstance(value.get("email_account_ranges"), dict)
            ]
        else:
            keys = list(product_keys)

        tables = []
        for product_key in keys:
            product = response.get(product_key)
            ranges = product.get("email_account_ranges") if isinstance(product, dict) else None
            if not isinstance(ranges, dict):
                logger.warning(f"No {tier} email pricing for {product_key}")
                continue

            for slab, slab_data in ranges.items():
                prices = normalize_price_block(slab_data)
                if not prices:
                    continue
                tables.append(PriceTable(
                    resource_key=product_key,
                    resource_type=ResourceType.EMAIL,
                    duration_unit=DurationUnit.MONTHS,
                    currency=currency,
                    prices=prices,
                    slab=str(slab),
                ))

        return tables

    @staticmethod
    def _domain_table(tld: str, prices: Dict[str, Dict[int, Any]], currency: str) -> PriceTable:
        return PriceTable(
            resource_key=tld,
            resource_type=ResourceType.DOMAIN,
            duration_unit=DurationUnit.YEARS,
            currency=currency,
            prices=prices,
        )
