"""
Main CLI Entry Point
Command-line interface for:
- Reseller account balance
- Domain availability checks
- Pricing cache refresh and lookups
- Reconciliation of mirrored domains and email orders
"""

import sys
import asyncio
import argparse

from rich.console import Console
from rich.table import Table

from resellersync.api import (
    DomainService,
    EmailOrderService,
    PricingService,
    ResellerClubClient,
)
from resellersync.api.exceptions import APIError
from resellersync.models import PricingTier
from resellersync.services import JsonFileRecordStore, PricingCache, ReconciliationEngine
from resellersync.services.pricing_cache import from_minor_units
from resellersync.utils.config import get_settings
from resellersync.utils.logger import get_logger

logger = get_logger(__name__)
console = Console()

TIER_CHOICES = [tier.value for tier in PricingTier]


def run(coro_factory):
    """Run one command against a fresh client and always close it."""
    async def runner():
        client = ResellerClubClient(get_settings())
        try:
            return await coro_factory(client)
        finally:
            await client.aclose()

    return asyncio.run(runner())


def cmd_balance(args):
    """Show the reseller account balance"""
    logger.info("Fetching reseller balance...")

    try:
        balance = run(lambda client: client.get_balance())

        table = Table(title="Reseller Balance", show_header=False)
        table.add_column("Field", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("Balance", f"{balance['balance']:.2f}")
        table.add_row("Currency", balance["currency"])
        console.print(table)

    except APIError as e:
        logger.error(f"❌ Failed to fetch balance: {e}")
        sys.exit(1)


def cmd_check(args):
    """Check availability for one or more domains"""
    logger.info(f"Checking availability: {', '.join(args.domains)}")

    try:
        results = run(lambda client: DomainService(client).check_multiple_availability(args.domains))

        table = Table(title=f"Availability ({len(results)} domains)", header_style="bold magenta")
        table.add_column("Domain")
        table.add_column("Status")
        table.add_column("Class")
        styles = {"available": "green", "premium": "yellow", "unavailable": "red", "unknown": "dim"}
        for result in results:
            status = result.status.value
            table.add_row(result.domain, f"[{styles[status]}]{status}[/]", result.class_key or "-")
        console.print(table)

    except APIError as e:
        logger.error(f"❌ Availability check failed: {e}")
        sys.exit(1)


def cmd_pricing_refresh(args):
    """Refresh the pricing cache"""
    settings = get_settings()
    store = JsonFileRecordStore(settings.record_store_path)
    tiers = args.tier or None

    async def refresh(client):
        cache = PricingCache(PricingService(client), store, settings)
        if args.type == "domain":
            return await cache.refresh_domain_pricing(tiers)
        if args.type == "email":
            return await cache.refresh_email_pricing(tiers)
        return await cache.refresh_all(tiers)

    try:
        result = run(refresh)
    except APIError as e:
        logger.error(f"❌ Pricing refresh failed: {e}")
        sys.exit(1)

    table = Table(title=f"Pricing refresh ({result.sync_type}, {result.pricing_tier})", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Success", "[green]yes[/]" if result.success else "[red]no[/]")
    table.add_row("Entries refreshed", str(result.entries_refreshed))
    table.add_row("API calls", str(result.api_calls_made))
    table.add_row("Duration", f"{result.duration_ms} ms")
    for tier, error in result.tier_errors.items():
        table.add_row(f"Error ({tier})", f"[red]{error}[/]")
    console.print(table)

    if not result.success:
        sys.exit(1)


def cmd_pricing_get(args):
    """Show cached (or live) prices for a TLD"""
    settings = get_settings()
    store = JsonFileRecordStore(settings.record_store_path)

    async def lookup(client):
        cache = PricingCache(PricingService(client), store, settings)
        row = await cache.get_domain_price(args.tld, args.tier, args.max_age)
        await cache.drain()
        return row

    try:
        row = run(lookup)
    except APIError as e:
        logger.error(f"❌ Pricing lookup failed: {e}")
        sys.exit(1)

    if row is None:
        logger.error(f"❌ No {args.tier} pricing for {args.tld}")
        sys.exit(1)

    table = Table(title=f".{row.resource_key} ({row.pricing_tier.value}, {row.currency})", header_style="bold magenta")
    table.add_column("Action")
    table.add_column("Years", justify="right")
    table.add_column("Price", justify="right")
    for action, durations in sorted(row.prices.items()):
        for years, amount in sorted(durations.items()):
            table.add_row(action, str(years), str(from_minor_units(amount)))
    console.print(table)
    console.print(f"[dim]Last refreshed: {row.last_refreshed_at.isoformat()}[/dim]")


def cmd_reconcile(args):
    """Reconcile mirrored resources against the registrar"""
    settings = get_settings()
    store = JsonFileRecordStore(settings.record_store_path)

    async def reconcile(client):
        engine = ReconciliationEngine(DomainService(client), EmailOrderService(client), store, settings)
        results = []
        if args.type in ("domains", "all"):
            results.append(await engine.reconcile_domains(args.agency))
        if args.type in ("email", "all"):
            results.append(await engine.reconcile_email_orders(args.agency))
        return results

    try:
        results = run(reconcile)
    except APIError as e:
        logger.error(f"❌ Reconciliation failed: {e}")
        sys.exit(1)

    summary = Table(title="Reconciliation", header_style="bold magenta")
    for column in ("Type", "Checked", "Updated", "Skipped", "Failed"):
        summary.add_column(column)
    for result in results:
        summary.add_row(
            result.resource_type,
            str(result.checked),
            str(result.updated),
            str(result.skipped),
            str(result.failed),
        )
    console.print(summary)

    discrepancies = [d for result in results for d in result.discrepancies]
    if discrepancies:
        table = Table(title="Discrepancies", header_style="bold yellow")
        for column in ("Resource", "Field", "Local", "Remote"):
            table.add_column(column)
        for d in discrepancies:
            table.add_row(d.resource_name or d.resource_id, d.field, repr(d.local_value), repr(d.remote_value))
        console.print(table)

    if any(result.failed for result in results):
        sys.exit(1)


def main():
    """Main CLI entry point"""
    parser = argparse.ArgumentParser(
        description="ResellerClub integration CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Show reseller balance
  python main.py balance

  # Check availability
  python main.py check example.com example.net

  # Refresh the pricing cache (customer and cost tiers)
  python main.py pricing refresh --type all

  # Show prices for a TLD
  python main.py pricing get com --tier cost

  # Reconcile one tenant's domains
  python main.py reconcile --agency 42 --type domains
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # ==================== BALANCE ====================
    balance_parser = subparsers.add_parser("balance", help="Show reseller account balance")
    balance_parser.set_defaults(func=cmd_balance)

    # ==================== CHECK ====================
    check_parser = subparsers.add_parser("check", help="Check domain availability")
    check_parser.add_argument("domains", nargs="+", help="Domain names")
    check_parser.set_defaults(func=cmd_check)

    # ==================== PRICING ====================
    pricing_parser = subparsers.add_parser("pricing", help="Pricing cache")
    pricing_subparsers = pricing_parser.add_subparsers(dest="pricing_command", help="Pricing operations")

    refresh_parser = pricing_subparsers.add_parser("refresh", help="Refresh cached prices")
    refresh_parser.add_argument("--type", choices=["domain", "email", "all"], default="all", help="What to refresh (default: all)")
    refresh_parser.add_argument("--tier", choices=TIER_CHOICES, action="append", help="Pricing tier (repeatable, default: customer and cost)")
    refresh_parser.set_defaults(func=cmd_pricing_refresh)

    get_parser = pricing_subparsers.add_parser("get", help="Show prices for a TLD")
    get_parser.add_argument("tld", help="TLD, e.g. com or .co.uk")
    get_parser.add_argument("--tier", choices=TIER_CHOICES, default="customer", help="Pricing tier (default: customer)")
    get_parser.add_argument("--max-age", type=float, help="Staleness window in hours (default: from config)")
    get_parser.set_defaults(func=cmd_pricing_get)

    # ==================== RECONCILE ====================
    reconcile_parser = subparsers.add_parser("reconcile", help="Reconcile mirrored resources")
    reconcile_parser.add_argument("--agency", help="Restrict to one tenant (agency ID)")
    reconcile_parser.add_argument("--type", choices=["domains", "email", "all"], default="all", help="Resource type (default: all)")
    reconcile_parser.set_defaults(func=cmd_reconcile)

    # Parse and execute
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(0)

    if hasattr(args, "func"):
        args.func(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
