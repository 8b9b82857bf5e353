#!/usr/bin/env python3
"""
Procurement engine — CLI entry point.

Usage examples:
  python main.py check                                  # Verify configuration and store access
  python main.py load comp-1                            # Full load, recurring carts included
  python main.py recurring comp-1                       # Fire template carts due today
  python main.py recurring comp-1 --date 2026-11-02     # ... or for another day
  python main.py billback-sync comp-1                   # Create missing billable items
"""
import logging
import sys
from datetime import date, datetime

import click
from dotenv import load_dotenv

from config import Config
from engine.database import CART_ITEMS
from engine.errors import PersistenceError
from engine.field_mapper import map_cart
from engine.workspace import Workspace


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
        datefmt="%H:%M:%S",
    )
    # Quieten noisy third-party loggers
    for name in ("httpx", "httpcore", "hpack", "urllib3"):
        logging.getLogger(name).setLevel(logging.WARNING)


def _workspace(config: Config, user_id: str | None = None) -> Workspace:
    if not config.store_configured:
        click.echo("✗ SUPABASE_URL and SUPABASE_KEY must be set (see .env)", err=True)
        sys.exit(2)
    return Workspace.from_config(config, user_id)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Procurement engine — carts, recurring orders, PO and payment reconciliation."""
    load_dotenv()
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    _setup_logging(verbose)


# --------------------------------------------------------------------
# check command
# --------------------------------------------------------------------

@cli.command()
def check() -> None:
    """Verify configuration and that the store answers."""
    config = Config()

    click.echo("\n=== Procurement Setup Check ===\n")
    click.echo(f"  Store URL:       {config.supabase_url or '(not set)'}")
    click.echo(f"  Store key:       {'✓ set' if config.supabase_key else '✗ NOT set'}")
    click.echo(f"  Schema:          {config.supabase_schema}")
    click.echo(f"  Load timeout:    {config.load_timeout_seconds:.0f}s")
    click.echo(f"  Page sizes:      carts {config.cart_page_size}, orders {config.order_page_size}, "
               f"products {config.product_page_size}")
    click.echo()

    if not config.store_configured:
        click.echo("  → Set SUPABASE_URL and SUPABASE_KEY in your .env")
        click.echo()
        sys.exit(1)

    ws = _workspace(config)
    try:
        ws.store.select("companies", columns="id", limit=1)
        click.echo("  Store:           ✓ reachable")
    except PersistenceError as exc:
        click.echo(f"  Store:           ✗ NOT reachable ({exc.message})")
        sys.exit(1)
    finally:
        ws.close()
    click.echo()


# --------------------------------------------------------------------
# load command
# --------------------------------------------------------------------

@cli.command()
@click.argument("company_id")
@click.option("--user", "user_id", default=None, help="Profile id to load as")
@click.option("--timeout", type=float, default=None, help="Load deadline in seconds")
def load(company_id: str, user_id: str | None, timeout: float | None) -> None:
    """Run a full tenant load and print a summary."""
    config = Config()
    if timeout:
        config.load_timeout_seconds = timeout
    ws = _workspace(config, user_id)
    try:
        result = ws.switch_company(company_id)
        if not result.success:
            click.echo(f"✗ Load failed: {result.message}", err=True)
            if result.signed_out:
                click.echo("  Session was cleared — sign in again.", err=True)
            sys.exit(1)

        graph = ws.state.snapshot()
        click.echo()
        click.echo(f"  Company:     {graph.company_name} ({graph.company_id})")
        click.echo(f"  Carts:       {len(graph.carts)}")
        click.echo(f"  Orders:      {len(graph.orders)}")
        click.echo(f"  Products:    {len(graph.products)}")
        click.echo(f"  Vendors:     {len(graph.vendors)}")
        click.echo(f"  Properties:  {len(graph.properties)}")
        click.echo(f"  Users:       {len(graph.users)}")
        if result.recurrence and result.recurrence.fired:
            click.echo(f"  Recurring:   {len(result.recurrence.spawned_cart_ids)} cart(s) spawned")
        for warning in result.warnings:
            click.echo(f"  ⚠  {warning}")
        click.echo(f"\n  Loaded in {result.elapsed_seconds:.2f}s")
        click.echo()
    finally:
        ws.close()


# --------------------------------------------------------------------
# recurring command
# --------------------------------------------------------------------

@cli.command()
@click.argument("company_id")
@click.option("--date", "run_date", default=None, help="Day to evaluate (YYYY-MM-DD, default today)")
def recurring(company_id: str, run_date: str | None) -> None:
    """Evaluate template carts and spawn drafts for those due."""
    try:
        day = datetime.strptime(run_date, "%Y-%m-%d").date() if run_date else date.today()
    except ValueError:
        click.echo(f"Error: '{run_date}' is not a YYYY-MM-DD date.", err=True)
        sys.exit(2)

    config = Config()
    ws = _workspace(config)
    try:
        rows = ws.store.select(
            "carts", embed=(CART_ITEMS,), eq={"company_id": company_id},
            order_by="created_at", descending=True, limit=config.cart_page_size,
        )
    except PersistenceError as exc:
        click.echo(f"✗ Could not read carts: {exc.message}", err=True)
        ws.close()
        sys.exit(1)

    report = ws.recurrence.process([map_cart(r) for r in rows], company_id, day)
    ws.close()

    click.echo(f"\n  {report.evaluated} template cart(s) evaluated for {day:%Y-%m-%d}")
    for cart_id in report.spawned_cart_ids:
        click.echo(f"  ✓ spawned {cart_id}")
    for cart_id in report.skipped_existing:
        click.echo(f"  ·  {cart_id} already existed")
    for error in report.errors:
        click.echo(f"  ✗ {error}")
    click.echo()
    if report.errors:
        sys.exit(1)


# --------------------------------------------------------------------
# billback-sync command
# --------------------------------------------------------------------

@cli.command("billback-sync")
@click.argument("company_id")
def billback_sync(company_id: str) -> None:
    """Create billable items for paid purchase orders that have none."""
    ws = _workspace(Config())
    try:
        created = ws.billback.sync_missing_billable_items(company_id)
    except PersistenceError as exc:
        click.echo(f"✗ Billback sync failed: {exc.message}", err=True)
        sys.exit(1)
    finally:
        ws.close()
    click.echo(f"\n✓ Synced billable items for {created} purchase order(s)\n")


if __name__ == "__main__":
    cli()
