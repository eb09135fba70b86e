"""
Discount reconciler command line.

Usage:
    discount-reconciler [OPTIONS] COMMAND [ARGS]...
"""
from __future__ import annotations

import asyncio

import click
from rich.console import Console
from rich.table import Table

from discount_reconciler.config import ReconcilerSettings, configure_logging, get_settings
from discount_reconciler.errors import DiscountError
from discount_reconciler.models import DiscountRecord, DiscountSpec, Verdict
from discount_reconciler.pipeline import DiscountPipeline
from discount_reconciler.stores.shopify import ShopifyDiscountStore
from discount_reconciler.verification import verify_totals

console = Console()


def _default_store_factory(settings: ReconcilerSettings):
    return ShopifyDiscountStore.from_settings(settings)


@click.group()
@click.version_option(package_name="discount-reconciler", message="%(prog)s %(version)s")
@click.option("--shop", envvar="DISCOUNT_RECONCILER_SHOP_DOMAIN", help="Shop domain, e.g. example.myshopify.com")
@click.option("--token", envvar="DISCOUNT_RECONCILER_ACCESS_TOKEN", help="Admin API access token")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, shop: str | None, token: str | None, verbose: bool):
    """Discount reconciler - keep store discounts and checkout totals consistent."""
    ctx.ensure_object(dict)

    settings = ctx.obj.get("settings") or get_settings()
    overrides = {}
    if shop:
        overrides["shop_domain"] = shop
    if token:
        overrides["access_token"] = token
    if overrides:
        settings = ReconcilerSettings(**{**settings.model_dump(), **overrides})

    configure_logging("DEBUG" if verbose else settings.log_level)
    ctx.obj["settings"] = settings
    ctx.obj.setdefault("store_factory", _default_store_factory)


def _run(ctx, operation):
    """Run an async pipeline operation and render failures."""
    settings = ctx.obj["settings"]

    async def runner():
        store = ctx.obj["store_factory"](settings)
        async with DiscountPipeline(store, settings=settings) as pipeline:
            return await operation(pipeline)

    try:
        return asyncio.run(runner())
    except DiscountError as e:
        console.print(f"[red]Error ({e.kind}):[/red] {e.message}")
        console.print(f"[yellow]Hint:[/yellow] {e.remediation}")
        ctx.exit(1)


def _discount_table(title: str, records: list[DiscountRecord]) -> Table:
    table = Table(title=title)
    table.add_column("ID", style="dim")
    table.add_column("Title")
    table.add_column("Code")
    table.add_column("Value", justify="right")
    table.add_column("Status")
    for record in records:
        table.add_row(
            record.id,
            record.title,
            record.code or "-",
            record.display_value,
            record.status.value,
        )
    return table


@cli.command()
@click.pass_context
def probe(ctx):
    """Check connectivity and credentials."""
    shop = _run(ctx, lambda p: p.probe())
    console.print(f"[green]Connected[/green] to [bold]{shop.name}[/bold] ({shop.currency_code}, {shop.plan_name or 'unknown plan'})")


@cli.command()
@click.option("--name", required=True, help="Discount title")
@click.option("--type", "kind", type=click.Choice(["percentage", "fixed"]), default="percentage", show_default=True)
@click.option("--value", required=True, help="Percentage (0-100] or fixed amount")
@click.option("--min-order", default="0", show_default=True, help="Minimum order subtotal")
@click.option("--max-discount", default=None, help="Maximum discount amount")
@click.option("--start", "start_date", default=None, help="Start date (YYYY-MM-DD)")
@click.option("--end", "end_date", default=None, help="End date (YYYY-MM-DD)")
@click.option("--order-type", type=click.Choice(["all", "cod", "prepaid"]), default="all", show_default=True)
@click.option("--auto-apply/--code", default=False, help="Automatic discount or code discount")
@click.option("--require-settled", is_flag=True, help="Abort if deleted discounts are still visible")
@click.pass_context
def create(ctx, name, kind, value, min_order, max_discount, start_date, end_date, order_type, auto_apply, require_settled):
    """Clean up conflicting discounts and create a new one."""
    spec = DiscountSpec(
        name=name,
        kind=kind,
        raw_value=value,
        min_order_value=min_order,
        max_discount=max_discount,
        start_date=start_date,
        end_date=end_date,
        order_type=order_type,
        auto_apply=auto_apply,
    )
    result = _run(ctx, lambda p: p.create_discount(spec, require_settled=require_settled))
    console.print(f"[dim]{result.cleanup.summary}[/dim]")
    console.print(f"[green]{result.message}[/green]")
    console.print(f"ID: [cyan]{result.record.id}[/cyan]  Encoded value: {result.discount.encoded_value}")


@cli.command()
@click.pass_context
def cleanup(ctx):
    """Delete discounts that conflict with checkout math."""
    report = _run(ctx, lambda p: p.cleanup())
    console.print(f"[green]Cleanup complete![/green] {report.summary}")
    for failure in report.failures:
        console.print(f"[red]Failed:[/red] {failure.discount_id} {failure.title!r}: {failure.error}")
    for error in report.errors:
        console.print(f"[red]{error}[/red]")
    if not report.settled:
        console.print("[yellow]Deleted discounts were still visible at the last check; run inventory before creating.[/yellow]")
    console.print(f"Remaining: {report.remaining_automatic} automatic, {report.remaining_code} code")


@cli.command()
@click.pass_context
def analyze(ctx):
    """Report discount configurations likely to break checkout totals."""
    report = _run(ctx, lambda p: p.analyze())
    if report.checkout_ready:
        console.print("[green]Checkout validation passed![/green] Discounts should calculate correctly.")
    else:
        console.print(f"[yellow]{len(report.issues)} potential issues found.[/yellow]")
    for issue in report.issues:
        console.print(f"  - [bold]{issue.kind.value}[/bold]: {issue.message}")
    console.print("\n[bold]Recommendations[/bold]")
    for index, recommendation in enumerate(report.recommendations, 1):
        console.print(f"  {index}. {recommendation}")


@cli.command()
@click.pass_context
def inventory(ctx):
    """List every discount remaining in the store."""
    inv = _run(ctx, lambda p: p.inventory())
    console.print(_discount_table("Automatic discounts", inv.automatic))
    console.print(_discount_table("Code discounts", inv.code))
    if inv.is_clean:
        console.print("[green]CLEAN![/green] No conflicting discounts found.")
    else:
        console.print(f"[yellow]Found {len(inv.automatic) + len(inv.code)} remaining discounts.[/yellow]")
    for index, step in enumerate(inv.next_steps, 1):
        console.print(f"  {index}. {step}")


@cli.command()
@click.argument("discount_id")
@click.option("--type", "representation", type=click.Choice(["automatic", "code"]), required=True)
@click.pass_context
def delete(ctx, discount_id, representation):
    """Delete a single discount."""
    deleted = _run(ctx, lambda p: p.delete_discount(discount_id, representation))
    console.print(f"[green]Discount deleted:[/green] {deleted}")


@cli.command("fix-checkout")
@click.pass_context
def fix_checkout(ctx):
    """Remove broken automatic discounts and create a working 10% one."""
    result = _run(ctx, lambda p: p.fix_checkout())
    console.print(f"[dim]{result.cleanup.summary}[/dim]")
    console.print(f"[green]{result.message}[/green]")
    console.print("Expected at checkout: subtotal 100.00 -> discount -10.00 -> total 90.00 + shipping")


@cli.command("check-totals")
@click.option("--subtotal", required=True)
@click.option("--discount", "discounts", multiple=True, help="Allocated discount amount (repeatable)")
@click.option("--total", required=True)
def check_totals(subtotal, discounts, total):
    """Verify a checkout total against subtotal minus discounts."""
    try:
        result = verify_totals(subtotal, discounts, total)
    except ValueError as e:
        raise click.BadParameter(str(e))
    color = {
        Verdict.MATCH: "green",
        Verdict.SHIPPING_TAX_ADJUSTED: "cyan",
        Verdict.MISMATCH: "red",
    }[result.verdict]
    console.print(f"Expected total: {result.expected_total}  Actual: {result.actual_total}  Delta: {result.delta}")
    console.print(f"Verdict: [{color}]{result.verdict.value}[/{color}]")
    if result.verdict == Verdict.MISMATCH:
        raise SystemExit(1)


def main():
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
