"""Main CLI interface for the Shopify product sync tool."""

import asyncio
import logging
from pathlib import Path
from typing import Optional
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel

from .config import Config, ConfigError, ShopifySettings, load_config_from_env
from .clients import ShopifyClient
from .spreadsheet_io import InputValidationError, SpreadsheetProcessor
from .reporting import Reporter
from .sync import ProductSyncer

app = typer.Typer(
    name="shopify-sync",
    help="Spreadsheet to Shopify product sync (Admin GraphQL API)",
    rich_markup_mode="rich"
)

console = Console()


def configure_logging(verbose: bool = False) -> None:
    """Route library logging through rich."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


@app.command()
def sync(
    input_file: Path = typer.Option(..., "--file", "-f", help="Path to the Excel (.xlsx) workbook"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Validate and show planned operations without calling Shopify mutations"),
    limit: Optional[int] = typer.Option(None, "--limit", help="Process only the first N product handles"),
    out_dir: Path = typer.Option("./out", "--out-dir", help="Output directory for reports"),
    report: bool = typer.Option(True, "--report/--no-report", help="Write sync_report.md and failures.csv"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Sync products from a spreadsheet to Shopify."""
    configure_logging(verbose)

    try:
        config = load_config_from_env()
    except ConfigError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    config.dry_run = dry_run
    config.output_dir = out_dir

    try:
        asyncio.run(_sync_main(config, input_file, limit, report))
    except (InputValidationError, FileNotFoundError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Sync cancelled by user[/yellow]")
        raise typer.Exit(1)


@app.command("check-config")
def check_config():
    """Show the Shopify settings that would be used, with the token masked."""
    settings = ShopifySettings()
    missing = settings.missing_variables()

    info_panel = Panel.fit(
        f"[bold]Shopify Settings[/bold]\n\n"
        f"Store domain: {settings.store_domain or '[red]missing[/red]'}\n"
        f"API version: {settings.api_version or '[red]missing[/red]'}\n"
        f"Access token: {settings.masked_access_token() or '[red]missing[/red]'}\n"
        f"Default location: {settings.default_location_id or '[red]missing[/red]'}",
        title="Configuration",
        border_style="blue"
    )
    console.print(info_panel)

    if missing:
        console.print(f"[red]Missing required environment variables: {', '.join(missing)}[/red]")
        raise typer.Exit(1)
    console.print("[green]✓ Configuration complete[/green]")


async def _sync_main(config: Config, input_file: Path, limit: Optional[int], report: bool) -> None:
    """Main sync logic."""
    processor = SpreadsheetProcessor(console)
    reporter = Reporter(console)

    console.print("[bold cyan]Shopify Product Sync[/bold cyan]\n")
    console.print(f"Using store: {config.shopify.store_domain} (API {config.shopify.api_version})")

    # Load and validate the workbook before touching the API
    console.print("[bold]Step 1: Loading Spreadsheet[/bold]")
    catalog = processor.load_catalog(input_file, limit)
    reporter.print_parse_summary(catalog, config.dry_run)

    if not catalog.records:
        console.print("[red]No valid products found in spreadsheet[/red]")
        return

    console.print(f"\n[bold]Step 2: {'Previewing' if config.dry_run else 'Syncing'} Products[/bold]")
    async with ShopifyClient.from_config(config) as client:
        syncer = ProductSyncer(client, config.shopify.default_location_id, console)
        outcomes = await syncer.sync_all(catalog, dry_run=config.dry_run)

    reporter.add_outcomes(outcomes)

    if report:
        console.print("\n[bold]Step 3: Generating Reports[/bold]")
        processor.write_failures_csv(outcomes, config.output_dir / "failures.csv")
        reporter.generate_markdown_report(config.output_dir / "sync_report.md", config.dry_run)

    console.print(f"\n{'='*60}")
    reporter.print_summary(config.dry_run)
    console.print(f"{'='*60}")


if __name__ == "__main__":
    app()
