"""Reporting for sync runs: console tables and a markdown report."""

from pathlib import Path
from typing import List, Optional
from datetime import datetime
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

from . import __version__
from .models import CatalogData, ProcessingStats, SyncOutcome


class Reporter:
    """Collects record outcomes and renders summaries."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()
        self.stats = ProcessingStats()
        self.outcomes: List[SyncOutcome] = []

    @property
    def failures(self) -> List[SyncOutcome]:
        return [o for o in self.outcomes if o.failed]

    def add_outcome(self, outcome: SyncOutcome) -> None:
        """Add a record outcome to statistics and failures tracking."""
        self.outcomes.append(outcome)
        self.stats.add_outcome(outcome)

    def add_outcomes(self, outcomes: List[SyncOutcome]) -> None:
        for outcome in outcomes:
            self.add_outcome(outcome)

    def print_parse_summary(self, catalog: CatalogData, dry_run: bool = False) -> None:
        """Print information about the spreadsheet before processing starts."""
        missing = ", ".join(catalog.missing_optional_columns) or "None"
        info_panel = Panel.fit(
            f"[bold]Spreadsheet Parse Summary[/bold]\n\n"
            f"Products (by handle): {len(catalog.records)}\n"
            f"Variant rows: {catalog.product_rows}\n"
            f"Products with images: {catalog.products_with_images}\n"
            f"Products with metafields: {catalog.products_with_metafields}\n"
            f"Skipped rows: {catalog.skipped_rows}\n\n"
            f"[yellow]Missing optional columns:[/yellow]\n{missing}\n\n"
            f"Dry run: {'YES' if dry_run else 'NO'}",
            title="Input Analysis",
            border_style="blue"
        )
        self.console.print(info_panel)

    def print_summary(self, dry_run: bool = False) -> None:
        """Print a summary of the processing results."""
        title = "DRY RUN SUMMARY" if dry_run else "SYNC SUMMARY"

        table = Table(title=title, show_header=True, header_style="bold magenta")
        table.add_column("Metric", style="cyan", no_wrap=True)
        table.add_column("Count", justify="right", style="green")

        table.add_row("Products", str(self.stats.total_records))
        if dry_run:
            table.add_row("Would Upsert", str(self.stats.dry_run_skipped))
        else:
            table.add_row("Upserted", str(self.stats.upserted))
            table.add_row("Inventory Updates", str(self.stats.inventory_updates))
        table.add_row("User Errors", str(self.stats.user_errors))
        table.add_row("Transport Failures", str(self.stats.transport_failures))
        table.add_row("Warnings", str(self.stats.warnings))

        self.console.print(table)

        failures = self.failures
        if failures:
            self.console.print(f"\n[red]Found {len(failures)} failed products:[/red]")
            error_table = Table(show_header=True, header_style="bold red")
            error_table.add_column("Handle", style="yellow")
            error_table.add_column("Status", style="cyan")
            error_table.add_column("Error", style="red")

            for outcome in failures[:10]:  # Show first 10 errors
                error = outcome.error_summary
                error_table.add_row(
                    outcome.handle,
                    outcome.status,
                    error[:80] + "..." if len(error) > 80 else error
                )

            if len(failures) > 10:
                error_table.add_row("...", "...", f"and {len(failures) - 10} more errors")

            self.console.print(error_table)

    def generate_markdown_report(self, output_path: Path, dry_run: bool = False) -> None:
        """Generate detailed markdown report."""
        report_content = self._build_markdown_report(dry_run)

        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, 'w', encoding='utf-8') as f:
            f.write(report_content)

        self.console.print(f"[green]Report written to {output_path}[/green]")

    def _build_markdown_report(self, dry_run: bool = False) -> str:
        """Build the markdown report content."""
        timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        title = "Shopify Product Sync Report (DRY RUN)" if dry_run else "Shopify Product Sync Report"
        stats = self.stats

        content = f"""# {title}

**Generated:** {timestamp}

## Summary Statistics

| Metric | Count |
|--------|--------|
| Products | {stats.total_records} |
| Upserted | {stats.upserted} |
| Dry Run Skipped | {stats.dry_run_skipped} |
| Inventory Updates | {stats.inventory_updates} |
| User Errors | {stats.user_errors} |
| Transport Failures | {stats.transport_failures} |
| Warnings | {stats.warnings} |

"""

        failures = self.failures
        if failures:
            content += "## Errors and Failures\n\n"
            content += "| Handle | Status | Error |\n"
            content += "|--------|--------|-------|\n"

            for outcome in failures[:20]:  # Limit to first 20 errors
                error_text = outcome.error_summary.replace('|', '\\|').replace('\n', ' ')[:100]
                content += f"| {outcome.handle} | {outcome.status} | {error_text} |\n"

            if len(failures) > 20:
                content += f"\n*... and {len(failures) - 20} more errors*\n"

        warned = [o for o in self.outcomes if o.warnings]
        if warned:
            content += "\n## Warnings\n\n"
            for outcome in warned:
                for warning in outcome.warnings:
                    content += f"- `{outcome.handle}`: {warning}\n"

        content += """
## Recommendations

"""

        if stats.user_errors > 0:
            content += f"- **Review User Errors:** {stats.user_errors} products were rejected by Shopify. Fix the spreadsheet rows and re-run; existing variants are matched by SKU.\n"

        if stats.transport_failures > 0:
            content += f"- **Retry Failures:** {stats.transport_failures} products failed to reach Shopify. Re-running the sync is safe.\n"

        if not dry_run and stats.upserted == 0:
            content += "- **No Updates:** No products were upserted. Check credentials and the spreadsheet contents.\n"

        content += f"""
---
*Report generated by Shopify Sync v{__version__}*
"""

        return content
