"""Product sync: upsert each spreadsheet handle, then reconcile its inventory."""

import logging
from typing import List, Optional, Tuple

from rich.console import Console

from .clients import APIError, GraphQLError, ShopifyClient
from .clients.shopify import to_gid
from .models import CatalogData, SyncOutcome, UpsertRecord, UserError
from .payloads import build_inventory_quantities, build_product_set_input


logger = logging.getLogger(__name__)


class ProductSyncer:
    """Upserts products in Shopify, one handle at a time.

    A failure for one handle is recorded as that handle's outcome and never
    stops the remaining handles.
    """

    def __init__(self, client: ShopifyClient, location_id: str, console: Optional[Console] = None):
        self.client = client
        self.location_id = to_gid("Location", location_id)
        self.console = console or Console()

    async def sync_product(self, record: UpsertRecord, dry_run: bool = False) -> SyncOutcome:
        """Sync a single handle and return its outcome."""
        handle = record.handle
        logger.info('=== Syncing product "%s" ===', handle)

        try:
            existing = await self.client.fetch_product_by_handle(handle)
        except GraphQLError as e:
            return SyncOutcome(
                handle=handle,
                status="user_error",
                user_errors=[UserError.from_graphql_error(err) for err in e.errors],
            )
        except APIError as e:
            logger.error('Failed to look up product "%s": %s', handle, e)
            return SyncOutcome(handle=handle, status="transport_failed", reason=str(e))

        product_input = build_product_set_input(record, existing)
        summary = {
            "variant_count": len(product_input["variants"]),
            "file_count": len(product_input.get("files", [])),
            "metafield_count": len(product_input.get("metafields", [])),
        }

        if dry_run:
            logger.info('[DRY RUN] Would upsert product with handle "%s"', handle)
            logger.info(
                "[DRY RUN] Variants count: %d, files (images): %d, metafields: %d",
                summary["variant_count"], summary["file_count"], summary["metafield_count"],
            )
            return SyncOutcome(
                handle=handle,
                status="dry_run_skipped",
                product_id=existing.id if existing else None,
                **summary,
            )

        try:
            result = await self.client.upsert_product(handle, product_input)
        except APIError as e:
            logger.error('Failed to upsert product "%s": %s', handle, e)
            return SyncOutcome(handle=handle, status="transport_failed", reason=str(e), **summary)

        if result.user_errors:
            return SyncOutcome(handle=handle, status="user_error", user_errors=result.user_errors, **summary)

        if not result.product:
            logger.warning('productSet succeeded but returned no product for handle "%s".', handle)
            return SyncOutcome(
                handle=handle,
                status="user_error",
                user_errors=[UserError(message="productSet succeeded but returned no product")],
                **summary,
            )

        product = result.product
        logger.info(
            'Upserted product: id=%s, handle=%s, title="%s"',
            product.get("id"), product.get("handle"), product.get("title"),
        )

        inventory_lines, warnings = await self.sync_inventory(record)
        return SyncOutcome(
            handle=handle,
            status="upserted",
            product_id=product.get("id"),
            inventory_lines=inventory_lines,
            warnings=warnings,
            **summary,
        )

    async def sync_inventory(self, record: UpsertRecord) -> Tuple[int, List[str]]:
        """Set absolute quantities for every row of the record that has one.

        The product is fetched again so freshly created variants have their
        inventory item ids. Returns the number of lines written and any
        warnings; nothing here fails the record.
        """
        handle = record.handle
        warnings: List[str] = []

        try:
            product = await self.client.fetch_product_by_handle(handle)
        except APIError as e:
            warnings.append(f"Inventory sync skipped, lookup failed: {e}")
            logger.warning('Cannot sync inventory for "%s": %s', handle, e)
            return 0, warnings

        if product is None:
            warnings.append("Inventory sync skipped, product not found after upsert")
            logger.warning('Cannot sync inventory: product "%s" not found after upsert.', handle)
            return 0, warnings

        quantities, unresolved = build_inventory_quantities(record, product, self.location_id)
        for sku in unresolved:
            warnings.append(f'No inventory item for SKU "{sku}"')
            logger.warning(
                'No inventoryItem found for SKU "%s" on product "%s". Skipping inventory line.', sku, handle
            )

        if not quantities:
            logger.info('No inventory rows to sync for product "%s".', handle)
            return 0, warnings

        logger.info(
            'Setting inventory for product "%s" at location %s for %d variant(s).',
            handle, self.location_id, len(quantities),
        )
        try:
            result = await self.client.set_inventory_quantities(quantities)
        except APIError as e:
            warnings.append(f"Inventory update failed: {e}")
            return 0, warnings

        if result.user_errors:
            warnings.extend(f"Inventory user error: {err}" for err in result.user_errors)
            return 0, warnings

        return len(quantities), warnings

    async def sync_all(self, catalog: CatalogData, dry_run: bool = False) -> List[SyncOutcome]:
        """Sync every handle in spreadsheet order."""
        outcomes = []

        for record in catalog.records.values():
            outcome = await self.sync_product(record, dry_run)
            outcomes.append(outcome)
            self._print_outcome(outcome)

        logger.info("All products processed.")
        return outcomes

    def _print_outcome(self, outcome: SyncOutcome) -> None:
        if outcome.status == "upserted":
            detail = f"{outcome.variant_count} variant(s)"
            if outcome.inventory_lines:
                detail += f", inventory set for {outcome.inventory_lines}"
            self.console.print(f"[green]✓ {outcome.handle}: Upserted {detail}[/green]")
            for warning in outcome.warnings:
                self.console.print(f"[yellow]  ! {warning}[/yellow]")
        elif outcome.status == "dry_run_skipped":
            self.console.print(
                f"[dim]- {outcome.handle}: would upsert {outcome.variant_count} variant(s), "
                f"{outcome.file_count} file(s), {outcome.metafield_count} metafield(s)[/dim]"
            )
        else:
            self.console.print(f"[red]✗ {outcome.handle}: {outcome.error_summary}[/red]")
