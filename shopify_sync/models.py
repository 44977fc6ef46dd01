"""Pydantic models shared by the client, sync and reporting layers."""

import math
from typing import Any, Dict, List, Literal, Optional, Tuple, Union
from pydantic import BaseModel, ConfigDict, Field


def _as_number(value: Any) -> Optional[float]:
    """Return value as a finite float, or None for anything non-numeric."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return float(value)


class ThrottleStatus(BaseModel):
    """Rate-limit bucket state reported in a GraphQL response's ``extensions.cost``."""

    requested_cost: Optional[float] = None
    actual_cost: Optional[float] = None
    max_credits: Optional[float] = None
    available_credits: float
    restore_rate: float

    @classmethod
    def from_response(cls, data: Any) -> Optional["ThrottleStatus"]:
        """Extract the throttle status from a response envelope.

        Returns None when the cost block is absent or malformed, which turns
        pacing off for that call only.
        """
        if not isinstance(data, dict):
            return None
        extensions = data.get("extensions")
        cost = extensions.get("cost") if isinstance(extensions, dict) else None
        if not isinstance(cost, dict):
            return None
        throttle = cost.get("throttleStatus")
        if not isinstance(throttle, dict):
            return None

        available = _as_number(throttle.get("currentlyAvailable"))
        restore_rate = _as_number(throttle.get("restoreRate"))
        if available is None or restore_rate is None:
            return None

        return cls(
            requested_cost=_as_number(cost.get("requestedQueryCost")),
            actual_cost=_as_number(cost.get("actualQueryCost")),
            max_credits=_as_number(throttle.get("maximumAvailable")),
            available_credits=available,
            restore_rate=restore_rate,
        )


class RetryState(BaseModel):
    """Retry bookkeeping for one logical call."""

    attempt_count: int = Field(default=0, ge=0)
    backoff_seconds: float

    @classmethod
    def after_retries(cls, retries: int, initial_backoff: float) -> "RetryState":
        """State before the next wait, ``retries`` throttling retries into a call.

        The backoff doubles with every retry: initial, 2x, 4x, ...
        """
        return cls(attempt_count=retries, backoff_seconds=initial_backoff * (2 ** retries))


class UserError(BaseModel):
    """A structured business-rule rejection returned by the Admin API."""

    field: Optional[List[Union[str, int]]] = None
    message: str
    code: Optional[str] = None

    @classmethod
    def from_graphql_error(cls, error: Dict[str, Any]) -> "UserError":
        """Convert a top-level GraphQL ``errors`` entry."""
        extensions = error.get("extensions") or {}
        return cls(
            field=error.get("path"),
            message=str(error.get("message") or "Unknown GraphQL error"),
            code=extensions.get("code") if isinstance(extensions, dict) else None,
        )

    def __str__(self) -> str:
        location = ".".join(str(part) for part in self.field) if self.field else "-"
        return f"{location}: {self.message}"


class ExistingVariant(BaseModel):
    """A variant already present in the store."""

    id: str
    sku: Optional[str] = None
    title: Optional[str] = None
    inventory_item_id: Optional[str] = None


class ExistingProduct(BaseModel):
    """A product already present in the store, as returned by ``productByHandle``."""

    id: str
    handle: str
    title: Optional[str] = None
    variants: List[ExistingVariant] = Field(default_factory=list)

    @classmethod
    def from_node(cls, node: Dict[str, Any]) -> "ExistingProduct":
        variants = []
        for variant in (node.get("variants") or {}).get("nodes") or []:
            inventory_item = variant.get("inventoryItem") or {}
            variants.append(ExistingVariant(
                id=variant["id"],
                sku=variant.get("sku"),
                title=variant.get("title"),
                inventory_item_id=inventory_item.get("id"),
            ))
        return cls(id=node["id"], handle=node.get("handle") or "", title=node.get("title"), variants=variants)

    def variant_ids_by_sku(self) -> Dict[str, str]:
        """SKU -> variant GID, used to update variants in place."""
        return {v.sku: v.id for v in self.variants if v.sku}

    def inventory_item_ids_by_sku(self) -> Dict[str, str]:
        """SKU -> inventory item GID, used for quantity writes."""
        return {v.sku: v.inventory_item_id for v in self.variants if v.sku and v.inventory_item_id}


class UpsertRecord(BaseModel):
    """All spreadsheet rows for one product handle."""

    model_config = ConfigDict(frozen=True)

    handle: str
    variant_rows: Tuple[Dict[str, Any], ...]
    image_rows: Tuple[Dict[str, Any], ...] = ()
    metafield_rows: Tuple[Dict[str, Any], ...] = ()


class CatalogData(BaseModel):
    """Spreadsheet contents grouped by product handle, in first-seen order."""

    records: Dict[str, UpsertRecord] = Field(default_factory=dict)
    product_rows: int = 0
    image_rows: int = 0
    metafield_rows: int = 0
    skipped_rows: int = 0
    missing_optional_columns: List[str] = Field(default_factory=list)

    @property
    def products_with_images(self) -> int:
        return sum(1 for r in self.records.values() if r.image_rows)

    @property
    def products_with_metafields(self) -> int:
        return sum(1 for r in self.records.values() if r.metafield_rows)


class InventoryQuantity(BaseModel):
    """One absolute quantity for an (inventory item, location) pair."""

    inventory_item_id: str
    location_id: str
    quantity: int

    def to_input(self) -> Dict[str, Any]:
        return {
            "inventoryItemId": self.inventory_item_id,
            "locationId": self.location_id,
            "quantity": self.quantity,
        }


class UpsertResult(BaseModel):
    """Result of a ``productSet`` call."""

    product: Optional[Dict[str, Any]] = None
    user_errors: List[UserError] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.user_errors and self.product is not None


class InventoryResult(BaseModel):
    """Result of an ``inventorySetQuantities`` call."""

    user_errors: List[UserError] = Field(default_factory=list)
    adjustment_group: Optional[Dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return not self.user_errors


OutcomeStatus = Literal["upserted", "dry_run_skipped", "user_error", "transport_failed"]


class SyncOutcome(BaseModel):
    """Result of syncing one product handle."""

    handle: str
    status: OutcomeStatus
    product_id: Optional[str] = None
    user_errors: List[UserError] = Field(default_factory=list)
    reason: Optional[str] = None

    # Payload summary
    variant_count: int = 0
    file_count: int = 0
    metafield_count: int = 0

    inventory_lines: int = 0
    warnings: List[str] = Field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.status in ("user_error", "transport_failed")

    @property
    def error_summary(self) -> str:
        if self.reason:
            return self.reason
        return "; ".join(str(e) for e in self.user_errors)


class ProcessingStats(BaseModel):
    """Statistics for a sync run."""

    total_records: int = 0
    upserted: int = 0
    dry_run_skipped: int = 0
    user_errors: int = 0
    transport_failures: int = 0
    inventory_updates: int = 0
    warnings: int = 0

    def add_outcome(self, outcome: SyncOutcome) -> None:
        """Add a record outcome to the statistics."""
        self.total_records += 1
        if outcome.status == "upserted":
            self.upserted += 1
            if outcome.inventory_lines:
                self.inventory_updates += 1
        elif outcome.status == "dry_run_skipped":
            self.dry_run_skipped += 1
        elif outcome.status == "user_error":
            self.user_errors += 1
        else:
            self.transport_failures += 1
        self.warnings += len(outcome.warnings)

    @property
    def errors(self) -> int:
        return self.user_errors + self.transport_failures
