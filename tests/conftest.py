"""
Pytest configuration and shared fixtures for shopify-sync tests.

Provides a recording sleep, mock-transport executors and sample records.
"""
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from shopify_sync.clients.base import GraphQLExecutor
from shopify_sync.config import Config, ShopifySettings
from shopify_sync.models import UpsertRecord


GRAPHQL_URL = "https://test-store.myshopify.com/admin/api/2024-10/graphql.json"


class SleepRecorder:
    """Stands in for asyncio.sleep and records every requested duration."""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(float(seconds))


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def make_executor(sleeper):
    """Factory: executor whose HTTP calls go to ``handler``."""

    def _make(handler: Callable[[httpx.Request], httpx.Response], **kwargs) -> GraphQLExecutor:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return GraphQLExecutor(GRAPHQL_URL, headers={"X-Shopify-Access-Token": "shpat_test"},
                               client=client, sleep=sleeper, **kwargs)

    return _make


def graphql_body(
    data: Optional[Dict[str, Any]] = None,
    available: Any = 1000,
    restore_rate: Any = 50,
    errors: Optional[List[Dict[str, Any]]] = None,
    with_cost: bool = True,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {"data": data or {}}
    if errors is not None:
        body["errors"] = errors
    if with_cost:
        body["extensions"] = {
            "cost": {
                "requestedQueryCost": 10,
                "actualQueryCost": 8,
                "throttleStatus": {
                    "maximumAvailable": 1000,
                    "currentlyAvailable": available,
                    "restoreRate": restore_rate,
                },
            }
        }
    return body


@pytest.fixture
def body():
    """Factory for GraphQL response envelopes."""
    return graphql_body


@pytest.fixture
def config() -> Config:
    settings = ShopifySettings(
        store_domain="test-store",
        access_token="shpat_0123456789",
        api_version="2024-10",
        default_location_id="555",
    )
    return Config(shopify=settings)


def _variant_row(handle: str, sku: str, title: str, price: Any = "19.99", quantity: Any = "") -> Dict[str, Any]:
    return {
        "ProductHandle": handle,
        "ProductTitle": "Classic Shirt",
        "ProductDescriptionHtml": "<p>Soft cotton</p>",
        "ProductType": "Shirts",
        "Vendor": "Acme",
        "Tags": "cotton, summer",
        "Status": "",
        "VariantSKU": sku,
        "VariantTitle": title,
        "VariantPrice": price,
        "VariantInventoryQuantity": quantity,
    }


@pytest.fixture
def variant_row():
    return _variant_row


@pytest.fixture
def shirt_record() -> UpsertRecord:
    """Two variants: S1 with quantity 10, S2 with a blank quantity."""
    return UpsertRecord(
        handle="shirt-1",
        variant_rows=(
            _variant_row("shirt-1", "S1", "Small", quantity=10),
            _variant_row("shirt-1", "S2", "Medium", quantity=""),
        ),
    )
