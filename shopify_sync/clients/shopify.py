"""Shopify Admin GraphQL API client."""

import json
import logging
from typing import Any, Dict, List, Optional, Union

import httpx
from pydantic import ValidationError

from ..config import Config
from ..models import ExistingProduct, InventoryQuantity, InventoryResult, UpsertResult, UserError
from .base import GraphQLError, GraphQLExecutor, TransportError


logger = logging.getLogger(__name__)


PRODUCT_BY_HANDLE_QUERY = """
query getProductByHandle($handle: String!) {
  productByHandle(handle: $handle) {
    id
    handle
    title
    variants(first: 250) {
      nodes {
        id
        sku
        title
        inventoryItem {
          id
        }
      }
    }
  }
}
"""

PRODUCT_SET_MUTATION = """
mutation upsertProductFromSpreadsheet($identifier: ProductSetIdentifiers, $input: ProductSetInput!) {
  productSet(identifier: $identifier, input: $input) {
    product {
      id
      handle
      title
    }
    userErrors {
      field
      message
      code
    }
  }
}
"""

INVENTORY_SET_QUANTITIES_MUTATION = """
mutation inventorySetQuantities($input: InventorySetQuantitiesInput!) {
  inventorySetQuantities(input: $input) {
    userErrors {
      field
      message
    }
    inventoryAdjustmentGroup {
      createdAt
      reason
    }
  }
}
"""

# inventorySetQuantities: absolute quantities, no compare-quantity check
INVENTORY_QUANTITY_NAME = "available"
INVENTORY_REASON = "correction"

# What a 200 response with an unexpected payload shape raises while being parsed
RESPONSE_SHAPE_ERRORS = (AttributeError, KeyError, TypeError, ValidationError)


def normalize_store_domain(domain: Optional[str]) -> Optional[str]:
    """Normalize a store domain to a bare host name.

    - "my-store" -> "my-store.myshopify.com"
    - "https://my-store.myshopify.com/" -> "my-store.myshopify.com"
    - "shop.example.com" -> "shop.example.com"
    """
    if not domain:
        return domain
    domain = domain.strip().replace("https://", "").replace("http://", "").rstrip("/")
    if "." not in domain:
        domain = f"{domain}.myshopify.com"
    return domain


def to_gid(entity: str, value: Union[str, int]) -> str:
    """Convert a numeric id to a GraphQL global id; GIDs pass through unchanged."""
    if isinstance(value, str) and value.startswith("gid://"):
        return value
    return f"gid://shopify/{entity}/{value}"


def _user_errors(items: Optional[List[Dict[str, Any]]]) -> List[UserError]:
    return [UserError.model_validate(item) for item in items or []]


def _unexpected_shape(operation: str, error: Exception) -> TransportError:
    logger.error("Unexpected Shopify response shape for %s: %r", operation, error)
    return TransportError(f"Unexpected Shopify response shape for {operation}: {error!r}")


class ShopifyClient:
    """Catalog operations on top of a :class:`GraphQLExecutor`."""

    def __init__(self, executor: GraphQLExecutor):
        self.executor = executor

    @classmethod
    def from_config(cls, config: Config, client: Optional[httpx.AsyncClient] = None) -> "ShopifyClient":
        settings = config.shopify
        domain = normalize_store_domain(settings.store_domain)
        url = f"https://{domain}/admin/api/{settings.api_version}/graphql.json"
        executor = GraphQLExecutor(
            url,
            headers={
                "Content-Type": "application/json",
                "X-Shopify-Access-Token": settings.access_token,
                "User-Agent": "Shopify-Sync/1.0.0",
            },
            client=client,
            max_retries=config.max_retries,
            initial_backoff=config.initial_backoff,
            low_credit_threshold=config.low_credit_threshold,
            timeout=config.request_timeout,
        )
        logger.info("ShopifyClient initialized: domain=%s api_version=%s", domain, settings.api_version)
        return cls(executor)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.executor.aclose()

    async def fetch_product_by_handle(self, handle: str) -> Optional[ExistingProduct]:
        """Find a product by handle. Returns None when it does not exist.

        Raises:
            GraphQLError: the query itself was rejected.
            TransportError: the response could not be parsed.
        """
        data = await self.executor.execute(PRODUCT_BY_HANDLE_QUERY, {"handle": handle})
        errors = data.get("errors")
        if errors:
            if not isinstance(errors, list) or not all(isinstance(e, dict) for e in errors):
                raise _unexpected_shape("productByHandle", TypeError(f"errors is {errors!r}"))
            raise GraphQLError(errors)

        try:
            node = (data.get("data") or {}).get("productByHandle")
            product = ExistingProduct.from_node(node) if node else None
        except RESPONSE_SHAPE_ERRORS as e:
            raise _unexpected_shape("productByHandle", e) from e

        if product is None:
            logger.info('No existing product found for handle "%s". Will create.', handle)
            return None

        logger.info('Found existing product for handle "%s" (id: %s).', handle, product.id)
        return product

    async def upsert_product(self, handle: str, product_input: Dict[str, Any]) -> UpsertResult:
        """Create or update a product keyed by its handle (``productSet``).

        Keying by handle rather than id makes the call safe to repeat and safe
        for products that do not exist yet.
        """
        variables = {"identifier": {"handle": handle}, "input": product_input}
        data = await self.executor.execute(PRODUCT_SET_MUTATION, variables)

        try:
            if data.get("errors"):
                return UpsertResult(user_errors=[UserError.from_graphql_error(e) for e in data["errors"]])

            payload = (data.get("data") or {}).get("productSet")
            if not payload:
                logger.error(
                    'productSet returned no payload for handle "%s". Raw: %s', handle, json.dumps(data, default=str)
                )
                return UpsertResult(user_errors=[UserError(message="productSet returned no payload")])

            result = UpsertResult(product=payload.get("product"), user_errors=_user_errors(payload.get("userErrors")))
        except RESPONSE_SHAPE_ERRORS as e:
            raise _unexpected_shape("productSet", e) from e

        if result.user_errors:
            logger.error(
                'productSet userErrors for handle "%s": %s',
                handle, json.dumps([e.model_dump() for e in result.user_errors], indent=2),
            )
        return result

    async def set_inventory_quantities(self, quantities: List[InventoryQuantity]) -> InventoryResult:
        """Set absolute ``available`` quantities for a batch of inventory items."""
        variables = {
            "input": {
                "name": INVENTORY_QUANTITY_NAME,
                "reason": INVENTORY_REASON,
                "ignoreCompareQuantity": True,
                "quantities": [q.to_input() for q in quantities],
            }
        }
        data = await self.executor.execute(INVENTORY_SET_QUANTITIES_MUTATION, variables)

        try:
            if data.get("errors"):
                return InventoryResult(user_errors=[UserError.from_graphql_error(e) for e in data["errors"]])

            payload = (data.get("data") or {}).get("inventorySetQuantities") or {}
            result = InventoryResult(
                user_errors=_user_errors(payload.get("userErrors")),
                adjustment_group=payload.get("inventoryAdjustmentGroup"),
            )
        except RESPONSE_SHAPE_ERRORS as e:
            raise _unexpected_shape("inventorySetQuantities", e) from e
        if result.user_errors:
            logger.error(
                "inventorySetQuantities userErrors: %s",
                json.dumps([e.model_dump() for e in result.user_errors], indent=2),
            )
        else:
            logger.info(
                'inventorySetQuantities success (reason="%s", name="%s")',
                INVENTORY_REASON, INVENTORY_QUANTITY_NAME,
            )
        return result
