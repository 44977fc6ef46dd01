"""HTTP clients for the Shopify Admin API."""

from .shopify import ShopifyClient
from .base import APIError, GraphQLError, GraphQLExecutor, RateLimitError, TransportError

__all__ = ["ShopifyClient", "GraphQLExecutor", "APIError", "GraphQLError", "RateLimitError", "TransportError"]
