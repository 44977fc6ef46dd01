"""
Spreadsheet to Shopify Product Sync

A CLI tool that reads a product workbook (Products / Images / Metafields
sheets) and upserts each product into Shopify via the Admin GraphQL API:
- Products, variants, images and metafields via productSet (keyed by handle)
- Absolute inventory quantities via inventorySetQuantities

Existing variants are matched by SKU and updated in place.
"""

__version__ = "1.0.0"
__author__ = "Shopify Sync Tool"

from .config import Config, ShopifySettings, ConfigError

__all__ = ["Config", "ShopifySettings", "ConfigError"]
