"""Configuration models and settings for the Shopify Admin API integration."""

import os
from pathlib import Path
from typing import List
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


# Field name -> environment variable, in the order they are reported
REQUIRED_SETTINGS = {
    "store_domain": "SHOPIFY_STORE_DOMAIN",
    "access_token": "SHOPIFY_ACCESS_TOKEN",
    "api_version": "SHOPIFY_API_VERSION",
    "default_location_id": "SHOPIFY_DEFAULT_LOCATION_ID",
}


class ConfigError(Exception):
    """Required configuration is missing or invalid."""
    pass


class ShopifySettings(BaseSettings):
    """Shopify store credentials loaded from environment variables."""

    store_domain: str = Field(default="", description="Store domain, e.g. my-store.myshopify.com")
    access_token: str = Field(default="", description="Admin API access token")
    api_version: str = Field(default="", description="Admin API version tag, e.g. 2024-10")
    default_location_id: str = Field(default="", description="Location receiving inventory quantities")

    model_config = {
        "env_prefix": "SHOPIFY_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    def missing_variables(self) -> List[str]:
        """Names of required environment variables that are unset or blank."""
        return [
            env_name for field_name, env_name in REQUIRED_SETTINGS.items()
            if not str(getattr(self, field_name) or "").strip()
        ]

    def masked_access_token(self) -> str:
        """Access token for display (first 4 and last 4 chars)."""
        token = self.access_token
        if len(token) <= 8:
            return "*" * len(token)
        return f"{token[:4]}...{token[-4:]}"


class Config(BaseModel):
    """Main application configuration."""

    shopify: ShopifySettings

    # File paths
    output_dir: Path = Field(default_factory=lambda: Path("./out"))

    # Request execution
    max_retries: int = Field(default=5, ge=0, le=10)
    initial_backoff: float = Field(default=1.0, gt=0)
    low_credit_threshold: int = Field(default=50, ge=0)
    request_timeout: float = Field(default=30.0, gt=0)

    # Processing options
    dry_run: bool = False


def load_config_from_env() -> Config:
    """Load configuration from environment variables (and a local .env file).

    Raises:
        ConfigError: if any of the required Shopify settings is missing. The
            message names every missing variable, not just the first.
    """
    shopify = ShopifySettings()

    missing = shopify.missing_variables()
    if missing:
        raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")

    try:
        return Config(
            shopify=shopify,
            max_retries=int(os.getenv("SHOPIFY_SYNC_MAX_RETRIES", "5")),
            low_credit_threshold=int(os.getenv("SHOPIFY_SYNC_LOW_CREDIT_THRESHOLD", "50")),
        )
    except ValueError as e:
        raise ConfigError(f"Invalid processing option: {e}") from e
