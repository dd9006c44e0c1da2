"""
Application settings loaded from environment variables.

Uses pydantic-settings for validation and type safety.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from functools import lru_cache
from typing import Optional


DEFAULT_DISCOVERY_TIERS = [
    "cache",
    "persisted",
    "import_hint",
    "batch_search",
    "exhaustive_search",
]


class Settings(BaseSettings):
    """
    Application settings.

    All values loaded from .env file or environment variables.
    Validation happens automatically on startup.
    """

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),  # Check current dir, then parent
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"  # Ignore extra env vars
    )

    # ===================
    # SUPABASE
    # ===================
    supabase_url: str = Field(
        ...,
        description="Supabase project URL"
    )
    supabase_key: str = Field(
        ...,
        description="Supabase anon/public key"
    )
    supabase_service_key: Optional[str] = Field(
        None,
        description="Supabase service role key (for admin operations)"
    )

    # ===================
    # SHOPIFY
    # ===================
    shopify_shop_domain: Optional[str] = Field(
        None,
        description="Shop domain, e.g. my-store.myshopify.com"
    )
    shopify_access_token: Optional[str] = Field(
        None,
        description="Admin API access token"
    )
    shopify_api_version: str = Field(
        default="2024-10",
        pattern=r"^\d{4}-\d{2}$",
        description="Admin API version"
    )

    # ===================
    # RATE LIMITING
    # ===================
    rate_limit_calls: int = Field(
        default=2,
        ge=1,
        le=100,
        description="Maximum remote calls per window (Shopify REST allows 2/s)"
    )
    rate_limit_window_seconds: float = Field(
        default=1.0,
        gt=0,
        le=60,
        description="Length of the sliding rate window"
    )

    # ===================
    # RETRY POLICY
    # ===================
    retry_max_attempts: int = Field(
        default=5,
        ge=0,
        le=20,
        description="Maximum retries after the first attempt"
    )
    retry_base_delay_seconds: float = Field(
        default=1.0,
        gt=0,
        le=60,
        description="Base delay for throttling backoff (doubles per retry) and the fixed network retry delay"
    )
    retry_max_delay_seconds: float = Field(
        default=30.0,
        gt=0,
        le=600,
        description="Upper bound for any single backoff"
    )
    retry_jitter_ratio: float = Field(
        default=0.1,
        ge=0,
        le=0.5,
        description="Random jitter applied to every backoff (0.1 = +/-10%)"
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=300,
        description="Wall-clock timeout for one remote call"
    )

    # ===================
    # DISCOVERY
    # ===================
    mapping_cache_ttl_seconds: int = Field(
        default=300,
        ge=1,
        le=86400,
        description="How long a mapping stays in the in-memory cache"
    )
    batch_search_size: int = Field(
        default=25,
        ge=1,
        le=50,
        description="Barcodes per batched search query"
    )
    batch_search_max_query_length: int = Field(
        default=2000,
        ge=100,
        le=10000,
        description="Maximum characters in one search query string"
    )
    exhaustive_page_size: int = Field(
        default=250,
        ge=1,
        le=250,
        description="Products per page during exhaustive search"
    )
    exhaustive_max_records: int = Field(
        default=3000,
        ge=1,
        le=100000,
        description="Products scanned before exhaustive search gives up"
    )
    import_hint_concurrency: int = Field(
        default=4,
        ge=1,
        le=32,
        description="Import hints verified concurrently during bulk resolution"
    )
    discovery_tiers: list[str] = Field(
        default_factory=lambda: list(DEFAULT_DISCOVERY_TIERS),
        description="Enabled discovery tiers, in order"
    )
    allow_blank_barcode_hints: bool = Field(
        default=False,
        description="Accept hinted records with an empty barcode without a per-hint flag"
    )

    # ===================
    # TABLES
    # ===================
    mapping_table: str = Field(
        default="shopify_product_mappings",
        description="Mapping Store table"
    )
    sync_stats_table: str = Field(
        default="shopify_sync_stats",
        description="Per-store daily sync statistics table"
    )

    # ===================
    # APP SETTINGS
    # ===================
    environment: str = Field(
        default="development",
        pattern="^(development|staging|production)$",
        description="Application environment"
    )
    debug: bool = Field(
        default=True,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Logging level"
    )
    api_host: str = Field(
        default="0.0.0.0",
        description="API host"
    )
    api_port: int = Field(
        default=8000,
        ge=1000,
        le=65535,
        description="API port"
    )

    # ===================
    # COMPUTED PROPERTIES
    # ===================
    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"

    @property
    def shopify_configured(self) -> bool:
        """Check if Shopify credentials are present."""
        return bool(self.shopify_shop_domain and self.shopify_access_token)

    @property
    def shopify_base_url(self) -> str:
        """Admin API base URL for the configured shop."""
        domain = (self.shopify_shop_domain or "").strip().rstrip("/")
        if domain and not domain.startswith("http"):
            domain = f"https://{domain}"
        return f"{domain}/admin/api/{self.shopify_api_version}"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload.

    Returns:
        Settings: Application settings

    Raises:
        ValidationError: If required env vars are missing or invalid
    """
    return Settings()


# For convenient imports: from config.settings import settings
settings = get_settings()
