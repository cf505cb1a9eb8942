"""
Shared configuration management for the bundle pricing services.
"""

from functools import lru_cache
from typing import Any, Dict, List, Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_VOLUME_TIERS: List[Dict[str, Any]] = [
    {"min_quantity": 2, "max_quantity": 4, "discount_percentage": 5, "description": "Buy 2-4 get 5% off each"},
    {"min_quantity": 5, "max_quantity": 9, "discount_percentage": 10, "description": "Buy 5-9 get 10% off each"},
    {"min_quantity": 10, "max_quantity": None, "discount_percentage": 15, "description": "Buy 10+ get 15% off each"},
]


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PRICING_",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local", description="Deployment environment")
    log_level: str = Field(default="info", description="Root log level")

    # External services
    postgres_dsn: str = Field(default="postgres://localhost:5432/pricing")
    redis_url: str = Field(default="redis://localhost:6379/0")
    postgres_command_timeout: float = Field(default=30.0)


class PricingSettings(BaseConfig):
    """Pricing engine configuration."""

    service_name: str = "pricing"

    # Caching
    rule_cache_ttl_seconds: float = Field(default=60.0, gt=0)
    coupon_cache_ttl_seconds: float = Field(default=300.0, gt=0)

    # Pricing policy
    unused_days_retention_factor: float = Field(default=0.5, ge=0, le=1)
    markup_aggregation: Literal["sum", "max"] = "sum"
    strict_rule_params: bool = False
    default_payment_method: str = "ISRAELI_CARD"
    volume_discount_tiers: List[Dict[str, Any]] = Field(
        default_factory=lambda: [dict(tier) for tier in DEFAULT_VOLUME_TIERS]
    )

    # Request handling
    calculation_timeout_seconds: Optional[float] = Field(default=None, gt=0)


@lru_cache()
def get_settings() -> PricingSettings:
    """Get the process-wide pricing settings."""
    return PricingSettings()
