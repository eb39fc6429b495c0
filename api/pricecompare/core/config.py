from __future__ import annotations

import functools
from typing import Any, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings

FAILURE_POLICIES = ("abort", "skip")
CACHE_BACKENDS = ("memory", "redis")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = "PriceCompare API"
    environment: str = "development"

    database_url: str = "postgresql://postgres:postgres@db:5432/pricecompare"
    redis_url: str = "redis://redis:6379/0"

    # Result cache
    cache_backend: str = "memory"
    compare_cache_ttl_seconds: int = Field(default=120, ge=0)
    compare_cache_max_entries: int = Field(default=1024, ge=1)

    # Comparison engine
    compare_result_limit: int = Field(default=5, ge=1)
    compare_max_concurrency: int = Field(default=4, ge=1)
    compare_failure_policy: str = "abort"

    # External price source (CHP)
    price_source_url: str = "https://chp.co.il/main_page/compare_results"
    price_source_result_limit: int = Field(default=30, ge=1)
    price_source_timeout_seconds: float = Field(default=15.0, gt=0)

    # Distance provider (Google Distance Matrix)
    google_maps_api_key: Optional[str] = None
    distance_matrix_url: str = "https://maps.googleapis.com/maps/api/distancematrix/json"
    distance_timeout_seconds: float = Field(default=10.0, gt=0)

    # CORS configuration
    cors_origins: str = "*"

    rate_limit_enabled: bool = True
    rate_limit_default: str = "60/minute"

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
    }

    @field_validator("compare_failure_policy", "cache_backend", mode="before")
    @classmethod
    def _normalise_choice(cls, value: Any) -> str:
        return str(value).strip().lower()

    @field_validator("compare_failure_policy")
    @classmethod
    def validate_failure_policy(cls, v: str) -> str:
        if v not in FAILURE_POLICIES:
            raise ValueError(
                f"COMPARE_FAILURE_POLICY must be one of: {', '.join(FAILURE_POLICIES)}"
            )
        return v

    @field_validator("cache_backend")
    @classmethod
    def validate_cache_backend(cls, v: str) -> str:
        if v not in CACHE_BACKENDS:
            raise ValueError(f"CACHE_BACKEND must be one of: {', '.join(CACHE_BACKENDS)}")
        return v

    @field_validator("google_maps_api_key", mode="before")
    @classmethod
    def _blank_key_is_none(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    @model_validator(mode="after")
    def _check_production_cors(self) -> "Settings":
        if self.environment == "production" and "*" in self.cors_origin_list:
            raise ValueError("Invalid CORS configuration: wildcard origins not allowed in production")
        return self

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@functools.lru_cache()
def get_settings() -> Settings:
    return Settings()


__all__ = ["Settings", "get_settings", "FAILURE_POLICIES", "CACHE_BACKENDS"]
