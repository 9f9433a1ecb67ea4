"""
Shared configuration management for the Records Access Layer.
"""

from typing import List

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CacheFieldMap(BaseModel):
    """Field identifiers of the cache table on the records backend."""

    key: str = "field_3187"
    payload: str = "field_3188"
    owner_identity: str = "field_3189"
    owner_org: str = "field_3190"
    created_at: str = "field_3191"
    last_accessed_at: str = "field_3192"
    access_count: str = "field_3193"
    is_valid: str = "field_3194"
    expires_at: str = "field_3195"
    client_address: str = "field_3196"
    type: str = "field_3197"
    url_value: str = "field_3205"


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="ACCESS_",
        env_file=".env",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="allow",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Records backend
    api_base_url: str = Field(default="https://api.knack.com/v1")
    application_id: str = Field(default="")
    api_key: str = Field(default="")
    request_timeout: float = Field(default=10.0)

    # Request scheduler
    requests_per_second: int = Field(default=6, ge=1)
    window_seconds: float = Field(default=1.0, gt=0)
    window_buffer_seconds: float = Field(default=0.05, ge=0)
    rate_limit_cooldown_seconds: float = Field(default=1.0, ge=0)
    infrastructure_reserved_budget: int = Field(default=1, ge=0)
    max_infrastructure_queue: int = Field(default=200, ge=1)

    # Retry
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=1.0, ge=0)
    retry_max_delay: float = Field(default=60.0, ge=0)
    retry_jitter: bool = Field(default=False)

    # Pagination
    page_size: int = Field(default=1000, ge=1, le=1000)
    max_pages: int = Field(default=10, ge=1)

    # Cache table
    cache_object_key: str = Field(default="object_115")
    cache_default_ttl_minutes: int = Field(default=60, ge=0)
    cache_cleanup_batch_size: int = Field(default=50, ge=1)
    cache_disabled: bool = Field(default=False)
    url_cache_types: List[str] = Field(default_factory=lambda: ["SchoolLogo"])
    cache_fields: CacheFieldMap = Field(default_factory=CacheFieldMap)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str

    def __init__(self, service_name: str, **kwargs):
        super().__init__(service_name=service_name, **kwargs)


def get_config(service_name: str = "records", **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, **overrides)
