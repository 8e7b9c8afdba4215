"""
Configuration Management

Uses Pydantic Settings for environment-based configuration.
Loads from .env file automatically.

Global settings use the API_CACHE_ prefix. Per-client settings are read from
{CLIENT}_* variables, e.g. DATAFORSEO_BASE_URL or OPENAI_RATE_LIMIT_MAX_ATTEMPTS.
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, List, Optional

from pydantic import AliasChoices, BaseModel, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Storage
    database_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("API_CACHE_DATABASE_URL", "DATABASE_URL"),
    )
    sqlite_path: str = "api_cache.db"
    sql_debug: bool = False

    # Rate limiting: memory | redis | database
    rate_limit_backend: str = "memory"
    redis_url: Optional[str] = None

    # Compression
    compression_enabled: bool = False
    compression_zstd_threshold: int = 102400  # 100KB

    # Comma separated list of configured clients
    clients: str = "default,demo,dataforseo"

    # Logging
    log_level: str = "INFO"
    error_logging_enabled: bool = True

    class Config:
        env_prefix = "API_CACHE_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra fields in .env file
        case_sensitive = False

    @property
    def client_names(self) -> List[str]:
        return [name.strip() for name in self.clients.split(",") if name.strip()]


class ClientConfig(BaseModel):
    """Settings for one upstream API integration."""

    api_key: Optional[str] = None
    login: Optional[str] = None  # basic auth clients (DataForSEO)
    password: Optional[str] = None
    base_url: Optional[str] = None
    version: Optional[str] = None
    default_endpoint: Optional[str] = None
    cache_ttl: Optional[int] = None  # None = never expires
    compression_enabled: bool = False
    rate_limit_max_attempts: Optional[int] = 1000  # None or negative = unlimited
    rate_limit_decay_seconds: int = 60

    @classmethod
    def from_env(cls, name: str) -> "ClientConfig":
        """
        Build a client config from {NAME}_* environment variables.

        Hyphens in the client name become underscores, so "pixabay-v2" reads
        PIXABAY_V2_API_KEY. Empty values and "null" are treated as unset.
        """
        prefix = name.upper().replace("-", "_") + "_"
        values = {}
        for field_name in cls.model_fields:
            raw = os.getenv(prefix + field_name.upper())
            if raw is None or raw == "":
                continue
            values[field_name] = None if raw.lower() in ("null", "none") else raw
        return cls(**values)


@dataclass
class ApiCacheConfig:
    """
    Explicit configuration object passed to every component.

    Per-client settings are a lookup table keyed by client name; unknown
    clients fall back to the "default" entry.
    """

    settings: Settings = field(default_factory=Settings)
    clients: Dict[str, ClientConfig] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ApiCacheConfig":
        clients = {name: ClientConfig.from_env(name) for name in settings.client_names}
        return cls(settings=settings, clients=clients)

    @property
    def client_names(self) -> List[str]:
        return list(self.clients.keys())

    def get_client(self, name: str) -> ClientConfig:
        if name in self.clients:
            return self.clients[name]
        return self.clients.get("default") or ClientConfig()

    def has_client(self, name: str) -> bool:
        return name in self.clients


@lru_cache
def get_settings() -> Settings:
    """Get or create cached settings instance."""
    return Settings()


@lru_cache
def get_config() -> ApiCacheConfig:
    """Get or create cached configuration built from the environment."""
    return ApiCacheConfig.from_settings(get_settings())
