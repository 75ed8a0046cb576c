"""homeapi configuration management.

Configuration sources (in priority order):
1. Environment variables (HOMEAPI_ prefix, ``__`` for nesting)
2. Config file (config.yaml)
3. Defaults
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    host: str = "0.0.0.0"
    port: int = 8080


class DynamoDBConfig(BaseModel):
    """DynamoDB table configuration."""

    table: str = "homeapi"
    region: str | None = None
    # Local DynamoDB / LocalStack, e.g. http://localhost:8000
    endpoint_url: str | None = None

    # GSI on user_email (partition key only, ALL projection)
    owner_index: str = "user_email-index"

    # Total attempts per call, including the first one
    max_attempts: int = 4
    retry_base_delay: float = 0.05
    retry_max_delay: float = 1.0


class OAuthConfig(BaseModel):
    """Google ID token verification."""

    # Expected audience. None = OAuth disabled, every token is rejected.
    client_id: str | None = None
    jwks_url: str = "https://www.googleapis.com/oauth2/v3/certs"
    issuers: list[str] = Field(
        default_factory=lambda: [
            "https://accounts.google.com",
            "accounts.google.com",
        ]
    )
    jwks_ttl_seconds: int = 3600
    leeway_seconds: int = 30


class AccessConfig(BaseModel):
    """Access policy for shared entities."""

    # - authenticated: any identity may mutate devices/places
    # - allowlist: only emails in `writers`
    write_policy: Literal["authenticated", "allowlist"] = "authenticated"
    writers: list[str] = Field(default_factory=list)

    # Authenticated email must have a registered User item
    require_registered_user: bool = True


class PaginationConfig(BaseModel):
    """Connection page sizes."""

    default_page_size: int = 20
    max_page_size: int = 100


class CorsConfig(BaseModel):
    """CORS configuration."""

    allow_origins: list[str] = Field(default_factory=lambda: ["*"])


class Settings(BaseSettings):
    """homeapi application settings."""

    model_config = SettingsConfigDict(
        env_prefix="HOMEAPI_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    server: ServerConfig = Field(default_factory=ServerConfig)
    dynamodb: DynamoDBConfig = Field(default_factory=DynamoDBConfig)
    oauth: OAuthConfig = Field(default_factory=OAuthConfig)
    access: AccessConfig = Field(default_factory=AccessConfig)
    pagination: PaginationConfig = Field(default_factory=PaginationConfig)
    cors: CorsConfig = Field(default_factory=CorsConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Earlier sources win; the YAML file only fills what env leaves unset
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            file_secret_settings,
            YamlConfigSettingsSource(settings_cls, yaml_file=_find_config_file()),
        )


def _find_config_file() -> Path | None:
    """Locate the YAML config file, if any.

    Looks for config file in order:
    1. HOMEAPI_CONFIG_FILE environment variable
    2. ./config.yaml
    3. /etc/homeapi/config.yaml
    """
    config_paths = [
        os.environ.get("HOMEAPI_CONFIG_FILE"),
        Path("config.yaml"),
        Path("/etc/homeapi/config.yaml"),
    ]

    for path in config_paths:
        if path is None:
            continue
        path = Path(path)
        if path.exists():
            return path

    return None


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Configuration is loaded from:
    1. Environment variables (override)
    2. YAML config file (if exists)
    3. Defaults
    """
    return Settings()
