"""Configuration management for the SMAPI bridge.

Supports YAML configuration files and environment variable overrides.
Configuration is loaded once and cached for performance.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_IMAGE_URL_TEMPLATE = "{base_url}/Items/{item_id}/Images/Primary?maxWidth=300"


class BridgeSettings(BaseSettings):
    """Sonos-facing service configuration."""
    service_name: str = Field(default="Music Library", description="Name shown in the Sonos app")
    service_id: int = Field(default=247, description="Sonos service id, also the OAuth client id")
    secret_key: str = Field(default="", description="Secret used to sign access tokens")
    external_url: str = Field(
        default="http://localhost:8096",
        description="Base URL reachable by Sonos players"
    )
    image_url_template: str = Field(default=DEFAULT_IMAGE_URL_TEMPLATE)
    request_timeout_seconds: float = Field(default=10.0, gt=0)

    model_config = SettingsConfigDict(
        env_prefix="SONOS_",
        env_file=".env",
        extra="ignore"
    )

    @property
    def base_url(self) -> str:
        """External URL without a trailing slash."""
        return self.external_url.rstrip("/")


class OAuthSettings(BaseSettings):
    """Token lifetimes and defaults."""
    access_token_minutes: int = Field(default=60, gt=0)
    authorization_code_minutes: int = Field(default=10, gt=0)
    refresh_token_days: int = Field(default=30, gt=0)
    default_scope: str = Field(default="smapi")

    model_config = SettingsConfigDict(
        env_prefix="OAUTH_",
        env_file=".env",
        extra="ignore"
    )


class ServerSettings(BaseSettings):
    """HTTP server configuration."""
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8096)
    enable_audit: bool = Field(default=True)
    audit_log_path: str = Field(default="logs/audit.log")

    # Reference collaborators
    library_path: str = Field(default="config/library.yaml")
    users_path: str = Field(default="config/users.yaml")

    model_config = SettingsConfigDict(
        env_prefix="SMAPI_SERVER_",
        env_file=".env",
        extra="ignore"
    )


class Settings(BaseSettings):
    """Main application settings."""
    environment: str = Field(default="development")
    log_level: str = Field(default="INFO")

    # Component settings
    bridge: BridgeSettings = Field(default_factory=BridgeSettings)
    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)

    model_config = SettingsConfigDict(
        env_prefix="SMAPI_",
        env_file=".env",
        extra="ignore"
    )

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """
        Load settings from a YAML file.

        Top-level keys map to ``Settings`` fields; ``bridge``, ``oauth`` and
        ``server`` hold the nested groups. A missing file gives the defaults.
        """
        return cls(**load_yaml_config(path))


def load_yaml_config(path: str | Path) -> dict[str, Any]:
    """Load a YAML file; a missing or empty file yields ``{}``."""
    path = Path(path)
    if not path.exists():
        return {}

    with open(path) as f:
        return yaml.safe_load(f) or {}


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    config_path = os.environ.get("SMAPI_CONFIG_PATH", "config/settings.yaml")
    return Settings.from_yaml(config_path)
