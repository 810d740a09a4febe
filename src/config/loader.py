"""Configuration loading from environment and YAML files."""

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    # Server info
    server_name: str = "docs-channel-mcp-server"
    server_version: str = "1.0.0"

    # Host and port
    host: str = "0.0.0.0"
    port: int = 8000

    # Session tag reported in init frames and capabilities
    documentation_partition: Literal["aws", "aws-cn"] = "aws"

    # Push channel liveness (seconds)
    heartbeat_interval: float = 30.0
    session_max_age: float = 300.0
    sweep_interval: float = 60.0

    # Client defaults (seconds)
    channel_request_timeout: float = 30.0
    channel_connect_timeout: float = 30.0
    channel_reconnect_interval: float = 5.0
    channel_max_reconnect_attempts: int = 10

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def load_api_config(config_path: str | Path | None = None) -> dict[str, Any]:
    """
    Load tool provider configuration from YAML file.

    Args:
        config_path: Path to the config file. If None, uses default location.

    Returns:
        Dictionary with configuration data.
    """
    if config_path is None:
        # Try to find config relative to project root
        possible_paths = [
            Path("config/apis.yaml"),
            Path(__file__).parent.parent.parent / "config" / "apis.yaml",
        ]
        for path in possible_paths:
            if path.exists():
                config_path = path
                break
        else:
            # Return default config if file not found
            return {"enabled_providers": ["diagnostics"], "providers": {}}

    config_path = Path(config_path)
    if not config_path.exists():
        return {"enabled_providers": ["diagnostics"], "providers": {}}

    with open(config_path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f) or {}

    return config


def get_enabled_providers(config: dict[str, Any] | None = None) -> list[str]:
    """Get list of enabled provider names."""
    if config is None:
        config = load_api_config()
    return config.get("enabled_providers", ["diagnostics"])
