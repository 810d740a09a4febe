"""Configuration loading and management."""

from src.config.loader import Settings, get_settings, load_api_config, get_enabled_providers

__all__ = ["Settings", "get_settings", "load_api_config", "get_enabled_providers"]
