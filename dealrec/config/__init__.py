"""Configuration management for the deal recommendation engine."""

from .config_loader import ConfigLoader, get_config, reset_config

__all__ = ["ConfigLoader", "get_config", "reset_config"]
