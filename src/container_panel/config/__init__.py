"""Configuration module for Container Panel."""

from .settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
