"""Configuration module for the SCIM provider."""
from .settings import AppConfig, load_settings

__all__ = ["AppConfig", "load_settings"]
