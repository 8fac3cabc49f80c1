"""Application-level services (settings)."""

from .settings_service import SettingsSchema, SettingsService, get_settings_service

__all__ = ["SettingsSchema", "SettingsService", "get_settings_service"]
